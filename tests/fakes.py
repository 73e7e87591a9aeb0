"""Fake classifier backends, clocks and stores for testing.

ScriptedBackend answers prompts without any network access. Each
classifier operation is recognized by a marker in the first line of its
prompt template, so one backend can script a whole workflow.

Design principles:
- Never call the real Gemini API; always script the replies
- Use a real FileSystemStore over a temporary vault wherever possible
- Deterministic: same prompts -> same replies, always
- Inspectable: every prompt sent is recorded per operation
"""
import json
import re
from collections import defaultdict
from typing import Callable, Dict, List, Union

from zbrain_mcp.models.schema import ChangeEvent
from zbrain_mcp.storage.document_store import StoreWatch

# Marker in the first line of each prompt template
KEYWORDS = "extract 5-10 core keywords"
RELATEDNESS = "Rate how related"
DETECT_PROJECT = "Decide which project"
FOCUS = "work-priority coach"
CLASSIFY = "sort notes by project"
EXTRACT_ZETTELS = "Zettelkasten style"
SPLIT = "split memos"
TOPIC_STRUCTURE = "Describe the structure"

_OPERATIONS = [
    KEYWORDS,
    RELATEDNESS,
    DETECT_PROJECT,
    CLASSIFY,
    EXTRACT_ZETTELS,
    SPLIT,
    TOPIC_STRUCTURE,
    FOCUS,
]

Reply = Union[str, Exception, Callable[[str], str]]

_CANDIDATE_LINE = re.compile(r"^(\d+)\. (.*)$")


def as_json(value) -> str:
    return json.dumps(value)


def candidate_lines(prompt: str) -> List[str]:
    """Candidate descriptions listed in a relatedness prompt, by index."""
    section = prompt.split("## Candidate notes", 1)[1].split("## Rules", 1)[0]
    lines = []
    for line in section.strip().splitlines():
        match = _CANDIDATE_LINE.match(line)
        if match:
            lines.append(match.group(2))
    return lines


def score_by_word(scores: Dict[str, float], reason: str = "shared topic") -> Callable[[str], str]:
    """Relatedness replier scoring each candidate whose description contains a word."""

    def reply(prompt: str) -> str:
        results = []
        for index, description in enumerate(candidate_lines(prompt)):
            for word, relevance in scores.items():
                if word in description:
                    results.append(
                        {"index": index, "relevance": relevance, "reason": reason, "type": "expansion"}
                    )
                    break
        return as_json(results)

    return reply


class ScriptedBackend:
    """Text backend replying from per-operation scripts.

    Each operation has a queue of replies; the last reply repeats once the
    queue is exhausted. A reply may be a string, a callable taking the
    prompt, or an exception instance to raise.
    """

    def __init__(self) -> None:
        self._replies: Dict[str, List[Reply]] = {}
        self.prompts: Dict[str, List[str]] = defaultdict(list)
        self.calls = 0

    def on(self, marker: str, *replies: Reply) -> "ScriptedBackend":
        self._replies[marker] = list(replies)
        return self

    def calls_for(self, marker: str) -> int:
        return len(self.prompts[marker])

    def generate(self, prompt: str) -> str:
        self.calls += 1
        first_line = prompt.splitlines()[0] if prompt else ""
        marker = next((m for m in _OPERATIONS if m in first_line), None)
        if marker is None:
            raise AssertionError(f"Unrecognized prompt: {first_line!r}")
        self.prompts[marker].append(prompt)

        queue = self._replies.get(marker)
        if not queue:
            return "[]" if marker != CLASSIFY else "{}"
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(prompt)
        return reply


class SequenceBackend:
    """Text backend returning (or raising) a fixed sequence of replies."""

    def __init__(self, *replies: Reply) -> None:
        self._replies = list(replies)
        self.prompts: List[str] = []

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(prompt)
        return reply


class ManualClock:
    """Monotonic clock that only moves when slept on or advanced."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class RecordingWatch(StoreWatch):
    def __init__(self) -> None:
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class EventRecorder:
    """Callback collecting delivered change-event batches."""

    def __init__(self) -> None:
        self.batches: List[List[ChangeEvent]] = []

    def __call__(self, batch: List[ChangeEvent]) -> None:
        self.batches.append(list(batch))
