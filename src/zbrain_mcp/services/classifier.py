"""Gateway to the external content classifier.

All classifier traffic goes through ``ClassifierGateway``: calls are
serialized behind one lock, spaced by a minimum delay, and retried with
exponential backoff when the service signals rate limiting. Responses are
parsed leniently; a reply that cannot be parsed degrades to an empty
result instead of failing the surrounding operation.
"""
import json
import logging
import re
import threading
import time
from typing import Any, Callable, List, Optional, Protocol, Sequence

from pydantic import ValidationError as PydanticValidationError

from zbrain_mcp.config import BrainConfig, config
from zbrain_mcp.exceptions import (
    ClassifierError,
    ErrorCode,
    MalformedResponseError,
    RateLimitError,
)
from zbrain_mcp.models.schema import (
    ClassifyResult,
    ConnectionType,
    FocusItem,
    ProjectDetection,
    RelatednessScore,
    SplitSection,
    TargetType,
    TopicNote,
    TopicStructure,
    ZkCandidate,
)
from zbrain_mcp.services import prompts
from zbrain_mcp.utils import truncate_content, unique_keywords

logger = logging.getLogger(__name__)

# Relatedness results below this score are dropped
MIN_RELEVANCE = 0.5
MAX_RELATED_RESULTS = 5
MAX_FOCUS_ITEMS = 3

# Spacing grows by this factor after each rate-limit hit, up to the cap
SPACING_GROWTH = 1.5
MAX_SPACING_SECONDS = 5.0

_RATE_LIMIT_MARKERS = ("429", "RESOURCE_EXHAUSTED", "quota")
_JSON_ARRAY = re.compile(r"\[[\s\S]*\]")
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class TextBackend(Protocol):
    """A generative text service: one prompt in, one reply out."""

    def generate(self, prompt: str) -> str:
        ...


def is_rate_limit_error(error: BaseException) -> bool:
    """Whether an error signals that the service is rate limiting us."""
    if isinstance(error, RateLimitError):
        return True
    message = str(error)
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


def extract_json(text: str, pattern: "re.Pattern[str]") -> Optional[Any]:
    """Pull the first JSON block matching ``pattern`` out of a reply.

    Returns:
        The decoded value, or None if there is no block or it is invalid.
    """
    match = pattern.search(text or "")
    if not match:
        return None
    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError:
        logger.warning(f"Classifier reply is not valid JSON: {text[:200]!r}")
        return None


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _string_list(value: object) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def _optional_str(value: object) -> Optional[str]:
    if isinstance(value, str) and value.strip() and value.strip().lower() != "null":
        return value.strip()
    return None


class ClassifierGateway:
    """Rate-limited, retrying adapter over a ``TextBackend``."""

    def __init__(
        self,
        backend: TextBackend,
        min_delay: float = 1.0,
        max_retries: int = 3,
        initial_backoff: float = 2.0,
        max_content_chars: int = 500000,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.backend = backend
        self.min_delay = min_delay
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.max_content_chars = max_content_chars
        self._sleep = sleep
        self._clock = clock
        self._lock = threading.Lock()
        self._last_call: Optional[float] = None
        self.call_count = 0

    @classmethod
    def from_config(
        cls,
        cfg: Optional[BrainConfig] = None,
        backend: Optional[TextBackend] = None,
    ) -> "ClassifierGateway":
        """Build a gateway from configuration, defaulting to the Gemini backend."""
        cfg = cfg or config
        if backend is None:
            from zbrain_mcp.services.gemini_backend import create_backend

            backend = create_backend(cfg)
        return cls(
            backend,
            min_delay=cfg.classifier_min_delay,
            max_retries=cfg.classifier_max_retries,
            initial_backoff=cfg.classifier_initial_backoff,
            max_content_chars=cfg.max_content_chars,
        )

    # ------------------------------------------------------------------
    # Call discipline
    # ------------------------------------------------------------------

    def _wait_for_spacing(self) -> None:
        if self._last_call is not None:
            elapsed = self._clock() - self._last_call
            if elapsed < self.min_delay:
                self._sleep(self.min_delay - elapsed)
        self._last_call = self._clock()

    def _call(self, operation: str, prompt: str) -> str:
        """Send one prompt, serialized and retried on rate limiting.

        Raises:
            ClassifierError: When retries are exhausted or the call fails
                for a reason other than rate limiting.
        """
        with self._lock:
            self._wait_for_spacing()
            for attempt in range(self.max_retries + 1):
                try:
                    self.call_count += 1
                    return self.backend.generate(prompt)
                except Exception as e:
                    rate_limited = is_rate_limit_error(e)
                    if rate_limited and attempt < self.max_retries:
                        backoff = self.initial_backoff * (2 ** attempt)
                        logger.warning(
                            f"Rate limit hit during {operation}, retrying in "
                            f"{backoff:.1f}s (attempt {attempt + 1}/{self.max_retries})"
                        )
                        self._sleep(backoff)
                        self.min_delay = min(
                            self.min_delay * SPACING_GROWTH,
                            max(MAX_SPACING_SECONDS, self.min_delay),
                        )
                        continue
                    if rate_limited:
                        raise ClassifierError(
                            f"Classifier still rate limited after {attempt + 1} attempts",
                            operation=operation,
                            attempts=attempt + 1,
                            code=ErrorCode.CLASSIFIER_RATE_LIMITED,
                            original_error=e,
                        ) from e
                    if isinstance(e, ClassifierError):
                        raise
                    raise ClassifierError(
                        f"Classifier call failed: {e}",
                        operation=operation,
                        attempts=attempt + 1,
                        original_error=e,
                    ) from e
        # Unreachable: the loop either returns or raises
        raise ClassifierError("Max retries exceeded", operation=operation)

    def _content(self, text: str) -> str:
        return truncate_content(text, self.max_content_chars)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def extract_keywords(self, text: str) -> List[str]:
        """Extract the core keywords of a note, in the classifier's order."""
        reply = self._call(
            "extract_keywords",
            prompts.fill(prompts.KEYWORD_EXTRACT_PROMPT, content=self._content(text)),
        )
        parsed = extract_json(reply, _JSON_ARRAY)
        if not isinstance(parsed, list):
            return []
        return unique_keywords(item for item in parsed if isinstance(item, str))

    def score_relatedness(
        self,
        query_title: str,
        query_keywords: Sequence[str],
        candidates: Sequence[str],
    ) -> List[RelatednessScore]:
        """Score candidate descriptions against a query note.

        Args:
            query_title: Title of the querying note.
            query_keywords: Keywords of the querying note.
            candidates: One description per candidate; returned indices
                refer to positions in this list.

        Returns:
            Scores with relevance >= 0.5, highest first, at most 5.
        """
        if not candidates:
            return []
        listing = "\n".join(f"{i}. {desc}" for i, desc in enumerate(candidates))
        reply = self._call(
            "score_relatedness",
            prompts.fill(
                prompts.RELATED_NOTES_PROMPT,
                title=query_title,
                keywords=", ".join(query_keywords),
                candidates=listing,
            ),
        )
        parsed = extract_json(reply, _JSON_ARRAY)
        if not isinstance(parsed, list):
            return []

        scores: List[RelatednessScore] = []
        for item in parsed:
            if not isinstance(item, dict):
                continue
            index, relevance = item.get("index"), item.get("relevance")
            if not isinstance(index, int) or isinstance(index, bool) or not _is_number(relevance):
                continue
            relevance = min(float(relevance), 1.0)
            if relevance < MIN_RELEVANCE:
                continue
            reason = item.get("reason")
            scores.append(
                RelatednessScore(
                    index=index,
                    relevance=relevance,
                    reason=reason.strip() if isinstance(reason, str) else "",
                    connection_type=ConnectionType.parse(item.get("type")),
                )
            )
        scores.sort(key=lambda s: s.relevance, reverse=True)
        return scores[:MAX_RELATED_RESULTS]

    def detect_project(
        self,
        title: str,
        keywords: Sequence[str],
        project_ids: Sequence[str],
    ) -> ProjectDetection:
        """Ask which known project a note belongs to.

        With no known projects the classifier is not consulted.
        """
        if not project_ids:
            return ProjectDetection.none()
        reply = self._call(
            "detect_project",
            prompts.fill(
                prompts.PROJECT_DETECT_PROMPT,
                title=title,
                keywords=", ".join(keywords),
                projects=prompts.numbered(project_ids),
            ),
        )
        return self.parse_project_reply(reply, project_ids)

    @staticmethod
    def parse_project_reply(reply: str, project_ids: Sequence[str]) -> ProjectDetection:
        """Interpret a free-text project answer.

        ``None``/empty means no project, ``NEW: name`` proposes a new one,
        anything else is matched against the known projects by
        case-insensitive containment (exact match first, then the longest
        contained name).
        """
        text = (reply or "").strip().strip("\"'`*").strip()
        if not text or text.lower() == "none":
            return ProjectDetection.none()
        if text.upper().startswith("NEW:"):
            name = text[4:].strip().strip("\"'`*").strip()
            return ProjectDetection.new(name) if name else ProjectDetection.none()

        lowered = text.lower()
        for project_id in project_ids:
            if project_id.lower() == lowered:
                return ProjectDetection.existing(project_id)
        contained = [p for p in project_ids if p and p.lower() in lowered]
        if contained:
            return ProjectDetection.existing(max(contained, key=len))
        return ProjectDetection.none()

    def classify_destination(self, text: str, project_ids: Sequence[str]) -> ClassifyResult:
        """Decide where an inbox note goes.

        Raises:
            MalformedResponseError: If the reply holds no usable JSON object;
                a note cannot be moved without a destination.
        """
        reply = self._call(
            "classify_destination",
            prompts.fill(
                prompts.PROJECT_CLASSIFY_PROMPT,
                projects=prompts.numbered(project_ids),
                content=self._content(text),
            ),
        )
        parsed = extract_json(reply, _JSON_OBJECT)
        if not isinstance(parsed, dict):
            raise MalformedResponseError(
                "Classification reply holds no JSON object",
                operation="classify_destination",
                raw=reply or "",
            )
        target_type = TargetType.parse(parsed.get("targetType"))
        return ClassifyResult(
            target_type=target_type,
            project_name=_optional_str(parsed.get("projectName")),
            is_new_project=parsed.get("isNewProject") is True,
            title=_optional_str(parsed.get("title")) or "Untitled",
            summary=_optional_str(parsed.get("summary")) or "",
            next_action=_optional_str(parsed.get("nextAction")),
        )

    def extract_zettels(self, text: str) -> List[ZkCandidate]:
        """Extract atomic idea candidates from a note."""
        reply = self._call(
            "extract_zettels",
            prompts.fill(prompts.ZK_EXTRACT_PROMPT, content=self._content(text)),
        )
        parsed = extract_json(reply, _JSON_ARRAY)
        if not isinstance(parsed, list):
            return []

        candidates: List[ZkCandidate] = []
        for item in parsed:
            if not isinstance(item, dict):
                continue
            try:
                candidates.append(
                    ZkCandidate(
                        title=item.get("title") or "",
                        body=item.get("body") or "",
                        keywords=item.get("keywords") or [],
                        importance=_optional_str(item.get("importance")),
                        related_concepts=_string_list(item.get("relatedConcepts")),
                    )
                )
            except (PydanticValidationError, TypeError) as e:
                logger.warning(f"Skipping malformed idea candidate: {e}")
        return candidates

    def split_content(self, text: str, project_ids: Sequence[str]) -> List[SplitSection]:
        """Split a mixed memo into self-contained sections."""
        reply = self._call(
            "split_content",
            prompts.fill(
                prompts.SMART_SPLIT_PROMPT,
                projects=prompts.numbered(project_ids),
                content=self._content(text),
            ),
        )
        parsed = extract_json(reply, _JSON_ARRAY)
        if not isinstance(parsed, list):
            return []

        sections: List[SplitSection] = []
        for item in parsed:
            if not isinstance(item, dict):
                continue
            content = item.get("content")
            if not isinstance(content, str) or not content.strip():
                continue
            sections.append(
                SplitSection(
                    title=_optional_str(item.get("title")) or "Untitled",
                    content=content.strip(),
                    target_type=TargetType.parse(item.get("targetType")),
                    project=_optional_str(item.get("projectName")),
                    is_new_project=item.get("isNewProject") is True,
                    keywords=item.get("keywords"),
                    is_atomic=item.get("isAtomic") is True,
                )
            )
        return sections

    def generate_topic_structure(self, topic: str, notes: Sequence[str]) -> TopicStructure:
        """Describe how the notes of one structure-index topic relate.

        Args:
            topic: The topic (primary keyword).
            notes: One description line per note, starting with its title.
        """
        reply = self._call(
            "generate_topic_structure",
            prompts.fill(
                prompts.ZK_INDEX_TOPIC_PROMPT,
                topic=topic,
                notes="\n".join(f"- {line}" for line in notes),
            ),
        )
        parsed = extract_json(reply, _JSON_OBJECT)
        if not isinstance(parsed, dict):
            return TopicStructure()

        topic_notes: List[TopicNote] = []
        raw_notes = parsed.get("notes")
        for item in raw_notes if isinstance(raw_notes, list) else []:
            if isinstance(item, dict) and isinstance(item.get("title"), str):
                relations = item.get("relations")
                if not isinstance(relations, list):
                    relations = []
                relations = [r for r in relations if isinstance(r, dict)]
                topic_notes.append(
                    TopicNote(
                        title=item["title"],
                        role=_optional_str(item.get("role")) or "",
                        relations=relations,
                    )
                )
        related = _string_list(parsed.get("relatedTopics"))
        return TopicStructure(
            description=_optional_str(parsed.get("description")) or "",
            notes=topic_notes,
            related_topics=related,
        )

    def get_focus(self, projects: Sequence[str]) -> List[FocusItem]:
        """Recommend the projects to focus on now.

        Args:
            projects: One summary line per project.

        Returns:
            At most three items; empty when the reply cannot be parsed.
        """
        if not projects:
            return []
        reply = self._call(
            "get_focus",
            prompts.fill(prompts.FOCUS_PROMPT, projects="\n".join(projects)),
        )
        parsed = extract_json(reply, _JSON_ARRAY)
        if not isinstance(parsed, list):
            return []

        items: List[FocusItem] = []
        for item in parsed:
            if not isinstance(item, dict):
                continue
            title = _optional_str(item.get("title"))
            if title is None:
                continue
            items.append(
                FocusItem(
                    title=title,
                    why=_optional_str(item.get("why")) or "",
                    next_action=_optional_str(item.get("next_action")) or "",
                )
            )
        return items[:MAX_FOCUS_ITEMS]
