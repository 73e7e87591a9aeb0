"""Identifier allocation for new Zettel notes.

One allocator class per numbering scheme; ``create_allocator`` picks the
class once from configuration. Allocators that keep counters reseed them
from the identifiers already present in the note index, so a restart never
re-issues an identifier.
"""
import datetime
import logging
import re
import string
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional

from zbrain_mcp.exceptions import ConfigurationError, IdCollisionError
from zbrain_mcp.models.schema import IdScheme
from zbrain_mcp.storage.note_index import NoteIndex

logger = logging.getLogger(__name__)

DATE_SEQUENCE_PATTERN = re.compile(r"^(\d{8})-(\d{3,})")

_LETTERS = string.ascii_lowercase


def to_luhmann_id(counter: int) -> str:
    """Encode a counter as a Luhmann-style identifier.

    The last position holds a digit 1-9, the one before it a letter a-z,
    alternating from there; each position carries into the next.

    Examples:
        1 -> "1", 9 -> "9", 10 -> "a1", 243 -> "z9", 244 -> "1a1"
    """
    if counter <= 0:
        return "1"
    symbols = []
    remaining = counter
    level = 0
    while remaining > 0:
        if level % 2 == 0:
            symbols.append(str((remaining - 1) % 9 + 1))
            remaining = (remaining - 1) // 9
        else:
            symbols.append(_LETTERS[(remaining - 1) % 26])
            remaining = (remaining - 1) // 26
        level += 1
    return "".join(reversed(symbols))


def from_luhmann_id(identifier: str) -> Optional[int]:
    """Decode a Luhmann-style identifier back to its counter.

    Returns:
        The counter, or None if ``identifier`` is not a valid encoding.
    """
    if not identifier:
        return None
    value = 0
    length = len(identifier)
    for position, char in enumerate(identifier):
        level = length - 1 - position
        if level % 2 == 0:
            if char not in "123456789":
                return None
            value = value * 9 + int(char)
        else:
            if char not in _LETTERS:
                return None
            value = value * 26 + _LETTERS.index(char) + 1
    return value


class IdAllocator(ABC):
    """Issues identifiers that no indexed Zettel note already uses."""

    scheme: IdScheme

    def __init__(self, index: NoteIndex):
        self.index = index
        self._lock = threading.Lock()

    @abstractmethod
    def allocate(self) -> str:
        """Return a fresh identifier.

        Raises:
            IdCollisionError: If the identifier is unexpectedly in use. The
                allocator has already reseeded itself when this is raised.
        """

    def reseed(self) -> None:
        """Re-derive counter state from the Zettel identifiers in the index."""

    def _check_unused(self, identifier: str) -> None:
        if identifier in self.index.zettel_ids():
            logger.error(f"Identifier collision on {identifier}, reseeding from index")
            self._reseed_locked()
            raise IdCollisionError(identifier, self.scheme.value)

    def _reseed_locked(self) -> None:
        """Reseed while the allocation lock is already held."""


class TimestampAllocator(IdAllocator):
    """Milliseconds since the epoch; collisions are not checked."""

    scheme = IdScheme.TIMESTAMP

    def __init__(self, index: NoteIndex, clock: Callable[[], float] = time.time):
        super().__init__(index)
        self._clock = clock

    def allocate(self) -> str:
        with self._lock:
            return str(int(self._clock() * 1000))


class DateSequenceAllocator(IdAllocator):
    """``YYYYMMDD-NNN`` with a per-date high-water mark."""

    scheme = IdScheme.DATE_SEQUENCE

    def __init__(
        self,
        index: NoteIndex,
        today: Optional[Callable[[], datetime.date]] = None,
    ):
        super().__init__(index)
        self._today = today or (lambda: datetime.datetime.now(datetime.timezone.utc).date())
        self._high_water: Dict[str, int] = {}
        self.reseed()

    @property
    def high_water(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._high_water)

    def reseed(self) -> None:
        with self._lock:
            self._reseed_locked()

    def _reseed_locked(self) -> None:
        marks: Dict[str, int] = {}
        for identifier in self.index.zettel_ids():
            match = DATE_SEQUENCE_PATTERN.match(identifier)
            if match:
                date, seq = match.group(1), int(match.group(2))
                marks[date] = max(marks.get(date, 0), seq)
        # Keep in-process allocations whose documents are not indexed yet
        for date, seq in self._high_water.items():
            marks[date] = max(marks.get(date, 0), seq)
        self._high_water = marks
        logger.debug(f"Date-sequence allocator seeded with {len(marks)} dates")

    def allocate(self) -> str:
        with self._lock:
            date = self._today().strftime("%Y%m%d")
            seq = self._high_water.get(date, 0) + 1
            self._high_water[date] = seq
            identifier = f"{date}-{seq:03d}"
            self._check_unused(identifier)
            return identifier


class LuhmannAllocator(IdAllocator):
    """Luhmann-style identifiers from one monotonically increasing counter."""

    scheme = IdScheme.LUHMANN

    def __init__(self, index: NoteIndex):
        super().__init__(index)
        self.counter = 0
        self.reseed()

    def reseed(self) -> None:
        with self._lock:
            self._reseed_locked()

    def _reseed_locked(self) -> None:
        # The count alone would re-issue ids after deletions
        highest = 0
        for identifier in self.index.zettel_ids():
            decoded = from_luhmann_id(identifier)
            if decoded is not None:
                highest = max(highest, decoded)
        self.counter = max(self.counter, self.index.zettel_count(), highest)
        logger.debug(f"Luhmann allocator seeded at {self.counter}")

    def allocate(self) -> str:
        with self._lock:
            self.counter += 1
            identifier = to_luhmann_id(self.counter)
            self._check_unused(identifier)
            return identifier


_ALLOCATORS = {
    IdScheme.TIMESTAMP: TimestampAllocator,
    IdScheme.DATE_SEQUENCE: DateSequenceAllocator,
    IdScheme.LUHMANN: LuhmannAllocator,
}


def create_allocator(scheme: IdScheme, index: NoteIndex) -> IdAllocator:
    """Build the allocator for a configured scheme.

    Raises:
        ConfigurationError: If the scheme is not a known numbering scheme.
    """
    try:
        allocator_class = _ALLOCATORS[IdScheme(scheme)]
    except ValueError as e:
        raise ConfigurationError(
            f"Unknown Zettel ID scheme '{scheme}'", config_key="zk_id_type"
        ) from e
    return allocator_class(index)
