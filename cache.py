# cache.py
import collections
import enum
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

ADDRESS_BITS = 64
# largest set count a cache will try to allocate (s <= 24)
MAX_SETS = 1 << 24


class ConfigurationError(ValueError):
    """Raised when the cache geometry or run configuration is unusable."""


class AllocationError(MemoryError):
    """Raised when the set storage for a geometry cannot be allocated."""


class Outcome(enum.Enum):
    HIT = "hit"
    MISS = "miss"
    MISS_EVICTION = "miss eviction"


@dataclass(frozen=True)
class Geometry:
    """
    Cache shape: s set-index bits, b block-offset bits, E lines per set.
    """
    s: int
    b: int
    E: int

    def __post_init__(self):
        for name in ("s", "b", "E"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigurationError(f"{name} must be an integer, got {value!r}")
            if value < 1:
                raise ConfigurationError(f"{name} must be positive, got {value}")
        if self.s + self.b > ADDRESS_BITS:
            raise ConfigurationError(
                f"s + b must not exceed {ADDRESS_BITS} address bits, got {self.s + self.b}"
            )

    @property
    def num_sets(self):
        return 1 << self.s

    @property
    def block_size(self):
        return 1 << self.b

    def label(self):
        return f"s={self.s} E={self.E} b={self.b}"


class CacheSet:
    """
    One set of a set-associative cache, holding at most `capacity` tags.

    Tags live in an OrderedDict ordered from least to most recently used, so
    promotion is move_to_end and eviction is popitem(last=False).
    """

    def __init__(self, capacity):
        self.capacity = capacity
        self._lines = collections.OrderedDict()

    def __len__(self):
        return len(self._lines)

    def __contains__(self, tag):
        return tag in self._lines

    @property
    def full(self):
        return len(self._lines) >= self.capacity

    def tags(self):
        """Occupied tags, most recently used first."""
        return list(reversed(self._lines))

    def promote(self, tag):
        self._lines.move_to_end(tag)

    def evict_lru(self):
        tag, _ = self._lines.popitem(last=False)
        return tag

    def insert(self, tag):
        if tag in self._lines or self.full:
            raise RuntimeError(f"no room for tag {tag:#x} in set")
        self._lines[tag] = True


@dataclass
class Counters:
    hits: int = 0
    misses: int = 0
    evictions: int = 0


class SetAssociativeCache:
    """
    Metadata-only set-associative cache with LRU replacement.

    Addresses are split into tag | set index | block offset. Only the tag and
    the set index take part in lookups; no data is stored.

    Use as a context manager so the set storage is dropped on every exit path:

        with SetAssociativeCache(Geometry(s=4, b=4, E=2)) as cache:
            cache.access(0x10)
    """

    def __init__(self, geometry: Geometry):
        self.geometry = geometry
        self.counters = Counters()
        self._set_mask = geometry.num_sets - 1
        if geometry.num_sets > MAX_SETS:
            raise AllocationError(
                f"{geometry.label()} needs {geometry.num_sets} sets, more than the {MAX_SETS} supported"
            )
        try:
            self.sets = [None] * geometry.num_sets
            for i in range(geometry.num_sets):
                self.sets[i] = CacheSet(geometry.E)
        except (MemoryError, OverflowError) as exc:
            raise AllocationError(
                f"cannot allocate {geometry.num_sets} sets for {geometry.label()}"
            ) from exc
        logger.debug("created cache %s (%d sets)", geometry.label(), geometry.num_sets)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    @property
    def closed(self):
        return self.sets is None

    def close(self):
        """Release the set storage. Safe to call more than once."""
        self.sets = None

    def decompose(self, addr):
        """Return (set_index, tag) for `addr`."""
        if addr < 0 or addr >> ADDRESS_BITS:
            raise ValueError(f"address {addr:#x} is not a {ADDRESS_BITS}-bit unsigned value")
        g = self.geometry
        set_index = (addr >> g.b) & self._set_mask
        tag = addr >> (g.s + g.b)
        return set_index, tag

    def access(self, addr):
        """
        Access byte address `addr` and return the Outcome.
        Updates the counters and the LRU order of the addressed set.
        """
        if self.closed:
            raise RuntimeError("access on a closed cache")
        set_index, tag = self.decompose(addr)
        s = self.sets[set_index]
        if tag in s:
            s.promote(tag)
            self.counters.hits += 1
            return Outcome.HIT

        self.counters.misses += 1
        outcome = Outcome.MISS
        if s.full:
            s.evict_lru()
            self.counters.evictions += 1
            outcome = Outcome.MISS_EVICTION
        s.insert(tag)
        return outcome

    def resident(self, addr):
        """True if the block holding `addr` is cached. Does not touch LRU order."""
        if self.closed:
            raise RuntimeError("lookup on a closed cache")
        set_index, tag = self.decompose(addr)
        return tag in self.sets[set_index]

    def stats(self):
        used_lines = sum(len(s) for s in self.sets) if not self.closed else 0
        return {
            "set_index_bits": self.geometry.s,
            "block_offset_bits": self.geometry.b,
            "associativity": self.geometry.E,
            "num_sets": self.geometry.num_sets,
            "block_size": self.geometry.block_size,
            "used_lines": used_lines,
            "hits": self.counters.hits,
            "misses": self.counters.misses,
            "evictions": self.counters.evictions,
        }
