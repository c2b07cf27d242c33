# replay.py
import enum
import logging
import threading
from dataclasses import dataclass
from typing import NamedTuple

from cache import Geometry, Outcome, SetAssociativeCache

logger = logging.getLogger(__name__)


class AccessKind(enum.Enum):
    LOAD = "L"
    STORE = "S"
    MODIFY = "M"
    OTHER = "I"


class AccessRecord(NamedTuple):
    kind: AccessKind
    address: int
    length: int


@dataclass
class SimulationSummary:
    geometry: Geometry
    hits: int
    misses: int
    evictions: int

    @property
    def accesses(self):
        return self.hits + self.misses

    @property
    def hit_rate(self):
        return self.hits / self.accesses if self.accesses else 0.0

    def format_summary(self):
        return f"hits:{self.hits} misses:{self.misses} evictions:{self.evictions}"

    def results_line(self):
        return "%d %d %d\n" % (self.hits, self.misses, self.evictions)

    def as_dict(self):
        return {
            "s": self.geometry.s,
            "b": self.geometry.b,
            "E": self.geometry.E,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "accesses": self.accesses,
            "hit_rate": self.hit_rate,
        }


def format_outcomes(outcomes):
    return " ".join(o.value for o in outcomes)


class TraceReplayer:
    """
    Drives a SetAssociativeCache with decoded access records, strictly in order.

    A load or store is one cache access, a modify is a load followed by a
    store to the same address, anything else is ignored. `listener`, if
    given, is called with (record, outcomes) after each replayed record.
    """

    def __init__(self, cache: SetAssociativeCache, listener=None):
        self.cache = cache
        self.listener = listener

    def step(self, record):
        """Replay one record and return the outcomes it produced."""
        if record.kind in (AccessKind.LOAD, AccessKind.STORE):
            outcomes = [self.cache.access(record.address)]
        elif record.kind is AccessKind.MODIFY:
            outcomes = [self.cache.access(record.address)]
            outcomes.append(self.cache.access(record.address))
        else:
            return []
        if self.listener is not None:
            self.listener(record, outcomes)
        return outcomes

    def replay(self, records):
        count = 0
        for record in records:
            self.step(record)
            count += 1
        return count

    def summary(self):
        c = self.cache.counters
        return SimulationSummary(self.cache.geometry, c.hits, c.misses, c.evictions)


def simulate(geometry, records, listener=None) -> SimulationSummary:
    """Run one independent simulation over `records` and return its totals."""
    with SetAssociativeCache(geometry) as cache:
        replayer = TraceReplayer(cache, listener)
        replayer.replay(records)
        return replayer.summary()


class GeometrySweep:
    """
    Replays one trace against several geometries.

    Every geometry gets its own cache, so the simulations share nothing but
    the (read-only) record list and can run on worker threads.
    """

    def __init__(self, geometries, records, num_threads=4):
        self.geometries = list(geometries)
        self.records = list(records)
        self.num_threads = max(1, num_threads)
        self.results_lock = threading.Lock()
        self.results = {}
        self.errors = []

    def _worker(self, jobs):
        local_results = {}
        for index, geometry in jobs:
            logger.debug("sweep: replaying %d records on %s", len(self.records), geometry.label())
            try:
                local_results[index] = simulate(geometry, self.records)
            except Exception as exc:
                # re-raised from run() on the calling thread
                with self.results_lock:
                    self.errors.append(exc)
                return
        with self.results_lock:
            self.results.update(local_results)

    def run(self):
        """Return the summaries in the order the geometries were given."""
        jobs = list(enumerate(self.geometries))
        threads = []
        for n in range(min(self.num_threads, len(jobs))):
            t = threading.Thread(target=self._worker, args=(jobs[n::self.num_threads],))
            t.start()
            threads.append(t)
        for t in threads:
            t.join()
        if self.errors:
            raise self.errors[0]
        return [self.results[i] for i in range(len(jobs))]
