# tracefile.py
import logging
import re

import numpy as np

from cache import ADDRESS_BITS
from replay import AccessKind, AccessRecord

logger = logging.getLogger(__name__)

# valgrind lackey format: " L 7ff0005c8,8"; instruction fetches start in column 0
_LINE_RE = re.compile(r"^\s*([ILSM])\s+([0-9a-fA-F]+)\s*,\s*(\d+)\s*$")

PATTERNS = ("sequential", "random", "mixed")


class TraceIOError(OSError):
    """Raised when a trace file cannot be opened or read."""

    def __init__(self, path, reason):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


def parse_line(line):
    """
    Decode one trace line into an AccessRecord.
    Returns None for instruction fetches, blank and malformed lines.
    """
    m = _LINE_RE.match(line)
    if not m:
        if line.strip():
            logger.debug("skipping malformed trace line: %r", line.rstrip("\n"))
        return None
    kind, addr, length = m.groups()
    if kind == "I":
        return None
    address = int(addr, 16)
    if address >> ADDRESS_BITS:
        logger.debug("skipping trace line with oversized address: %r", line.rstrip("\n"))
        return None
    return AccessRecord(AccessKind(kind), address, int(length))


def read_trace(path):
    """Lazily yield the data-access records of the trace at `path`."""
    try:
        f = open(path, "r", errors="replace")
    except OSError as exc:
        raise TraceIOError(path, exc.strerror or str(exc)) from exc
    with f:
        try:
            for line in f:
                record = parse_line(line)
                if record is not None:
                    yield record
        except OSError as exc:
            raise TraceIOError(path, exc.strerror or str(exc)) from exc


def format_record(record):
    return f" {record.kind.value} {record.address:x},{record.length}"


def write_trace(path, records):
    count = 0
    with open(path, "w") as f:
        for record in records:
            f.write(format_record(record) + "\n")
            count += 1
    return count


class TraceGenerator:
    """
    Synthetic data-access traces over a working set of cache-line sized blocks.

    pattern: "sequential" walks the blocks in order with wrap-around,
    "random" picks blocks uniformly, "mixed" is mostly sequential with some
    random jumps.
    """

    def __init__(self, working_set_kb=64, line_size=64, access_size=8,
                 read_ratio=0.8, pattern="mixed", seed=None):
        if pattern not in PATTERNS:
            raise ValueError(f"unknown access pattern {pattern!r}, expected one of {PATTERNS}")
        if not 0.0 <= read_ratio <= 1.0:
            raise ValueError("read_ratio must be between 0 and 1")
        self.line_size = line_size
        self.access_size = access_size
        self.read_ratio = read_ratio
        self.pattern = pattern
        self.num_blocks = max(1, (working_set_kb * 1024) // line_size)
        self.rng = np.random.default_rng(seed)
        self._seq_ptr = 0

    def _next_sequential(self):
        block = self._seq_ptr
        self._seq_ptr = (block + 1) % self.num_blocks
        return block

    def _next_block(self):
        if self.pattern == "sequential":
            return self._next_sequential()
        if self.pattern == "random":
            return int(self.rng.integers(0, self.num_blocks))
        if self.rng.random() < 0.8:
            return self._next_sequential()
        return int(self.rng.integers(0, self.num_blocks))

    def _next_kind(self):
        if self.rng.random() < self.read_ratio:
            return AccessKind.LOAD
        # writes split evenly between plain stores and read-modify-writes
        return AccessKind.STORE if self.rng.random() < 0.5 else AccessKind.MODIFY

    def records(self, count):
        max_offset = max(1, self.line_size - self.access_size + 1)
        for _ in range(count):
            block = self._next_block()
            offset = int(self.rng.integers(0, max_offset))
            yield AccessRecord(self._next_kind(), block * self.line_size + offset, self.access_size)
