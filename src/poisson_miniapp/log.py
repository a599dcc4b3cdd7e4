from __future__ import annotations
import logging
import time
from contextlib import contextmanager

from mpi4py import MPI
from dolfinx.common import Timer

FORMAT = "[%(name)s] %(message)s"


class RankFilter(logging.Filter):
    """Only let rank 0 through, unless logging is configured at DEBUG."""

    def __init__(self, rank: int, level: int = logging.INFO):
        super().__init__()
        self.rank = rank
        self.level = level

    def filter(self, record):
        return self.rank == 0 or self.level <= logging.DEBUG


def configure_logging(level="INFO", comm: MPI.Comm = MPI.COMM_WORLD):
    root = logging.getLogger("poisson_miniapp")
    root.setLevel(level if isinstance(level, int) else level.upper())
    for h in list(root.handlers):
        root.removeHandler(h)
    handler = logging.StreamHandler()
    fmt = FORMAT if comm.size == 1 else f"[rank {comm.rank}]" + FORMAT
    handler.setFormatter(logging.Formatter(fmt))
    handler.addFilter(RankFilter(comm.rank, root.level))
    root.addHandler(handler)
    root.propagate = False
    return root


@contextmanager
def timed(name: str, logger: logging.Logger = None, record: dict = None):
    """Time a phase with a dolfinx Timer (for list_timings) and log the wall time.

    If `record` is given the elapsed seconds are accumulated under `name`.
    """
    logger = logger or logging.getLogger("poisson_miniapp")
    t0 = time.perf_counter()
    with Timer(f"ZZZ {name}"):
        yield
    elapsed = time.perf_counter() - t0
    if record is not None:
        record[name] = record.get(name, 0.0) + elapsed
    logger.debug("%s: %.3fs", name, elapsed)
