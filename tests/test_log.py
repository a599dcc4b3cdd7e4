import logging
from types import SimpleNamespace

import pytest

pytest.importorskip("dolfinx")

from poisson_miniapp.log import RankFilter, configure_logging, timed


def _record(level):
    return logging.LogRecord("poisson_miniapp.test", level, __file__, 1, "msg", None, None)


@pytest.mark.parametrize("level", [logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR])
def test_rank0_always_logs(level):
    assert RankFilter(0, logging.INFO).filter(_record(level))


@pytest.mark.parametrize("level", [logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR])
def test_other_ranks_log_everything_at_debug(level):
    assert RankFilter(1, logging.DEBUG).filter(_record(level))


@pytest.mark.parametrize("configured", [logging.INFO, logging.WARNING, logging.ERROR])
def test_other_ranks_are_silent_above_debug(configured):
    flt = RankFilter(1, configured)
    for level in (logging.INFO, logging.WARNING, logging.ERROR):
        assert not flt.filter(_record(level))


def test_configure_logging_passes_level_to_filter():
    logger = configure_logging("debug", SimpleNamespace(rank=1, size=2))
    assert logger.level == logging.DEBUG
    assert not logger.propagate
    (handler,) = logger.handlers
    (flt,) = handler.filters
    assert isinstance(flt, RankFilter)
    assert flt.rank == 1 and flt.level == logging.DEBUG
    assert handler.formatter._fmt.startswith("[rank 1]")

    # reconfiguring replaces the handler
    logger = configure_logging(logging.WARNING, SimpleNamespace(rank=0, size=1))
    (handler,) = logger.handlers
    assert handler.filters[0].level == logging.WARNING
    assert handler.formatter._fmt == "[%(name)s] %(message)s"


def test_timed_accumulates():
    record = {}
    with timed("phase", record=record):
        pass
    with timed("phase", record=record):
        pass
    assert set(record) == {"phase"}
    assert record["phase"] >= 0.0
