"""Tests for structlog setup and unit-of-work context binding."""
import structlog

import iss_ingest.utils as utils
from iss_ingest.utils.logging import LogContext


class TestLogContext:
    def setup_method(self):
        structlog.contextvars.clear_contextvars()

    def test_binds_and_unbinds(self):
        with LogContext(board="stock/shares/TQBR", cursor=None):
            assert structlog.contextvars.get_contextvars() == {"board": "stock/shares/TQBR"}
        assert structlog.contextvars.get_contextvars() == {}

    def test_nested_context_restores_outer_values(self):
        with LogContext(secid="SBER"):
            with LogContext(secid="GAZP", day="2024-03-01"):
                assert structlog.contextvars.get_contextvars() == {"secid": "GAZP", "day": "2024-03-01"}
            assert structlog.contextvars.get_contextvars() == {"secid": "SBER"}


def test_package_exports():
    assert sorted(utils.__all__) == ["LogContext", "setup_logging"]
    assert not hasattr(utils, "get_logger")
