"""
Tests for publish reports and logging setup.
"""

import logging

import pandas as pd
import pytest

from s3publish import PublishFailure, PublishRecord, PublishReport, PublishState, TransportError
from s3publish.utils.logging import get_logger, setup_logging


@pytest.fixture
def report():
    report = PublishReport()
    report.add(PublishRecord("a.txt", PublishState.CREATE, "fa", etag="fa"))
    report.add(PublishRecord("b.txt", PublishState.CACHE, "fb"))
    report.add(PublishRecord("c.txt", PublishState.UPDATE, "fc", simulated=True))
    report.add(PublishRecord("d.txt", PublishState.DELETE, "fd"))
    report.add(PublishFailure("e.txt", "put", TransportError("Access denied", key="e.txt")))
    return report


class TestPublishReport:
    """Tests for PublishReport."""

    def test_counts(self, report):
        assert report.counts() == {
            "create": 1, "update": 1, "skip": 0, "cache": 1, "delete": 1, "failed": 1,
        }
        assert not report.ok

    def test_empty_report_is_ok(self):
        assert PublishReport().ok

    def test_keys(self, report):
        assert report.keys(PublishState.CACHE) == ["b.txt"]

    def test_summary(self, report):
        summary = report.summary()
        assert summary["total"] == 5
        assert summary["simulated"] == 1
        assert summary["failures"][0]["key"] == "e.txt"
        assert summary["failures"][0]["error"] == "TransportError"

    def test_format_lines(self, report):
        lines = report.format_lines([PublishState.CREATE, PublishState.UPDATE])

        assert lines == [
            "[create] a.txt",
            "[update] c.txt (simulated)",
            "[failed] e.txt (put: Access denied)",
        ]

    def test_collect_passes_through(self):
        report = PublishReport()
        results = [PublishRecord("a.txt", PublishState.SKIP, "fa")]

        assert list(report.collect(results)) == results
        assert report.counts()["skip"] == 1

    def test_to_dataframe(self, report):
        df = report.to_dataframe()

        assert len(df) == 5
        assert isinstance(df["state"].dtype, pd.CategoricalDtype)
        assert df.loc[df["key"] == "e.txt", "state"].iloc[0] == "failed"
        assert df["state"].value_counts()["skip"] == 0
        assert df.loc[df["key"] == "e.txt", "error"].iloc[0].startswith("Access denied")

    def test_empty_dataframe(self):
        df = PublishReport().to_dataframe()
        assert df.empty
        assert list(df.columns) == ["key", "state", "fingerprint", "etag", "simulated", "error"]

    def test_log_summary(self, report, caplog):
        with caplog.at_level(logging.INFO, logger="s3publish"):
            report.log_summary()
        assert any("with failures" in record.message for record in caplog.records)


class TestLogging:
    """Tests for logging setup."""

    def test_setup_logging_replaces_handlers(self, tmp_path):
        log_file = tmp_path / "logs" / "publish.log"

        root = setup_logging(level="WARNING", log_file=str(log_file))
        root = setup_logging(level="DEBUG", log_file=str(log_file))

        assert root.name == "s3publish"
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 2
        assert log_file.parent.exists()

        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()

    def test_get_logger_level(self):
        logger = get_logger("s3publish.test", level="error")
        assert logger.level == logging.ERROR
        assert logger.name == "s3publish.test"
