"""
Unit Tests - Logging Setup
"""
from loguru import logger

from marketdata.utils.logger import setup_logging, get_logger


class TestLogging:

    def test_file_sinks_created(self, tmp_path):
        setup_logging("INFO", str(tmp_path / "logs"))
        logger.error("provider down")
        # Removing the file sinks closes and flushes them
        setup_logging("INFO", None)

        assert (tmp_path / "logs" / "marketdata.log").exists()
        assert "provider down" in (tmp_path / "logs" / "error.log").read_text()

    def test_stdout_only(self, tmp_path):
        setup_logging("DEBUG", None)
        assert not any(tmp_path.iterdir())

    def test_get_logger_binds_name(self):
        bound = get_logger("marketdata.test")
        records = []
        sink_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
        try:
            bound.info("hello")
        finally:
            logger.remove(sink_id)

        assert records[0]["extra"]["name"] == "marketdata.test"
