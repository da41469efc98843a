# tests/test_logging_config.py

"""Tests for the per-run logging configuration."""

import logging
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from supplywatch.config.logging_config import setup_logging
from supplywatch.config.settings import Settings


class TestLoggingConfig(unittest.TestCase):
    """Verify logging setup behaviour."""

    def setUp(self) -> None:
        """Clean up the supplywatch logger before each test."""
        self.root_logger = logging.getLogger("supplywatch")
        self._close_handlers()
        self.logs_dir = Path(tempfile.mkdtemp()) / "logs"

    def tearDown(self) -> None:
        self._close_handlers()

    def _close_handlers(self) -> None:
        for handler in list(self.root_logger.handlers):
            handler.close()
            self.root_logger.removeHandler(handler)

    def test_setup_creates_log_file(self) -> None:
        """setup_logging returns a path that exists on disk."""
        log_path = setup_logging(self.logs_dir)
        self.assertTrue(log_path.exists())

    def test_log_file_naming_convention(self) -> None:
        """Log file name matches run_YYYYMMDD_HHMMSS.log format."""
        log_path = setup_logging(self.logs_dir)
        self.assertRegex(log_path.name, r"^run_\d{8}_\d{6}\.log$")

    def test_file_handler_level_debug(self) -> None:
        """File handler should be set to DEBUG level."""
        setup_logging(self.logs_dir)
        file_handlers = [
            h for h in self.root_logger.handlers
            if isinstance(h, logging.FileHandler)
        ]
        self.assertEqual(len(file_handlers), 1)
        self.assertEqual(file_handlers[0].level, logging.DEBUG)

    def test_console_handler_level_warning(self) -> None:
        """Console handler should be set to WARNING level."""
        setup_logging(self.logs_dir)
        stream_handlers = [
            h for h in self.root_logger.handlers
            if isinstance(h, logging.StreamHandler)
            and not isinstance(h, logging.FileHandler)
        ]
        self.assertEqual(len(stream_handlers), 1)
        self.assertEqual(stream_handlers[0].level, logging.WARNING)

    def test_repeated_calls_no_duplicate_handlers(self) -> None:
        """Calling setup_logging twice does not duplicate handlers."""
        setup_logging(self.logs_dir)
        count_before = len(self.root_logger.handlers)
        setup_logging(self.logs_dir)
        self.assertEqual(len(self.root_logger.handlers), count_before)

    def test_child_loggers_reach_the_run_file(self) -> None:
        """Messages from supplywatch.* loggers land in the run log."""
        log_path = setup_logging(self.logs_dir)
        logging.getLogger("supplywatch.policy").info("heal started for p-1")
        for handler in self.root_logger.handlers:
            handler.flush()
        self.assertIn("heal started for p-1", log_path.read_text(encoding="utf-8"))

    def test_log_file_inside_logs_dir(self) -> None:
        """Log file is created inside the requested directory."""
        log_path = setup_logging(self.logs_dir)
        self.assertEqual(log_path.parent, self.logs_dir)

    def test_console_level_override(self) -> None:
        """An explicit console level replaces the configured default."""
        setup_logging(self.logs_dir, console_level="info")
        levels = [
            h.level for h in self.root_logger.handlers
            if not isinstance(h, logging.FileHandler)
        ]
        self.assertEqual(levels, [logging.INFO])

    def test_old_runs_pruned(self) -> None:
        """Only the newest LOG_RETENTION run files survive."""
        self.logs_dir.mkdir(parents=True)
        for day in range(1, 6):
            (self.logs_dir / f"run_202601{day:02d}_000000.log").write_text("")
        with patch.object(Settings, "LOG_RETENTION", 3):
            log_path = setup_logging(self.logs_dir)
        remaining = sorted(p.name for p in self.logs_dir.glob("run_*.log"))
        self.assertEqual(
            remaining,
            sorted(["run_20260104_000000.log", "run_20260105_000000.log", log_path.name]),
        )


if __name__ == "__main__":
    unittest.main()
