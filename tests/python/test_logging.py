"""Tests for logging module."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from audit_ops.config import LoggingConfig
from audit_ops.exceptions import ConfigurationError, ErrorCode, StoreUnavailableError
from audit_ops.logging import MASK, get_logger, log_file_path, setup_logging, with_context


def _flush() -> None:
    for handler in logging.getLogger().handlers:
        handler.flush()


def _stderr_json(capsys: pytest.CaptureFixture[str]) -> list[dict]:
    return [json.loads(line) for line in capsys.readouterr().err.strip().splitlines()]


class TestSetupLogging:
    """Test logging setup."""

    def test_console_goes_to_stderr(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging(settings=LoggingConfig(file_enabled=False))
        get_logger("test_console").info("sweep_started", rule_count=6)

        captured = capsys.readouterr()
        assert "sweep_started" in captured.err
        assert captured.out == ""

    def test_json_console_format(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging(settings=LoggingConfig(format="json", file_enabled=False))
        get_logger("test_json").info("backup_created", store="postgres")

        record = _stderr_json(capsys)[-1]
        assert record["event"] == "backup_created"
        assert record["store"] == "postgres"
        assert record["service"] == "audit-ops"

    def test_level_filters_info(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging(settings=LoggingConfig(level="WARNING", file_enabled=False))
        get_logger("test_level").info("hidden_event")

        assert "hidden_event" not in capsys.readouterr().err

    def test_level_argument_overrides_settings(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging("DEBUG", settings=LoggingConfig(level="ERROR", file_enabled=False))
        get_logger("test_override").debug("command_started")

        assert "command_started" in capsys.readouterr().err

    def test_defaults_to_active_config(self) -> None:
        assert setup_logging(console=False) is None

    def test_jsonl_file(self, tmp_path: Path) -> None:
        settings = LoggingConfig(directory=str(tmp_path / "nested" / "logs"))

        path = setup_logging(settings=settings, console=False)
        get_logger("test_file").info("snapshot_pruned", path="/b/x.sql.gz")
        _flush()

        assert path == tmp_path / "nested" / "logs" / "audit-ops.jsonl"
        record = json.loads(path.read_text().strip().splitlines()[-1])
        assert record["event"] == "snapshot_pruned"
        assert record["level"] == "info"
        assert "timestamp" in record
        assert "host" in record

    def test_exception_is_structured_in_file(self, tmp_path: Path) -> None:
        path = setup_logging(settings=LoggingConfig(directory=str(tmp_path)), console=False)

        try:
            raise RuntimeError("boom")
        except RuntimeError:
            get_logger("test_exc").exception("sweep_rule_failed", rule="query_logs")
        _flush()

        record = json.loads(path.read_text().strip().splitlines()[-1])
        assert record["exception"][0]["exc_type"] == "RuntimeError"
        assert record["exception"][0]["exc_value"] == "boom"

    def test_unusable_directory_raises_configuration_error(self, tmp_path: Path) -> None:
        blocker = tmp_path / "logs"
        blocker.write_text("")

        with pytest.raises(ConfigurationError) as exc_info:
            setup_logging(settings=LoggingConfig(directory=str(blocker)), console=False)

        assert exc_info.value.error_code == ErrorCode.CONFIG_PATH_UNUSABLE
        assert exc_info.value.context["path"] == str(blocker)


class TestSecretMasking:
    """Test credential masking."""

    def test_top_level_fields(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging(settings=LoggingConfig(format="json", file_enabled=False))
        get_logger("test_mask").info("config_loaded", mongo_password="audit_pass", user="audit_user")

        record = _stderr_json(capsys)[-1]
        assert record["mongo_password"] == MASK
        assert record["user"] == "audit_user"

    def test_error_context(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging(settings=LoggingConfig(format="json", file_enabled=False))
        error = StoreUnavailableError.unreachable("neo4j", "refused")
        error.context["password"] = "audit_pass"

        get_logger("test_mask").error("command_failed", **error.to_dict())

        record = _stderr_json(capsys)[-1]
        assert record["context"]["password"] == MASK
        assert record["context"]["store"] == "neo4j"

    def test_empty_secret_is_kept(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging(settings=LoggingConfig(format="json", file_enabled=False))
        get_logger("test_mask").info("config_loaded", postgres_password="")

        assert _stderr_json(capsys)[-1]["postgres_password"] == ""


class TestContext:
    """Test context binding."""

    def test_with_context_binds_fields(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging(settings=LoggingConfig(format="json", file_enabled=False))

        with with_context(run_id="abc123"):
            get_logger("test_ctx").info("inside")
        get_logger("test_ctx").info("outside")

        lines = _stderr_json(capsys)
        inside = next(x for x in lines if x["event"] == "inside")
        outside = next(x for x in lines if x["event"] == "outside")
        assert inside["run_id"] == "abc123"
        assert "run_id" not in outside


def test_log_file_path() -> None:
    settings = LoggingConfig(directory="var/log", file_name="ops.jsonl")

    assert log_file_path(settings) == Path("var/log") / "ops.jsonl"
