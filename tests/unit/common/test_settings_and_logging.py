"""Tests for settings, logger setup and JSON snapshot helpers."""

import logging
from datetime import date, datetime
from decimal import Decimal

import pytest

from backoffice.common.jsonutils import to_jsonable
from backoffice.common.logger import setup_logger
from backoffice.core.config import Settings


class TestSettings:

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("DEFAULT_TIMEOUT_HOURS", raising=False)
        settings = Settings(_env_file=None)

        assert settings.default_timeout_hours == 72
        assert settings.default_branch_id is None
        assert settings.draft_entity_state == "borrador"
        assert settings.log_to_file is False

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_TIMEOUT_HOURS", "24")
        monkeypatch.setenv("default_branch_id", "3")
        monkeypatch.setenv("DATABASE_URL", "sqlite:///:memory:")

        settings = Settings(_env_file=None)
        assert settings.default_timeout_hours == 24
        assert settings.default_branch_id == 3
        assert settings.database_url == "sqlite:///:memory:"

    def test_env_file(self, tmp_path):
        env = tmp_path / ".env"
        env.write_text("DRAFT_ENTITY_STATE=en_edicion\nUNRELATED_SETTING=1\n")

        assert Settings(_env_file=str(env)).draft_entity_state == "en_edicion"


class TestSetupLogger:

    @pytest.fixture
    def log_settings(self, tmp_path):
        return Settings(_env_file=None, log_dir=str(tmp_path / "logs"), log_level="INFO", log_to_file=False)

    def test_console_only_by_default(self, log_settings, tmp_path):
        logger = setup_logger("backoffice-test-console", log_settings)

        assert logger.level == logging.INFO
        assert len(logger.handlers) == 1
        assert not list(tmp_path.iterdir())

    def test_file_logging(self, log_settings, tmp_path):
        log_dir = tmp_path / "other"
        logger = setup_logger("backoffice-test-file", log_settings, log_dir=str(log_dir), level="debug",
                              file_logging=True, console_logging=False)
        logger.debug("hola")
        for handler in logger.handlers:
            handler.flush()

        assert logger.level == logging.DEBUG
        assert "hola" in (log_dir / "backoffice-test-file.log").read_text()

    def test_file_settings_come_from_settings(self, tmp_path):
        settings = Settings(_env_file=None, log_dir=str(tmp_path / "var"), log_level="WARNING",
                            log_to_file=True, log_max_bytes=2048, log_backup_count=2)
        logger = setup_logger("backoffice-test-settings", settings, console_logging=False)

        assert logger.level == logging.WARNING
        handler = logger.handlers[0]
        assert handler.baseFilename == str(tmp_path / "var" / "backoffice-test-settings.log")
        assert handler.maxBytes == 2048
        assert handler.backupCount == 2

    def test_no_duplicate_handlers(self, log_settings):
        first = setup_logger("backoffice-test-dup", log_settings)
        second = setup_logger("backoffice-test-dup", log_settings, level="error")

        assert first is second
        assert len(second.handlers) == 1
        assert second.level == logging.ERROR

    @pytest.mark.parametrize("level", ["chatty", "handlers"])
    def test_invalid_level(self, log_settings, level):
        with pytest.raises(ValueError, match="Invalid log level"):
            setup_logger("backoffice-test-bad", log_settings, level=level)


class TestToJsonable:

    def test_converts_nested_values(self):
        snapshot = {
            "total": Decimal("8000.00"),
            "descuento": Decimal("0.15"),
            "fecha": date(2026, 1, 2),
            "creada": datetime(2026, 1, 2, 3, 4, 5),
            "lineas": ({"cantidad": Decimal("2")},),
            5: "clave numérica",
        }

        assert to_jsonable(snapshot) == {
            "total": 8000,
            "descuento": "0.15",
            "fecha": "2026-01-02",
            "creada": "2026-01-02T03:04:05",
            "lineas": [{"cantidad": 2}],
            "5": "clave numérica",
        }

    def test_large_amounts_keep_every_digit(self):
        snapshot = {
            "total": Decimal("12345678901234567.89"),
            "unidades": Decimal("123456789012345678901"),
        }

        assert to_jsonable(snapshot) == {
            "total": "12345678901234567.89",
            "unidades": 123456789012345678901,
        }

    @pytest.mark.parametrize("value", [
        Decimal("Infinity"),
        Decimal("-Infinity"),
        Decimal("NaN"),
        float("inf"),
        float("nan"),
    ])
    def test_non_finite_numbers_rejected(self, value):
        with pytest.raises(ValueError, match="non-finite"):
            to_jsonable({"total": value})

    def test_plain_values_untouched(self):
        assert to_jsonable("x") == "x"
        assert to_jsonable(None) is None
        assert to_jsonable(True) is True
