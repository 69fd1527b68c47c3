"""
Unit Tests - Configuration
"""
import logging
from datetime import date, datetime

import pytest
import structlog
from pydantic import ValidationError

from territory_revenue.clock import fixed_clock, today
from territory_revenue.config import AttributionPolicy, Settings
from territory_revenue.config.logging import configure_logging
from territory_revenue.config.settings import CalendarSettings, DatabaseSettings, MonitoringSettings
from territory_revenue.database import close_database, get_session_factory, init_database


class TestSettings:
    """Tests for environment driven settings"""

    def test_defaults(self, test_settings):
        assert test_settings.app_env == "testing"
        assert test_settings.attribution.policy == AttributionPolicy.FIXED_REFERENCE
        assert test_settings.calendar.start_date == date(2022, 1, 1)
        assert not test_settings.is_production

    def test_policy_from_environment(self, monkeypatch):
        monkeypatch.setenv("ATTRIBUTION_POLICY", "as_of_date")

        assert Settings().attribution.policy == AttributionPolicy.AS_OF_DATE

    def test_unknown_environment_rejected(self):
        with pytest.raises(ValidationError):
            Settings(app_env="moon")

    def test_inverted_calendar_rejected(self, monkeypatch):
        monkeypatch.setenv("CALENDAR_START_DATE", "2025-01-01")
        monkeypatch.setenv("CALENDAR_END_DATE", "2024-01-01")

        with pytest.raises(ValidationError):
            CalendarSettings()

    def test_database_url_override(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///./warehouse.db")

        assert DatabaseSettings().async_url == "sqlite+aiosqlite:///./warehouse.db"

    def test_postgres_url(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.setenv("POSTGRES_HOST", "db.internal")

        assert DatabaseSettings().async_url.startswith("postgresql+asyncpg://")
        assert "@db.internal:5432/" in DatabaseSettings().async_url


class TestClock:
    def test_fixed_clock(self, clock):
        assert clock() == clock()
        assert today(clock) == date(2026, 10, 19)

    def test_fixed_clock_date(self):
        assert today(fixed_clock(datetime(2024, 7, 1, 23, 59))) == date(2024, 7, 1)


class TestMonitoringSettings:
    def test_module_levels_from_environment(self, monkeypatch):
        monkeypatch.setenv("LOG_MODULE_LEVELS", '{"territory_revenue.dimensions": "debug"}')

        assert MonitoringSettings().log_module_levels == {"territory_revenue.dimensions": "DEBUG"}

    def test_quiet_drivers_by_default(self, monkeypatch):
        monkeypatch.delenv("LOG_MODULE_LEVELS", raising=False)

        assert MonitoringSettings().log_module_levels["sqlalchemy.engine"] == "WARNING"

    def test_unknown_level_rejected(self, monkeypatch):
        monkeypatch.setenv("LOG_MODULE_LEVELS", '{"territory_revenue.facts": "LOUD"}')

        with pytest.raises(ValidationError):
            MonitoringSettings()


class TestLogging:
    """Tests for structlog and stdlib logger wiring"""

    @pytest.fixture
    def restore_logging(self):
        root = logging.getLogger()
        level, handlers = root.level, root.handlers[:]
        touched = ["territory_revenue.dimensions", "territory_revenue.facts", "sqlalchemy.engine", "aiosqlite"]
        saved = {name: logging.getLogger(name).level for name in touched}

        yield

        root.handlers = handlers
        root.setLevel(level)
        for name, saved_level in saved.items():
            logging.getLogger(name).setLevel(saved_level)
        structlog.reset_defaults()

    def test_configure_logging_sets_level(self, restore_logging):
        configure_logging("DEBUG")

        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("sqlalchemy.engine").propagate is False

    def test_store_loggers_follow_module_levels(self, restore_logging):
        """Test a package override reaches every store module below it"""
        configure_logging("INFO", module_levels={
            "territory_revenue.dimensions": "DEBUG",
            "territory_revenue.facts": "ERROR",
        })

        assert logging.getLogger("territory_revenue.dimensions.customer").getEffectiveLevel() == logging.DEBUG
        assert logging.getLogger("territory_revenue.dimensions.versioning").isEnabledFor(logging.DEBUG)
        assert not logging.getLogger("territory_revenue.facts.revenue").isEnabledFor(logging.WARNING)
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    def test_unknown_module_level_rejected(self, restore_logging):
        with pytest.raises(ValueError):
            configure_logging("INFO", module_levels={"territory_revenue.facts": "LOUD"})


class TestDatabaseLifecycle:
    async def test_session_factory_requires_init(self):
        await init_database("sqlite+aiosqlite:///:memory:", create_tables=True)
        try:
            assert get_session_factory() is not None
        finally:
            await close_database()

        with pytest.raises(RuntimeError):
            get_session_factory()
