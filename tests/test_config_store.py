"""
Tests for config_store (settings + JSON cache) and logging setup.
"""

from __future__ import annotations

import logging

import pytest

from Trip_Sense import config_store
from Trip_Sense.config_store import (
    TripConfig,
    cache_clear,
    cache_get,
    cache_set,
    get_config_dir,
    load_config,
    save_config,
    set_section_rank_override,
    set_store_priority,
)
from Trip_Sense.logging_config import ROOT_LOGGER_NAME, configure_logging


@pytest.fixture
def restore_package_logger():
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    saved = (list(logger.handlers), logger.level, logger.propagate)
    yield logger
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    handlers, level, propagate = saved
    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = propagate


class TestConfig:
    def test_defaults_when_missing(self, isolated_env):
        cfg = load_config()
        assert cfg == TripConfig()
        assert get_config_dir() == isolated_env / "config"

    def test_save_and_reload(self):
        cfg = load_config()
        cfg.provisional_confidence_threshold = 0.75
        cfg.deals_feed_url = "http://feed.test"
        save_config(cfg)

        again = load_config()
        assert again.provisional_confidence_threshold == 0.75
        assert again.deals_feed_url == "http://feed.test"

    def test_store_priority_and_rank_overrides(self):
        set_store_priority([" FreshMart ", "", "Value Foods"])
        set_section_rank_override("bakery", 5)

        cfg = load_config()
        assert cfg.store_priority == ["FreshMart", "Value Foods"]
        assert cfg.section_rank_overrides == {"bakery": 5}

    def test_bad_values_fall_back_to_defaults(self):
        cfg = TripConfig.from_dict(
            {
                "provisional_confidence_threshold": "high",
                "persistence_retry_attempts": 0,
                "section_rank_overrides": {"dairy": "x", "meat": "7"},
                "log_level": "debug",
            }
        )
        assert cfg.provisional_confidence_threshold == 0.6
        assert cfg.persistence_retry_attempts == 1
        assert cfg.section_rank_overrides == {"meat": 7}
        assert cfg.log_level == "DEBUG"

    def test_corrupt_file_gives_defaults(self):
        path = get_config_dir() / "trip_config.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("{not json", encoding="utf-8")
        assert load_config() == TripConfig()


class TestCache:
    def test_set_and_get(self):
        cache_set("deals:1", [{"product_name": "milk"}])
        assert cache_get("deals:1") == [{"product_name": "milk"}]
        assert cache_get("deals:2") is None

    def test_expired_entries_are_ignored(self):
        cache_set("deals:1", [])
        assert cache_get("deals:1", max_age_days=-1) is None

    def test_clear_by_prefix(self):
        cache_set("deals:1", [])
        cache_set("deals:all", [])
        cache_set("classify:2024.1:milk", {"category": "dairy"})

        assert cache_clear("deals:") == 2
        assert cache_get("classify:2024.1:milk") == {"category": "dairy"}
        assert cache_clear() == 1


class TestLogging:
    def test_console_only(self, restore_package_logger):
        logger = configure_logging("debug")
        assert logger.name == ROOT_LOGGER_NAME
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1

    def test_file_handler_and_env_level(self, restore_package_logger, tmp_path, monkeypatch):
        monkeypatch.setenv("TRIP_SENSE_LOG_LEVEL", "warning")
        log_file = tmp_path / "logs" / "trip.log"

        logger = configure_logging(log_file=str(log_file))
        logging.getLogger(f"{ROOT_LOGGER_NAME}.services.test").warning("hello from the test")

        assert logger.level == logging.WARNING
        assert len(logger.handlers) == 2
        for handler in logger.handlers:
            handler.flush()
        assert "hello from the test" in log_file.read_text(encoding="utf-8")

    def test_repeat_calls_do_not_stack_handlers(self, restore_package_logger):
        configure_logging("info")
        logger = configure_logging("info")
        assert len(logger.handlers) == 1


def test_config_module_exposes_env_name():
    assert config_store.CONFIG_DIR_ENV == "TRIP_SENSE_CONFIG_DIR"
