import logging

from library_store.config import Settings, _env_flag, configure_logging


def test_settings_can_be_overridden():
    config = Settings(storage_type="memory", db_path="/tmp/x.db", storage_fallback=False)

    assert config.storage_type == "memory"
    assert config.db_path == "/tmp/x.db"
    assert config.storage_fallback is False


def test_env_flag(monkeypatch):
    monkeypatch.setenv("LIBRARY_TEST_FLAG", "Yes")
    assert _env_flag("LIBRARY_TEST_FLAG", "false") is True

    monkeypatch.setenv("LIBRARY_TEST_FLAG", "0")
    assert _env_flag("LIBRARY_TEST_FLAG", "true") is False

    monkeypatch.delenv("LIBRARY_TEST_FLAG")
    assert _env_flag("LIBRARY_TEST_FLAG", "true") is True


def test_configure_logging_sets_level():
    root = logging.getLogger()
    previous = root.level
    try:
        configure_logging("debug")
        assert root.level == logging.DEBUG
    finally:
        root.setLevel(previous)
