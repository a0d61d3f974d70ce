import json

import pytest
from pydantic import ValidationError

from harvest.settings import settings_manager
from harvest.settings.manager import SettingsManager, apply_environment
from harvest.settings.models import AppModel, LoggingModel, Observable
from harvest.utils import data_dir_path


@pytest.fixture()
def settings_filename(monkeypatch):
    filename = "settings-test.json"
    monkeypatch.setenv("HARVEST_SETTINGS_FILENAME", filename)
    yield filename
    (data_dir_path / filename).unlink(missing_ok=True)
    Observable.set_notify_observers(settings_manager.notify_observers)


def test_environment_overrides_defaults(settings_filename, monkeypatch):
    monkeypatch.setenv("HARVEST_SCHEDULER_BATCH_SIZE", "7")
    monkeypatch.setenv("HARVEST_DOWNLOADS_ORGANIZE_ON_COMPLETE", "false")
    monkeypatch.setenv("HARVEST_DOWNLOADS_DOWNLOAD_PATH", "/mnt/media")

    manager = SettingsManager()

    assert manager.settings.scheduler.batch_size == 7
    assert manager.settings.downloads.organize_on_complete is False
    assert manager.settings.downloads.download_path == "/mnt/media"
    assert manager.settings.requests.max_search_attempts == 50


def test_settings_file_round_trip(settings_filename):
    manager = SettingsManager()
    manager.settings.requests.expiry_days = 12
    manager.save()

    reloaded = SettingsManager()

    assert reloaded.settings.requests.expiry_days == 12
    assert json.loads((data_dir_path / settings_filename).read_text())["requests"]["expiry_days"] == 12


def test_invalid_settings_file_is_rejected(settings_filename):
    (data_dir_path / settings_filename).write_text(json.dumps({"scheduler": {"batch_size": 0}}))

    with pytest.raises(ValidationError):
        SettingsManager()


def test_observers_are_notified(settings_filename):
    manager = SettingsManager()
    calls = []
    manager.register_observer(lambda: calls.append(True))

    manager.settings.scheduler.search_interval = 120

    assert calls


@pytest.mark.parametrize("value,expected", [(True, "DEBUG"), (False, "INFO"), ("warning", "WARNING")])
def test_log_level_normalization(value, expected):
    assert AppModel(log_level=value).log_level == expected


def test_empty_compression_is_disabled():
    assert LoggingModel(compression="").compression == "disabled"


def test_environment_wins_over_settings_file(settings_filename, monkeypatch):
    (data_dir_path / settings_filename).write_text(json.dumps({"scheduler": {"batch_size": 4}}))
    monkeypatch.setenv("HARVEST_SCHEDULER_BATCH_SIZE", "9")

    manager = SettingsManager()

    assert manager.settings.scheduler.batch_size == 9


def test_apply_environment_coerces_types(monkeypatch):
    monkeypatch.setenv("HARVEST_LOGGING_ENABLED", "1")
    monkeypatch.setenv("HARVEST_SCHEDULER_BATCH_DELAY", "0.5")
    monkeypatch.setenv("HARVEST_SCHEDULER_BATCH_SIZE", "")

    values = apply_environment(
        {"logging": {"enabled": False}, "scheduler": {"batch_delay": 2.0, "batch_size": 3}}
    )

    assert values == {"logging": {"enabled": True}, "scheduler": {"batch_delay": 0.5, "batch_size": 3}}
