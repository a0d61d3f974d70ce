import json
import os
from typing import Any

from loguru import logger
from pydantic import ValidationError

from harvest.settings.models import AppModel, Observable
from harvest.utils import data_dir_path

ENV_PREFIX = "HARVEST"


def _coerce(raw: str, current: Any) -> Any:
    """Convert an environment string to the type of the value it replaces."""
    if isinstance(current, bool):
        return raw.lower() in ("true", "1")
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    if isinstance(current, list):
        return json.loads(raw)
    return raw


def apply_environment(values: dict[str, Any], prefix: str = ENV_PREFIX) -> dict[str, Any]:
    """
    Overlay `PREFIX_SECTION_KEY` environment variables onto a settings dict.

    `HARVEST_SCHEDULER_BATCH_SIZE=5` overrides `scheduler.batch_size`. Empty
    variables are ignored.
    """
    result = {}
    for key, value in values.items():
        name = f"{prefix}_{key}".upper()
        if isinstance(value, dict):
            result[key] = apply_environment(value, name)
        elif raw := os.getenv(name):
            result[key] = _coerce(raw, value)
        else:
            result[key] = value
    return result


class SettingsManager:
    """Owns the validated settings and their json file. Environment variables win over the file."""

    def __init__(self):
        self.observers = []
        self.filename = os.getenv("HARVEST_SETTINGS_FILENAME", "settings.json")
        self.settings_file = data_dir_path / self.filename

        Observable.set_notify_observers(self.notify_observers)

        if self.settings_file.exists():
            self.load()
        else:
            # first run, the file is written once the program starts
            self.settings = AppModel.model_validate(
                apply_environment(AppModel().model_dump(mode="json"))
            )
            self.notify_observers()

    def register_observer(self, observer):
        self.observers.append(observer)

    def notify_observers(self):
        for observer in self.observers:
            observer()

    def load(self):
        """Validate the settings file with environment overrides, then save it back."""
        try:
            settings_dict = json.loads(self.settings_file.read_text(encoding="utf-8"))
            self.settings = AppModel.model_validate(apply_environment(settings_dict))
        except ValidationError as e:
            logger.error(f"Settings validation failed:\n{format_validation_error(e)}")
            raise
        except json.JSONDecodeError as e:
            logger.error(f"Error parsing settings file {self.settings_file}: {e}")
            raise

        self.save()
        self.notify_observers()

    def save(self):
        os.makedirs(self.settings_file.parent, exist_ok=True)
        self.settings_file.write_text(self.settings.model_dump_json(indent=4), encoding="utf-8")


def format_validation_error(e: ValidationError) -> str:
    return "\n".join(
        f"- {'.'.join(str(part) for part in error['loc'])}: {error.get('msg')}"
        for error in e.errors()
    )


settings_manager = SettingsManager()
