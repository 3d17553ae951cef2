"""
Driver Dolphin - Settings persistence
"""

import json
from pathlib import Path
from typing import Optional

CONFIG_DIR_NAME = ".driverdolphin"


class AppSettings:
    """Manages application settings persistence"""

    DEFAULT_SETTINGS = {
        "backup_path": "",
        "restore_path": "",
        "selective_backup_path": "",
        "selective_restore_folder": "",
        "window_bounds": {"width": 1100, "height": 760},
        "is_maximized": False,
        "create_restore_point": True,
        "scan_backend": "native",
        "log_to_file": True,
    }

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = config_dir or Path.home() / CONFIG_DIR_NAME
        self.config_file = self.config_dir / "settings.json"
        self.settings = self.load()

    @property
    def log_file(self) -> Path:
        return self.config_dir / "activity.log"

    def load(self) -> dict:
        """Load settings from file or return defaults"""
        try:
            if self.config_file.exists():
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    saved = json.load(f)
                if isinstance(saved, dict):
                    # Merge with defaults to handle new settings
                    return {**self.DEFAULT_SETTINGS, **saved}
        except (OSError, json.JSONDecodeError) as e:
            print(f"Failed to load settings, using defaults: {e}")
        return dict(self.DEFAULT_SETTINGS)

    def save(self):
        """Save settings to file"""
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, 'w', encoding='utf-8') as f:
                json.dump(self.settings, f, indent=2)
        except OSError as e:
            print(f"Failed to save settings: {e}")

    def get(self, key: str, default=None):
        return self.settings.get(key, default)

    def set(self, key: str, value):
        self.settings[key] = value
        self.save()
