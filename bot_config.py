"""
Bot configuration.

Secrets are plain text files next to the bot (BOT_TOKEN.txt, OSU_CLIENT.txt),
tunables can be overridden through an optional settings.json.
"""

import json
import os
from pathlib import Path
from typing import Dict, Optional, Tuple


BOT_DIR = Path(__file__).parent.absolute()

TOKEN_FILE = BOT_DIR / "BOT_TOKEN.txt"
OSU_CLIENT_FILE = BOT_DIR / "OSU_CLIENT.txt"
SETTINGS_FILE = BOT_DIR / "settings.json"
DB_FILE = BOT_DIR / "stats.db"

DEFAULT_SETTINGS = {
    "active_message_timeout": 60,
    "sweep_interval": 10,
    "miss_analyzer_url": None,
    "miss_analyzer_timeout": 3.0,
    "osu_request_timeout": 15,
    "cache_ttl": 3600,
    "admin_ids": [],
}

# expected type of each setting; None values are allowed where the default is None
_SETTING_TYPES = {
    "active_message_timeout": (int, float),
    "sweep_interval": (int, float),
    "miss_analyzer_url": (str,),
    "miss_analyzer_timeout": (int, float),
    "osu_request_timeout": (int, float),
    "cache_ttl": (int, float),
    "admin_ids": (list,),
}


def _read_text_file(path: Path) -> Optional[str]:
    if path.exists():
        try:
            content = path.read_text(encoding="utf-8").strip()
            if content:
                return content
        except Exception as e:
            print(f"[CONFIG] Failed to read {path.name}: {e}")
    return None


def read_bot_token(path: Path = TOKEN_FILE) -> str:
    token = _read_text_file(path)
    if not token:
        raise ValueError(f"{path.name} is missing or empty")
    return token


def read_osu_client_file(path: Path = OSU_CLIENT_FILE) -> Optional[Tuple[str, str]]:
    """Read the osu! OAuth client id and secret (one per line), if present."""
    content = _read_text_file(path)
    if not content:
        return None
    lines = [line.strip() for line in content.splitlines() if line.strip()]
    if len(lines) < 2:
        print(f"[CONFIG] {path.name} must contain the client id and the client secret on separate lines")
        return None
    return lines[0], lines[1]


def load_settings(path: Path = SETTINGS_FILE) -> Dict:
    settings = dict(DEFAULT_SETTINGS)
    if not os.path.exists(path):
        return settings

    try:
        with open(path, "r", encoding="utf-8") as f:
            overrides = json.load(f)
    except Exception as e:
        print(f"[CONFIG] Failed to load {Path(path).name}, using defaults: {e}")
        return settings

    if not isinstance(overrides, dict):
        print(f"[CONFIG] {Path(path).name} must contain a JSON object, using defaults")
        return settings

    for key, value in overrides.items():
        if key not in DEFAULT_SETTINGS:
            print(f"[CONFIG] Ignoring unknown setting '{key}'")
            continue
        if value is None and DEFAULT_SETTINGS[key] is None:
            settings[key] = None
            continue
        expected = _SETTING_TYPES[key]
        if isinstance(value, bool) or not isinstance(value, expected):
            print(f"[CONFIG] Ignoring setting '{key}': expected {expected[0].__name__}, got {type(value).__name__}")
            continue
        settings[key] = value

    return settings


def is_admin(user_id: int, settings: Dict) -> bool:
    return str(user_id) in {str(admin) for admin in settings.get("admin_ids", [])}
