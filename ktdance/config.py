"""
Runtime settings for the decoders and the command line tool.
"""

import json
from dataclasses import dataclass
from pathlib import Path


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


# (key, cast, default)
SETTINGS_FIELDS = [
    ("flip_v", _as_bool, True),
    ("strict_batch_count", _as_bool, False),
    ("default_frame", int, 0),
    ("log_level", lambda v: str(v).upper(), "INFO"),
]


@dataclass(frozen=True)
class Settings:
    flip_v: bool = True                # store UV as (u, 1 - v)
    strict_batch_count: bool = False   # header batch count mismatch is fatal
    default_frame: int = 0             # frame used when none is given or provided
    log_level: str = "INFO"


def load_settings(config_path: Path) -> Settings:
    raw = json.loads(Path(config_path).read_text(encoding="utf-8"))

    values = {}
    for key, cast, default in SETTINGS_FIELDS:
        value = raw[key] if key in raw else default
        values[key] = cast(value)

    return Settings(**values)
