"""Configuration: data directory discovery, settings file, validated Config."""

import dataclasses
import os
import pathlib

from incr.errors import ConfigError
from incr.models import FLASHCARD, MAX_PRIORITY, MIN_PRIORITY

FULL = "full"
LIGHT = "light"
PERFORMANCE_MODES = (FULL, LIGHT)
PLATFORMS = ("desktop", "web", "mobile")


@dataclasses.dataclass
class Config:
    initial_interval: float = 1
    multiplier: float = 1.5
    truncate_intervals: bool = False
    default_priority_incremental: int = 10
    default_priority_flashcard: int = 50
    performance_mode: str = LIGHT
    always_light_on_mobile: bool = True
    always_light_on_web: bool = True
    platform: str = "desktop"
    display_priority_shield: bool = True
    shield_top_k: int = 3
    pretag_chunk_size: int = 200
    pretag_yield_seconds: float = 0

    @classmethod
    def from_settings(cls, settings: dict) -> "Config":
        """Build a Config from a settings dict, ignoring unknown keys."""
        names = {f.name for f in dataclasses.fields(cls)}
        cfg = cls(**{k: v for k, v in settings.items() if k in names})
        cfg.validate()
        return cfg

    def validate(self):
        problems = []
        for key in ("initial_interval", "multiplier"):
            value = getattr(self, key)
            if not _is_number(value) or value <= 0:
                problems.append(f"{key} must be a number > 0, got {value!r}")
        for key in ("default_priority_incremental", "default_priority_flashcard"):
            value = getattr(self, key)
            if not _is_int(value) or not MIN_PRIORITY <= value <= MAX_PRIORITY:
                problems.append(
                    f"{key} must be an integer {MIN_PRIORITY}-{MAX_PRIORITY}, got {value!r}")
        for key in ("shield_top_k", "pretag_chunk_size"):
            value = getattr(self, key)
            if not _is_int(value) or value < 1:
                problems.append(f"{key} must be an integer >= 1, got {value!r}")
        if not _is_number(self.pretag_yield_seconds) or self.pretag_yield_seconds < 0:
            problems.append(
                f"pretag_yield_seconds must be a number >= 0, got {self.pretag_yield_seconds!r}")
        if self.performance_mode not in PERFORMANCE_MODES:
            problems.append(f"performance_mode must be one of {PERFORMANCE_MODES}, "
                            f"got {self.performance_mode!r}")
        if self.platform not in PLATFORMS:
            problems.append(f"platform must be one of {PLATFORMS}, got {self.platform!r}")
        if problems:
            raise ConfigError(problems)

    def default_priority(self, kind: str) -> int:
        if kind == FLASHCARD:
            return self.default_priority_flashcard
        return self.default_priority_incremental

    def effective_mode(self) -> str:
        """performance_mode after the mobile/web light-mode overrides."""
        if self.performance_mode == FULL:
            if self.platform == "mobile" and self.always_light_on_mobile:
                return LIGHT
            if self.platform == "web" and self.always_light_on_web:
                return LIGHT
        return self.performance_mode


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def get_incr_dir() -> pathlib.Path:
    env = os.environ.get("INCR_DIR")
    if env:
        return pathlib.Path(env)
    config_path = pathlib.Path.home() / ".config" / "incr" / "config"
    if config_path.exists():
        for line in config_path.read_text().splitlines():
            line = line.strip()
            if line.startswith("DIR="):
                return pathlib.Path(line[4:].strip())
    return pathlib.Path.home() / ".local" / "share" / "incr"


def load_settings(incr_dir: pathlib.Path) -> dict:
    settings_path = incr_dir / "settings.toml"
    settings = dataclasses.asdict(Config())
    if settings_path.exists():
        settings.update(_parse_toml_simple(settings_path.read_text()))
    return settings


def _parse_toml_simple(text: str) -> dict:
    """Minimal TOML parser for flat key=value files."""
    result = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" in line:
            k, v = line.split("=", 1)
            k = k.strip()
            v = v.strip()
            if v.startswith('"') and v.endswith('"'):
                v = v[1:-1]
            elif v == "true":
                v = True
            elif v == "false":
                v = False
            else:
                v = _parse_number(v)
            result[k] = v
    return result


def _parse_number(v: str):
    try:
        return int(v)
    except ValueError:
        pass
    try:
        return float(v)
    except ValueError:
        return v
