"""Calendar configuration: destination calendar, timezone and per-place venue/color."""

from __future__ import annotations

import dataclasses
import json
from typing import Any, Dict, Optional

from dateutil import tz

from pool_schedule.errors import ConfigurationError

DEFAULT_COLOR_ID = "1"


@dataclasses.dataclass(frozen=True)
class PlaceConfig:
    address: str = ""
    location: str = ""
    color_id: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class CalendarConfig:
    calendar_id: str
    timezone: str
    places: Dict[str, PlaceConfig] = dataclasses.field(default_factory=dict)
    location: str = ""
    address: str = ""
    color_id: Optional[str] = None

    def place(self, name: str) -> Optional[PlaceConfig]:
        return self.places.get(name)

    def resolve_location(self, place: str) -> str:
        cfg = self.place(place)
        if cfg and (cfg.address or cfg.location):
            return cfg.address or cfg.location
        return self.location or self.address or ""

    def resolve_color_id(self, place: str) -> str:
        cfg = self.place(place)
        raw = cfg.color_id if cfg and cfg.color_id is not None else self.color_id
        return raw if raw else DEFAULT_COLOR_ID


def _color(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value).strip()


def _place_config(raw: Dict[str, Any]) -> PlaceConfig:
    return PlaceConfig(
        address=(raw.get("address") or "").strip(),
        location=(raw.get("location") or "").strip(),
        color_id=_color(raw.get("colorId")),
    )


def config_from_dict(raw: Dict[str, Any]) -> CalendarConfig:
    calendar_id = str(raw.get("calendarId") or "").strip()
    timezone = str(raw.get("timezone") or "").strip()
    if not calendar_id:
        raise ConfigurationError("Missing calendarId in config.")
    if not timezone:
        raise ConfigurationError("Missing timezone in config.")
    if tz.gettz(timezone) is None:
        raise ConfigurationError(f'Unknown timezone "{timezone}" in config.')

    # "locations" is the newer key; it wins when both name the same place.
    places: Dict[str, PlaceConfig] = {}
    for key in ("places", "locations"):
        for name, place_raw in (raw.get(key) or {}).items():
            places[name] = _place_config(place_raw or {})

    return CalendarConfig(
        calendar_id=calendar_id,
        timezone=timezone,
        places=places,
        location=(raw.get("location") or "").strip(),
        address=(raw.get("address") or "").strip(),
        color_id=_color(raw.get("colorId")),
    )


def load_config(path: str) -> CalendarConfig:
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except OSError as e:
        raise ConfigurationError(f"Could not read config {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Config {path} is not valid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config {path} must be a JSON object.")
    return config_from_dict(raw)
