from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .models import DEFAULT_UNASSIGNED_BRIDGE_HOST

DEFAULT_CONFIG_PATH = Path("genycloud.yaml")


@dataclass(slots=True, frozen=True)
class RecipePreset:
    key: str
    label: str
    recipe_uuid: str


@dataclass(slots=True, frozen=True)
class GenyCloudConfig:
    gmsaas_path: str
    unassigned_bridge_host: str
    poll_interval: float
    boot_timeout: float
    stop_when_inactive: bool
    presets: tuple[RecipePreset, ...]


DEFAULT_CONFIG = GenyCloudConfig(
    gmsaas_path="gmsaas",
    unassigned_bridge_host=DEFAULT_UNASSIGNED_BRIDGE_HOST,
    poll_interval=5.0,
    boot_timeout=300.0,
    stop_when_inactive=True,
    presets=(),
)


def load_config(config_path: str | Path | None = None) -> GenyCloudConfig:
    path = Path(config_path).expanduser() if config_path else DEFAULT_CONFIG_PATH
    if not path.is_file():
        return DEFAULT_CONFIG

    with path.open("r", encoding="utf-8") as handle:
        loaded = yaml.safe_load(handle) or {}

    return GenyCloudConfig(
        gmsaas_path=_coerce_text(
            _safe_mapping_get(loaded, "gmsaas_path"),
            fallback=DEFAULT_CONFIG.gmsaas_path,
        ),
        unassigned_bridge_host=_coerce_text(
            _safe_mapping_get(loaded, "unassigned_bridge_host"),
            fallback=DEFAULT_CONFIG.unassigned_bridge_host,
        ),
        poll_interval=_coerce_seconds(
            _safe_mapping_get(loaded, "poll_interval"),
            fallback=DEFAULT_CONFIG.poll_interval,
        ),
        boot_timeout=_coerce_seconds(
            _safe_mapping_get(loaded, "boot_timeout"),
            fallback=DEFAULT_CONFIG.boot_timeout,
        ),
        stop_when_inactive=_coerce_bool(
            _safe_mapping_get(loaded, "stop_when_inactive"),
            fallback=DEFAULT_CONFIG.stop_when_inactive,
        ),
        presets=_parse_presets(_safe_mapping_get(loaded, "recipes")),
    )


def _parse_presets(value: Any) -> tuple[RecipePreset, ...]:
    if isinstance(value, (str, bytes)) or value is None:
        return ()
    parsed: list[RecipePreset] = []
    try:
        iterator = iter(value)
    except TypeError:
        return ()

    for item in iterator:
        try:
            key = str(item["key"]).strip()
        except (KeyError, TypeError):
            continue

        label = str(_safe_mapping_get(item, "label", key)).strip() or key
        recipe_uuid = _coerce_text(_safe_mapping_get(item, "recipe_uuid"), fallback="")
        if not key or not recipe_uuid:
            continue
        parsed.append(RecipePreset(key=key, label=label, recipe_uuid=recipe_uuid))
    return tuple(parsed)


def _coerce_text(value: Any, fallback: str) -> str:
    if not isinstance(value, str):
        return fallback
    return value.strip() or fallback


def _coerce_seconds(value: Any, fallback: float) -> float:
    if isinstance(value, bool):
        return fallback
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return fallback

    if seconds > 0:
        return seconds
    return fallback


def _coerce_bool(value: Any, fallback: bool) -> bool:
    if isinstance(value, bool):
        return value
    return fallback


def _safe_mapping_get(mapping: Any, key: str, fallback: Any = None) -> Any:
    try:
        return mapping[key]
    except (KeyError, TypeError, IndexError):
        return fallback
