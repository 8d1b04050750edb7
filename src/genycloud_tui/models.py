from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

DEFAULT_UNASSIGNED_BRIDGE_HOST = "0.0.0.0"

_ID_KEYS = ("uuid", "id")
_NAME_KEYS = ("name", "display_name", "displayName")
_PHASE_KEYS = ("state", "lifecycle_phase", "lifecyclePhase")
_BRIDGE_KEYS = ("bridge_endpoint", "bridgeEndpoint")


class MalformedPayload(ValueError):
    """Raised when a status payload lacks a usable instance id or recipe."""


class LifecyclePhase(Enum):
    ONLINE = "ONLINE"
    CREATING = "CREATING"
    BOOTING = "BOOTING"
    STARTING = "STARTING"
    UNRECOGNIZED = "UNRECOGNIZED"

    @classmethod
    def parse(cls, raw: Any) -> LifecyclePhase:
        if not isinstance(raw, str) or raw == cls.UNRECOGNIZED.value:
            return cls.UNRECOGNIZED
        try:
            return cls(raw)
        except ValueError:
            return cls.UNRECOGNIZED


INITIALIZING_PHASES = frozenset(
    {
        LifecyclePhase.CREATING,
        LifecyclePhase.BOOTING,
        LifecyclePhase.STARTING,
    }
)


@dataclass(slots=True, frozen=True)
class Recipe:
    recipe_id: str
    name: str

    def __post_init__(self) -> None:
        if not _is_filled(self.recipe_id):
            raise MalformedPayload("recipe id must be a non-empty string")
        if not _is_filled(self.name):
            raise MalformedPayload("recipe name must be a non-empty string")

    @classmethod
    def from_payload(cls, payload: Any) -> Recipe:
        if not isinstance(payload, Mapping):
            raise MalformedPayload(f"recipe must be a mapping, got {type(payload).__name__}")
        return cls(recipe_id=_first_present(payload, _ID_KEYS), name=payload.get("name"))


@dataclass(slots=True, frozen=True)
class BridgeEndpoint:
    host: str
    port: int
    unassigned_host: str = DEFAULT_UNASSIGNED_BRIDGE_HOST

    @classmethod
    def unassigned(cls, unassigned_host: str = DEFAULT_UNASSIGNED_BRIDGE_HOST) -> BridgeEndpoint:
        return cls(host=unassigned_host, port=0, unassigned_host=unassigned_host)

    @property
    def is_assigned(self) -> bool:
        return self.host != self.unassigned_host

    @property
    def serial(self) -> str:
        if not self.is_assigned:
            return "-"
        if ":" in self.host or not self.port:
            return self.host
        return f"{self.host}:{self.port}"


@dataclass(slots=True, frozen=True)
class InstanceSnapshot:
    """One provider status report for a cloud Android instance.

    Snapshots are never updated in place; each poll builds a new one.
    """

    instance_id: str
    display_name: str
    phase: LifecyclePhase
    raw_phase: str
    bridge: BridgeEndpoint
    recipe: Recipe

    @classmethod
    def from_payload(
        cls,
        payload: Any,
        *,
        unassigned_host: str = DEFAULT_UNASSIGNED_BRIDGE_HOST,
    ) -> InstanceSnapshot:
        """Build a snapshot from a raw provider mapping.

        Only the instance id and the recipe are required. Every other field
        falls back to a conservative default: no name, an unrecognized phase
        and an unassigned bridge endpoint.
        """
        if not isinstance(payload, Mapping):
            raise MalformedPayload(f"instance payload must be a mapping, got {type(payload).__name__}")

        instance_id = _first_present(payload, _ID_KEYS)
        if not _is_filled(instance_id):
            raise MalformedPayload("instance payload has no id")
        if "recipe" not in payload:
            raise MalformedPayload(f"instance {instance_id} has no recipe")

        display_name = _first_present(payload, _NAME_KEYS)
        raw_phase = _first_present(payload, _PHASE_KEYS)
        return cls(
            instance_id=instance_id,
            display_name=display_name if isinstance(display_name, str) else "",
            phase=LifecyclePhase.parse(raw_phase),
            raw_phase=raw_phase if isinstance(raw_phase, str) else "",
            bridge=_bridge_from_payload(payload, unassigned_host),
            recipe=Recipe.from_payload(payload["recipe"]),
        )

    def is_bridge_connected(self) -> bool:
        return self.bridge.is_assigned

    def is_ready(self) -> bool:
        return self.phase is LifecyclePhase.ONLINE

    def is_initializing(self) -> bool:
        return self.phase in INITIALIZING_PHASES

    @property
    def recipe_name(self) -> str:
        return self.recipe.name

    @property
    def recipe_id(self) -> str:
        return self.recipe.recipe_id

    @property
    def adb_serial(self) -> str:
        return self.bridge.serial

    @property
    def label(self) -> str:
        return self.display_name or self.instance_id


def _bridge_from_payload(payload: Mapping[str, Any], unassigned_host: str) -> BridgeEndpoint:
    if "adb_serial" in payload:
        host = payload.get("adb_serial")
        port = payload.get("adb_serial_port")
    else:
        nested = _first_present(payload, _BRIDGE_KEYS)
        if not isinstance(nested, Mapping):
            return BridgeEndpoint.unassigned(unassigned_host)
        host = nested.get("host")
        port = nested.get("port")

    return BridgeEndpoint(
        host=host if isinstance(host, str) else unassigned_host,
        port=_coerce_port(port),
        unassigned_host=unassigned_host,
    )


def _coerce_port(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        port = int(value)
    except (TypeError, ValueError):
        return 0

    if 0 <= port <= 65535:
        return port
    return 0


def _first_present(mapping: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if mapping.get(key) is not None:
            return mapping[key]
    return None


def _is_filled(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())
