from loguru import logger

from .models import (
    DEFAULT_UNASSIGNED_BRIDGE_HOST,
    BridgeEndpoint,
    InstanceSnapshot,
    LifecyclePhase,
    MalformedPayload,
    Recipe,
)

logger.disable("genycloud_tui")

__all__ = [
    "DEFAULT_UNASSIGNED_BRIDGE_HOST",
    "BridgeEndpoint",
    "InstanceSnapshot",
    "LifecyclePhase",
    "MalformedPayload",
    "Recipe",
]
