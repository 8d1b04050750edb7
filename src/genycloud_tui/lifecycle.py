"""Instance lifecycle polling.

The classifier in :mod:`genycloud_tui.models` only reports what a single
snapshot says. This module turns a sequence of snapshots into lifecycle
progress and decides when an instance has stalled:

    REQUESTED -> INITIALIZING -> READY -> BRIDGE_ESTABLISHED
         \\             \\           \\
          +-------------+-----------+--> STALLED

``BRIDGE_ESTABLISHED`` and ``STALLED`` are terminal.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_delay, wait_fixed

from .gmsaas_api import GmsaasError
from .models import InstanceSnapshot, MalformedPayload

FAILURE_PHASES = frozenset({"ERROR", "DELETING", "DELETED"})


class LifecycleState(Enum):
    REQUESTED = "requested"
    INITIALIZING = "initializing"
    READY = "ready"
    BRIDGE_ESTABLISHED = "bridge-established"
    STALLED = "stalled"


TERMINAL_STATES = frozenset({LifecycleState.BRIDGE_ESTABLISHED, LifecycleState.STALLED})


class InstanceSource(Protocol):
    def get_instance(self, instance_uuid: str) -> InstanceSnapshot: ...

    def adb_connect(self, instance_uuid: str) -> InstanceSnapshot: ...


class InstanceStalledError(RuntimeError):
    def __init__(
        self,
        instance_uuid: str,
        reached: LifecycleState,
        snapshot: InstanceSnapshot | None,
    ) -> None:
        self.instance_uuid = instance_uuid
        self.reached = reached
        self.snapshot = snapshot
        phase = (snapshot.raw_phase or "unknown") if snapshot is not None else "no status"
        super().__init__(f"Instance {instance_uuid} stalled after {reached.value} (phase: {phase})")


class _InstancePendingError(Exception):
    """Instance not yet reachable - retry."""


def advance(state: LifecycleState, snapshot: InstanceSnapshot) -> LifecycleState:
    if state in TERMINAL_STATES:
        return state
    if snapshot.raw_phase in FAILURE_PHASES:
        return LifecycleState.STALLED
    if snapshot.is_ready():
        if snapshot.is_bridge_connected():
            return LifecycleState.BRIDGE_ESTABLISHED
        return LifecycleState.READY
    if snapshot.is_initializing():
        return LifecycleState.INITIALIZING
    return state


@dataclass(slots=True)
class InstanceLifecycleTracker:
    instance_uuid: str
    timeout: float
    clock: Callable[[], float] = time.monotonic
    state: LifecycleState = LifecycleState.REQUESTED
    reached: LifecycleState = LifecycleState.REQUESTED
    last_snapshot: InstanceSnapshot | None = None
    started_at: float = field(init=False)

    def __post_init__(self) -> None:
        self.started_at = self.clock()

    @property
    def is_finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def is_expired(self) -> bool:
        return self.clock() - self.started_at > self.timeout

    def observe(self, snapshot: InstanceSnapshot) -> LifecycleState:
        self.last_snapshot = snapshot
        next_state = advance(self.state, snapshot)
        if next_state not in TERMINAL_STATES and self.is_expired():
            next_state = LifecycleState.STALLED
        self._move_to(next_state)
        return self.state

    def expire(self) -> LifecycleState:
        if not self.is_finished:
            self._move_to(LifecycleState.STALLED)
        return self.state

    def _move_to(self, next_state: LifecycleState) -> None:
        if next_state is self.state:
            return
        if next_state is not LifecycleState.STALLED:
            self.reached = next_state
        logger.info(f"[{self.instance_uuid}] {self.state.value} -> {next_state.value}")
        self.state = next_state


def wait_for_instance(
    source: InstanceSource,
    instance_uuid: str,
    *,
    timeout: float,
    poll_interval: float,
    connect_bridge: bool = True,
) -> InstanceSnapshot:
    """Poll an instance until its ADB bridge is established.

    Args:
        source: Status fetcher, usually a ``GmsaasService``.
        instance_uuid: Instance to follow.
        timeout: Seconds before the instance is considered stalled.
        poll_interval: Seconds between two status fetches.
        connect_bridge: Request an ADB connection once the instance is
            online but has no bridge endpoint yet.

    Returns:
        The first snapshot with the instance online and its bridge assigned.

    A failed status fetch, either a ``GmsaasError`` or a ``MalformedPayload``,
    counts as a pending poll and is retried until ``timeout``.

    Raises:
        InstanceStalledError: The instance reported a failure phase or did
            not come up within ``timeout``.
    """
    tracker = InstanceLifecycleTracker(instance_uuid=instance_uuid, timeout=timeout)
    bridge_requested = False

    @retry(
        stop=stop_after_delay(timeout),
        wait=wait_fixed(poll_interval),
        retry=retry_if_exception_type(_InstancePendingError),
        reraise=True,
    )
    def _poll() -> InstanceSnapshot:
        nonlocal bridge_requested
        try:
            snapshot = source.get_instance(instance_uuid)
            state = tracker.observe(snapshot)
            if state is LifecycleState.READY and connect_bridge and not bridge_requested:
                logger.debug(f"[{instance_uuid}] online without bridge, requesting adb connect")
                snapshot = source.adb_connect(instance_uuid)
                bridge_requested = True
                state = tracker.observe(snapshot)
        except (MalformedPayload, GmsaasError) as error:
            logger.warning(f"[{instance_uuid}] status poll failed: {error}")
            if tracker.is_expired():
                tracker.expire()
                raise InstanceStalledError(instance_uuid, tracker.reached, tracker.last_snapshot) from error
            raise _InstancePendingError() from error

        if state is LifecycleState.BRIDGE_ESTABLISHED:
            return snapshot
        if state is LifecycleState.STALLED:
            raise InstanceStalledError(instance_uuid, tracker.reached, snapshot)
        logger.debug(f"[{instance_uuid}] still {state.value} (phase: {snapshot.raw_phase or 'unknown'})")
        raise _InstancePendingError()

    try:
        return _poll()
    except _InstancePendingError:
        tracker.expire()
        raise InstanceStalledError(instance_uuid, tracker.reached, tracker.last_snapshot) from None
