from __future__ import annotations

import json
import shutil
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from loguru import logger

from .models import DEFAULT_UNASSIGNED_BRIDGE_HOST, InstanceSnapshot, MalformedPayload

DEFAULT_GMSAAS_PATH = "gmsaas"

Runner = Callable[..., subprocess.CompletedProcess[str]]


class GmsaasError(RuntimeError):
    def __init__(self, command: Sequence[str], returncode: int, message: str) -> None:
        self.command = list(command)
        self.returncode = returncode
        self.message = message
        super().__init__(f"gmsaas exited with code {returncode}: {message}")


def is_gmsaas_cli_available(gmsaas_path: str = DEFAULT_GMSAAS_PATH) -> bool:
    return shutil.which(gmsaas_path or DEFAULT_GMSAAS_PATH) is not None


def _base_command(gmsaas_path: str) -> list[str]:
    return [gmsaas_path or DEFAULT_GMSAAS_PATH, "--format", "compactjson"]


@dataclass(slots=True, frozen=True)
class GmsaasInstance:
    instance_uuid: str
    gmsaas_path: str = DEFAULT_GMSAAS_PATH

    def build_get_command(self) -> list[str]:
        return self._instances_command("get")

    def build_adb_connect_command(self, adb_port: int | None = None) -> list[str]:
        command = self._instances_command("adbconnect")
        if adb_port:
            command.extend(["--adb-serial-port", str(adb_port)])
        return command

    def build_adb_disconnect_command(self) -> list[str]:
        return self._instances_command("adbdisconnect")

    def build_stop_command(self) -> list[str]:
        return self._instances_command("stop")

    def _instances_command(self, action: str) -> list[str]:
        return [*_base_command(self.gmsaas_path), "instances", action, self.instance_uuid]


def build_list_command(gmsaas_path: str = DEFAULT_GMSAAS_PATH) -> list[str]:
    return [*_base_command(gmsaas_path), "instances", "list"]


def build_start_command(
    recipe_uuid: str,
    name: str,
    *,
    stop_when_inactive: bool = True,
    gmsaas_path: str = DEFAULT_GMSAAS_PATH,
) -> list[str]:
    command = [*_base_command(gmsaas_path), "instances", "start"]
    if stop_when_inactive:
        command.append("--stop-when-inactive")
    command.extend([recipe_uuid, name])
    return command


class GmsaasService:
    """Fetches instance status through the gmsaas CLI and classifies it."""

    def __init__(
        self,
        gmsaas_path: str = DEFAULT_GMSAAS_PATH,
        unassigned_host: str = DEFAULT_UNASSIGNED_BRIDGE_HOST,
        runner: Runner = subprocess.run,
    ) -> None:
        self.gmsaas_path = gmsaas_path or DEFAULT_GMSAAS_PATH
        self.unassigned_host = unassigned_host or DEFAULT_UNASSIGNED_BRIDGE_HOST
        self._runner = runner

    def list_instances(self) -> list[InstanceSnapshot]:
        response = self._run(build_list_command(self.gmsaas_path))
        raw_instances = response.get("instances", [])
        if not isinstance(raw_instances, list):
            raw_instances = []

        snapshots: list[InstanceSnapshot] = []
        for raw in raw_instances:
            try:
                snapshots.append(self._to_snapshot(raw))
            except MalformedPayload as error:
                logger.warning(f"Skipping malformed instance entry: {error}")

        snapshots.sort(key=lambda item: (not item.is_ready(), item.label.lower()))
        return snapshots

    def get_instance(self, instance_uuid: str) -> InstanceSnapshot:
        command = self._instance(instance_uuid).build_get_command()
        return self._single_instance(command)

    def start_instance(
        self,
        recipe_uuid: str,
        name: str,
        *,
        stop_when_inactive: bool = True,
    ) -> InstanceSnapshot:
        command = build_start_command(
            recipe_uuid,
            name,
            stop_when_inactive=stop_when_inactive,
            gmsaas_path=self.gmsaas_path,
        )
        return self._single_instance(command)

    def adb_connect(self, instance_uuid: str, adb_port: int | None = None) -> InstanceSnapshot:
        command = self._instance(instance_uuid).build_adb_connect_command(adb_port)
        return self._single_instance(command)

    def adb_disconnect(self, instance_uuid: str) -> InstanceSnapshot:
        command = self._instance(instance_uuid).build_adb_disconnect_command()
        return self._single_instance(command)

    def stop_instance(self, instance_uuid: str) -> InstanceSnapshot:
        command = self._instance(instance_uuid).build_stop_command()
        return self._single_instance(command)

    def _instance(self, instance_uuid: str) -> GmsaasInstance:
        return GmsaasInstance(instance_uuid=instance_uuid, gmsaas_path=self.gmsaas_path)

    def _single_instance(self, command: list[str]) -> InstanceSnapshot:
        response = self._run(command)
        return self._to_snapshot(response.get("instance"))

    def _to_snapshot(self, raw: Any) -> InstanceSnapshot:
        return InstanceSnapshot.from_payload(raw, unassigned_host=self.unassigned_host)

    def _run(self, command: list[str]) -> dict[str, Any]:
        logger.debug(f"Running {' '.join(command)}")
        try:
            result = self._runner(command, capture_output=True, text=True, check=False)
        except OSError as error:
            raise GmsaasError(command, -1, str(error)) from error

        if result.returncode != 0:
            raise GmsaasError(command, result.returncode, _error_message(result))

        try:
            response = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as error:
            raise GmsaasError(command, result.returncode, f"invalid JSON output: {error}") from error
        if not isinstance(response, dict):
            raise GmsaasError(command, result.returncode, "unexpected JSON output")
        return response


def build_mock_instances(
    unassigned_host: str = DEFAULT_UNASSIGNED_BRIDGE_HOST,
) -> list[InstanceSnapshot]:
    raw_instances = [
        {
            "uuid": "7c1a3f52-2d4b-4f0e-9d55-3b0a8e1f6a01",
            "name": "demo-pixel-api30",
            "state": "ONLINE",
            "adb_serial": "localhost:42001",
            "adb_serial_port": 42001,
            "recipe": {"uuid": "a1b2c3d4-0000-4000-8000-000000000030", "name": "Pixel_API_30"},
        },
        {
            "uuid": "0e9d2b44-8c1f-4a6b-b1d3-5f7e9a2c4b02",
            "name": "demo-pixel-api33",
            "state": "ONLINE",
            "adb_serial": unassigned_host,
            "adb_serial_port": 0,
            "recipe": {"uuid": "a1b2c3d4-0000-4000-8000-000000000033", "name": "Pixel_API_33"},
        },
        {
            "uuid": "5b3e8f10-6a2d-4c9e-8f4a-1d2c3b4a5e03",
            "name": "demo-galaxy-api31",
            "state": "BOOTING",
            "adb_serial": unassigned_host,
            "adb_serial_port": 0,
            "recipe": {"uuid": "a1b2c3d4-0000-4000-8000-000000000031", "name": "Galaxy_S21_API_31"},
        },
        {
            "uuid": "9f4c2a71-3e5b-4d8a-a6c2-7e1f0b9d8c04",
            "name": "demo-broken",
            "state": "ERROR",
            "adb_serial": unassigned_host,
            "adb_serial_port": 0,
            "recipe": {"uuid": "a1b2c3d4-0000-4000-8000-000000000029", "name": "Pixel_API_29"},
        },
    ]
    return [InstanceSnapshot.from_payload(raw, unassigned_host=unassigned_host) for raw in raw_instances]


def _error_message(result: subprocess.CompletedProcess[str]) -> str:
    try:
        payload = json.loads(result.stdout or "")
    except json.JSONDecodeError:
        payload = None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return (result.stderr or "").strip() or "no output"
