from __future__ import annotations

import argparse
import shlex
import subprocess
import sys
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import cast

from textual import on, work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.css.query import NoMatches
from textual.screen import ModalScreen
from textual.widgets import Button, DataTable, Footer, Header, Input, Label, Log, Select, Static
from textual.worker import Worker, WorkerState

if __package__ in (None, ""):
    sys.path.append(str(Path(__file__).resolve().parents[1]))
    from genycloud_tui.config import DEFAULT_CONFIG_PATH, GenyCloudConfig, load_config
    from genycloud_tui.gmsaas_api import (
        GmsaasInstance,
        GmsaasService,
        build_mock_instances,
        build_start_command,
        is_gmsaas_cli_available,
    )
    from genycloud_tui.lifecycle import wait_for_instance
    from genycloud_tui.log import LogConfig, setup_logging, teardown_logging
    from genycloud_tui.models import InstanceSnapshot
else:
    from .config import DEFAULT_CONFIG_PATH, GenyCloudConfig, load_config
    from .gmsaas_api import (
        GmsaasInstance,
        GmsaasService,
        build_mock_instances,
        build_start_command,
        is_gmsaas_cli_available,
    )
    from .lifecycle import wait_for_instance
    from .log import LogConfig, setup_logging, teardown_logging
    from .models import InstanceSnapshot

INSTANCE_ACTIONS = {
    "adbconnect": "ADB connect",
    "adbdisconnect": "ADB disconnect",
    "stop": "Stop",
}


class StartInstanceScreen(ModalScreen[tuple[str, str] | None]):
    BINDINGS = [Binding("escape", "cancel", "Cancel")]

    def __init__(self, config: GenyCloudConfig) -> None:
        super().__init__()
        self.config = config
        self.preset_by_key = {preset.key: preset for preset in self.config.presets}

    def compose(self) -> ComposeResult:
        with Vertical(id="start-modal"):
            yield Label("Start Cloud Instance", id="start-modal-title")
            yield Label("Instance name")
            yield Input(value=f"e2e-{datetime.now().strftime('%Y%m%d-%H%M%S')}", id="instance-name")
            yield Label("Recipe preset")
            yield Select(
                [("Custom", "custom"), *[(preset.label, preset.key) for preset in self.config.presets]],
                allow_blank=False,
                value="custom",
                id="recipe-preset",
            )
            yield Label("Recipe UUID")
            yield Input(value="", placeholder="Recipe UUID from `gmsaas recipes list`", id="recipe-uuid")
            with Horizontal(id="start-modal-buttons"):
                yield Button("Cancel", id="cancel-start")
                yield Button("Start", variant="primary", id="confirm-start")

    @on(Select.Changed, "#recipe-preset")
    def on_preset_changed(self, event: Select.Changed) -> None:
        if event.value == Select.BLANK:
            return
        try:
            preset = self.preset_by_key[str(event.value)]
        except KeyError:
            return
        self.query_one("#recipe-uuid", Input).value = preset.recipe_uuid

    async def action_cancel(self) -> None:
        self.dismiss(None)

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "cancel-start":
            self.dismiss(None)
            return
        name = self.query_one("#instance-name", Input).value.strip()
        recipe_uuid = self.query_one("#recipe-uuid", Input).value.strip()
        if not name:
            self.app.notify("Instance name is required.", severity="error")
            return
        if not recipe_uuid:
            self.app.notify("Recipe UUID is required.", severity="error")
            return
        self.dismiss((name, recipe_uuid))


class InstanceInfoScreen(ModalScreen[None]):
    BINDINGS = [
        Binding("escape", "close", "Close"),
        Binding("c", "adb_connect", "ADB connect"),
        Binding("d", "adb_disconnect", "ADB disconnect"),
        Binding("x", "stop_instance", "Stop"),
    ]

    def __init__(self, instance: InstanceSnapshot) -> None:
        super().__init__()
        self.instance = instance

    def compose(self) -> ComposeResult:
        with Vertical(id="instance-info-modal"):
            yield Label(f"{self.instance.label} ({self.instance.instance_id})", id="instance-info-title")
            yield Static(self._instance_meta_text(), id="instance-info-meta")
            with Horizontal(id="instance-info-actions"):
                yield Button("ADB connect", variant="primary", id="info-connect")
                yield Button("ADB disconnect", id="info-disconnect")
                yield Button("Stop", variant="error", id="info-stop")
                yield Button("Close", id="info-close")

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        match event.button.id:
            case "info-connect":
                self.action_adb_connect()
            case "info-disconnect":
                self.action_adb_disconnect()
            case "info-stop":
                self.action_stop_instance()
            case "info-close":
                self.action_close()

    def action_close(self) -> None:
        self.dismiss(None)

    def action_adb_connect(self) -> None:
        self._run_and_close("adbconnect")

    def action_adb_disconnect(self) -> None:
        self._run_and_close("adbdisconnect")

    def action_stop_instance(self) -> None:
        self._run_and_close("stop")

    def _run_and_close(self, action: str) -> None:
        app = cast(GenyCloudTuiApp, self.app)
        app.request_instance_action(self.instance, action)
        self.dismiss(None)

    def _instance_meta_text(self) -> str:
        instance = self.instance
        return "\n".join(
            (
                f"Phase: {instance.raw_phase or '-'} ({instance.phase.name.lower()})",
                f"Ready: {_yes_no(instance.is_ready())} | Initializing: {_yes_no(instance.is_initializing())}",
                f"ADB: {instance.adb_serial} | Bridge connected: {_yes_no(instance.is_bridge_connected())}",
                f"Recipe: {instance.recipe_name} ({instance.recipe_id})",
            )
        )


class GenyCloudTuiApp(App[None]):
    CSS_PATH = "styles.tcss"
    TITLE = "Genymotion Cloud TUI"
    SUB_TITLE = "Cloud Android instances + ADB"
    BINDINGS = [
        Binding("r", "refresh", "Refresh"),
        Binding("n", "new_instance", "New"),
        Binding("c", "adb_connect", "ADB connect"),
        Binding("d", "adb_disconnect", "ADB disconnect"),
        Binding("x", "stop_instance", "Stop"),
        Binding("y", "copy_command", "Copy cmd"),
        Binding("q", "quit", "Quit"),
    ]

    def __init__(
        self,
        *,
        gmsaas_path: str | None = None,
        config_path: str | None = None,
    ) -> None:
        super().__init__()
        self.config = load_config(config_path)
        self.gmsaas_path = gmsaas_path or self.config.gmsaas_path
        self.gmsaas_cli_available = is_gmsaas_cli_available(self.gmsaas_path)
        self.service = GmsaasService(
            gmsaas_path=self.gmsaas_path,
            unassigned_host=self.config.unassigned_bridge_host,
        )
        self.instances: list[InstanceSnapshot] = []
        self.current_command = ""
        self.loading = False

    def compose(self) -> ComposeResult:
        yield Header()
        with Horizontal(id="actions-bar"):
            yield Button("Refresh", variant="primary", id="refresh")
            yield Button("New instance", id="new-instance")
            yield Button("ADB connect", id="adb-connect")
            yield Button("Stop", id="stop-instance")
        yield DataTable(id="instance-table")
        yield Static("Loading instances...", id="status")
        with Horizontal(id="command-bar"):
            yield Label("Command", id="command-label")
            yield Input(
                value="",
                placeholder="Select an instance to preview command...",
                id="command-preview",
            )
            yield Button("Copy", id="copy-command")
        yield Log(highlight=False, max_lines=500, auto_scroll=True, id="activity-log")
        yield Footer()

    def on_mount(self) -> None:
        table = self.query_one("#instance-table", DataTable)
        table.cursor_type = "row"
        table.add_columns("Name", "UUID", "Phase", "Status", "ADB serial", "Recipe")
        self.set_interval(self.config.poll_interval, self._refresh_initializing)

        if not self.gmsaas_cli_available:
            self._log(f"{self.gmsaas_path} not found. Running in simulated mode.")
            self.notify("gmsaas CLI not found; simulated mode is active.", severity="warning")
        self._log("Press Enter on an instance to open details (ADB connect, disconnect, stop).")
        self._log("App started.")
        self.set_focus(table)
        self.action_refresh()

    @work(thread=True, exclusive=True, exit_on_error=False, group="load", name="load-instances")
    def load_instances(self) -> list[InstanceSnapshot]:
        if not self.gmsaas_cli_available:
            return build_mock_instances(unassigned_host=self.config.unassigned_bridge_host)
        return self.service.list_instances()

    @work(thread=True, exit_on_error=False, group="actions", name="instance-action")
    def run_instance_action(self, instance_uuid: str, action: str) -> InstanceSnapshot:
        match action:
            case "adbconnect":
                return self.service.adb_connect(instance_uuid)
            case "adbdisconnect":
                return self.service.adb_disconnect(instance_uuid)
            case "stop":
                return self.service.stop_instance(instance_uuid)
        raise ValueError(f"Unknown instance action: {action}")

    @work(thread=True, exit_on_error=False, group="actions", name="start-instance")
    def start_instance(self, recipe_uuid: str, name: str) -> InstanceSnapshot:
        snapshot = self.service.start_instance(
            recipe_uuid,
            name,
            stop_when_inactive=self.config.stop_when_inactive,
        )
        self.call_from_thread(
            self._log,
            f"Instance {snapshot.label} ({snapshot.instance_id}) requested, waiting for ADB bridge.",
        )
        self.call_from_thread(self.action_refresh)
        return wait_for_instance(
            self.service,
            snapshot.instance_id,
            timeout=self.config.boot_timeout,
            poll_interval=self.config.poll_interval,
        )

    @on(Worker.StateChanged)
    def on_worker_state_changed(self, event: Worker.StateChanged) -> None:
        match event.worker.name:
            case "load-instances":
                self._on_instances_loaded(event.worker)
            case "instance-action" | "start-instance":
                self._on_instance_updated(event.worker)

    def _on_instances_loaded(self, worker: Worker) -> None:
        if worker.state in (WorkerState.SUCCESS, WorkerState.ERROR, WorkerState.CANCELLED):
            self.loading = False

        if worker.state == WorkerState.SUCCESS:
            result = worker.result
            if isinstance(result, list):
                self.instances = cast(list[InstanceSnapshot], result)
                self._render_instances()
                mode = "simulated " if not self.gmsaas_cli_available else ""
                ready = sum(1 for instance in self.instances if instance.is_ready())
                self._set_status(f"Loaded {len(self.instances)} {mode}instances ({ready} ready).")
            return

        if worker.state == WorkerState.ERROR:
            self.instances = []
            self._render_instances()
            self._set_status(f"Failed to load instances: {worker.error}")
            self._log(f"Failed to load instances: {worker.error}")

    def _on_instance_updated(self, worker: Worker) -> None:
        if worker.state == WorkerState.SUCCESS:
            snapshot = worker.result
            if isinstance(snapshot, InstanceSnapshot):
                self._set_status(f"{snapshot.label}: {snapshot.raw_phase or '-'} ({snapshot.adb_serial}).")
                self._log(
                    f"{snapshot.label} ({snapshot.instance_id}) is {snapshot.raw_phase or 'unknown'}, "
                    f"ADB {snapshot.adb_serial}."
                )
            self.action_refresh()
            return

        if worker.state == WorkerState.ERROR:
            self._set_status(f"Instance operation failed: {worker.error}")
            self._log(f"Instance operation failed: {worker.error}")
            self.action_refresh()

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        match event.button.id:
            case "refresh":
                self.action_refresh()
            case "new-instance":
                self.action_new_instance()
            case "adb-connect":
                self.action_adb_connect()
            case "stop-instance":
                self.action_stop_instance()
            case "copy-command":
                self.action_copy_command()

    def on_data_table_row_highlighted(self, event: DataTable.RowHighlighted) -> None:
        if event.data_table.id == "instance-table":
            self._update_command_preview_for_selection()

    def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        if event.data_table.id != "instance-table":
            return
        instance = self._selected_instance()
        if instance is None:
            return
        self.push_screen(InstanceInfoScreen(instance))

    def action_refresh(self) -> None:
        self._set_status("Loading instances...")
        self._log("Refreshing instances.")
        self._load()

    def action_new_instance(self) -> None:
        self.push_screen(StartInstanceScreen(self.config), callback=self._on_start_dismissed)

    def action_adb_connect(self) -> None:
        self._request_for_selection("adbconnect")

    def action_adb_disconnect(self) -> None:
        self._request_for_selection("adbdisconnect")

    def action_stop_instance(self) -> None:
        self._request_for_selection("stop")

    def request_instance_action(self, instance: InstanceSnapshot, action: str) -> None:
        label = INSTANCE_ACTIONS[action]
        command = self._command_for(instance, action)
        self._show_command(command)
        if not self.gmsaas_cli_available:
            self._set_status(f"Simulated {label} (gmsaas CLI not installed).")
            self._log(f"Simulated {label} for {instance.instance_id}.")
            return

        self._set_status(f"{label} for {instance.label} ({instance.instance_id})...")
        self._log(f"{label} requested for {instance.instance_id}.")
        self.run_instance_action(instance.instance_id, action)

    def _on_start_dismissed(self, request: tuple[str, str] | None) -> None:
        if request is None:
            self._log("Instance start cancelled.")
            return

        name, recipe_uuid = request
        command = build_start_command(
            recipe_uuid,
            name,
            stop_when_inactive=self.config.stop_when_inactive,
            gmsaas_path=self.gmsaas_path,
        )
        self._show_command(command)
        if not self.gmsaas_cli_available:
            self._set_status("Simulated instance start (gmsaas CLI not installed).")
            self._log(f"Simulated start of '{name}' from recipe {recipe_uuid}.")
            return

        self._set_status(f"Starting '{name}' from recipe {recipe_uuid}...")
        self._log(f"Starting '{name}' from recipe {recipe_uuid}.")
        self.start_instance(recipe_uuid, name)

    def _request_for_selection(self, action: str) -> None:
        instance = self._selected_instance()
        if instance is None:
            self.notify("Select an instance first", severity="warning")
            self._log(f"{INSTANCE_ACTIONS[action]} requested with no selected instance.")
            return
        self.request_instance_action(instance, action)

    def _refresh_initializing(self) -> None:
        if self.loading:
            return
        if any(instance.is_initializing() for instance in self.instances):
            self._load()

    def _load(self) -> None:
        self.loading = True
        self.load_instances()

    def _command_for(self, instance: InstanceSnapshot, action: str) -> list[str]:
        gmsaas_instance = GmsaasInstance(instance_uuid=instance.instance_id, gmsaas_path=self.gmsaas_path)
        match action:
            case "adbdisconnect":
                return gmsaas_instance.build_adb_disconnect_command()
            case "stop":
                return gmsaas_instance.build_stop_command()
        return gmsaas_instance.build_adb_connect_command()

    def _selected_instance(self) -> InstanceSnapshot | None:
        table = self.query_one("#instance-table", DataTable)
        try:
            row = table.cursor_row
            if row < 0:
                raise IndexError
            return self.instances[row]
        except IndexError:
            return None

    def _render_instances(self) -> None:
        table = self.query_one("#instance-table", DataTable)
        table.clear(columns=False)
        for instance in self.instances:
            table.add_row(
                instance.display_name or "-",
                instance.instance_id,
                instance.raw_phase or "-",
                _status_text(instance),
                instance.adb_serial,
                instance.recipe_name,
            )
        if self.instances:
            table.move_cursor(row=0, column=0)
            self._update_command_preview_for_selection()
        else:
            self._set_command_preview("")

    def _set_status(self, message: str) -> None:
        try:
            self.query_one("#status", Static).update(message)
        except NoMatches:
            return

    def _show_command(self, command: list[str]) -> None:
        self._set_command_preview(shlex.join(command))

    def _set_command_preview(self, message: str) -> None:
        self.current_command = message.strip()
        try:
            self.query_one("#command-preview", Input).value = self.current_command
        except NoMatches:
            return

    def _update_command_preview_for_selection(self) -> None:
        instance = self._selected_instance()
        if instance is None:
            self._set_command_preview("")
            return
        action = "adbdisconnect" if instance.is_bridge_connected() else "adbconnect"
        self._show_command(self._command_for(instance, action))

    def action_copy_command(self) -> None:
        if not self.current_command:
            self.notify("No command available to copy yet.", severity="warning")
            self._log("Copy command requested with no command available.")
            return
        self.copy_to_clipboard(self.current_command)
        self.notify("Command copied to clipboard.", severity="information")
        self._log("Copied command to clipboard.")

    def _log(self, message: str) -> None:
        timestamp = datetime.now().strftime("%H:%M:%S")
        try:
            self.query_one("#activity-log", Log).write_line(f"[{timestamp}] {message}")
        except NoMatches:
            return


def _status_text(instance: InstanceSnapshot) -> str:
    if instance.is_ready():
        return "Ready" if instance.is_bridge_connected() else "Ready (no ADB)"
    if instance.is_initializing():
        return "Initializing"
    return "-"


def _yes_no(value: bool) -> str:
    return "yes" if value else "no"


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Genymotion Cloud Textual TUI")
    parser.add_argument("--gmsaas-path", default=None, help="gmsaas executable (overrides the config file)")
    parser.add_argument(
        "--config",
        default=str(DEFAULT_CONFIG_PATH),
        help="YAML file with gmsaas settings, polling timings and recipe presets",
    )
    parser.add_argument("--log-file", default=None, help="Write debug logs to this file")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Minimum level written to --log-file",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    handler_ids = setup_logging(LogConfig(file=args.log_file, level=args.log_level)) if args.log_file else []
    app = GenyCloudTuiApp(gmsaas_path=args.gmsaas_path, config_path=args.config)
    try:
        app.run()
    except KeyboardInterrupt:
        pass
    finally:
        teardown_logging(handler_ids)
        _restore_terminal_state()


def _restore_terminal_state() -> None:
    if not sys.stdout.isatty():
        return
    try:
        sys.stdout.write("\x1b[?1000l\x1b[?1002l\x1b[?1003l\x1b[?1006l\x1b[?1015l\x1b[?25h")
        sys.stdout.flush()
    except OSError:
        pass
    if not sys.stdin.isatty():
        return
    try:
        subprocess.run(
            ["stty", "sane"],
            check=False,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except OSError:
        pass


if __name__ == "__main__":
    main()
