from __future__ import annotations

import dataclasses

import pytest

from genycloud_tui.models import (
    DEFAULT_UNASSIGNED_BRIDGE_HOST,
    BridgeEndpoint,
    InstanceSnapshot,
    LifecyclePhase,
    MalformedPayload,
    Recipe,
)


def _payload(**overrides):
    payload = {
        "id": "i1",
        "lifecyclePhase": "BOOTING",
        "bridgeEndpoint": {"host": "0.0.0.0", "port": 0},
        "recipe": {"id": "r1", "name": "Pixel_API_30"},
    }
    payload.update(overrides)
    return payload


def _gmsaas_payload(**overrides):
    payload = {
        "uuid": "0b5c7a9e-1111-4222-8333-444455556666",
        "name": "e2e-device",
        "state": "ONLINE",
        "adb_serial": "localhost:42001",
        "adb_serial_port": 42001,
        "recipe": {"uuid": "9d8c7b6a-0000-4000-8000-000000000030", "name": "Pixel_API_30"},
        "created_at": "2026-10-19T09:00:00.000Z",
    }
    payload.update(overrides)
    return payload


class TestScenarios:
    def test_booting_instance_without_bridge(self):
        snapshot = InstanceSnapshot.from_payload(_payload())

        assert snapshot.is_initializing()
        assert not snapshot.is_ready()
        assert not snapshot.is_bridge_connected()
        assert snapshot.recipe_name == "Pixel_API_30"
        assert snapshot.recipe_id == "r1"

    def test_online_instance_with_bridge(self):
        snapshot = InstanceSnapshot.from_payload(
            _payload(lifecyclePhase="ONLINE", bridgeEndpoint={"host": "10.0.0.5", "port": 5555})
        )

        assert snapshot.is_ready()
        assert not snapshot.is_initializing()
        assert snapshot.is_bridge_connected()
        assert snapshot.adb_serial == "10.0.0.5:5555"

    def test_deleting_instance_is_neither_ready_nor_initializing(self):
        snapshot = InstanceSnapshot.from_payload(_payload(lifecyclePhase="DELETING"))

        assert not snapshot.is_ready()
        assert not snapshot.is_initializing()
        assert snapshot.phase is LifecyclePhase.UNRECOGNIZED
        assert snapshot.raw_phase == "DELETING"


class TestPhaseClassification:
    @pytest.mark.parametrize(
        "raw_phase",
        [
            "ONLINE",
            "CREATING",
            "BOOTING",
            "STARTING",
            "ERROR",
            "DELETING",
            "DELETED",
            "online",
            "",
            "UNRECOGNIZED",
            "SOMETHING_NEW",
            None,
            42,
        ],
    )
    def test_never_both_ready_and_initializing(self, raw_phase):
        snapshot = InstanceSnapshot.from_payload(_payload(lifecyclePhase=raw_phase))
        assert not (snapshot.is_ready() and snapshot.is_initializing())

    @pytest.mark.parametrize("raw_phase", ["CREATING", "BOOTING", "STARTING"])
    def test_initializing_phases(self, raw_phase):
        snapshot = InstanceSnapshot.from_payload(_payload(lifecyclePhase=raw_phase))
        assert snapshot.is_initializing()
        assert snapshot.phase.value == raw_phase

    def test_phase_match_is_exact(self):
        snapshot = InstanceSnapshot.from_payload(_payload(lifecyclePhase="online"))
        assert snapshot.phase is LifecyclePhase.UNRECOGNIZED
        assert snapshot.raw_phase == "online"

    def test_non_string_phase_keeps_empty_raw_value(self):
        snapshot = InstanceSnapshot.from_payload(_payload(lifecyclePhase=["ONLINE"]))
        assert snapshot.phase is LifecyclePhase.UNRECOGNIZED
        assert snapshot.raw_phase == ""


class TestBridgeEndpoint:
    def test_sentinel_host_is_not_connected_even_when_online(self):
        snapshot = InstanceSnapshot.from_payload(
            _payload(lifecyclePhase="ONLINE", bridgeEndpoint={"host": "0.0.0.0", "port": 5555})
        )
        assert snapshot.is_ready()
        assert not snapshot.is_bridge_connected()
        assert snapshot.adb_serial == "-"

    @pytest.mark.parametrize("host", ["10.0.0.5", "localhost:42001", "not a host", "0.0.0.0 ", "::", ""])
    def test_any_other_host_counts_as_connected(self, host):
        snapshot = InstanceSnapshot.from_payload(_payload(bridgeEndpoint={"host": host, "port": 1}))
        assert snapshot.is_bridge_connected()

    def test_configurable_sentinel(self):
        payload = _payload(bridgeEndpoint={"host": "unassigned", "port": 0})

        default = InstanceSnapshot.from_payload(payload)
        custom = InstanceSnapshot.from_payload(payload, unassigned_host="unassigned")

        assert default.is_bridge_connected()
        assert not custom.is_bridge_connected()
        assert custom.bridge.unassigned_host == "unassigned"

    def test_missing_endpoint_uses_custom_sentinel(self):
        payload = _payload()
        del payload["bridgeEndpoint"]

        snapshot = InstanceSnapshot.from_payload(payload, unassigned_host="none")

        assert snapshot.bridge == BridgeEndpoint.unassigned("none")
        assert not snapshot.is_bridge_connected()

    @pytest.mark.parametrize("port", ["5555", 5555.0])
    def test_port_is_coerced(self, port):
        snapshot = InstanceSnapshot.from_payload(_payload(bridgeEndpoint={"host": "10.0.0.5", "port": port}))
        assert snapshot.bridge.port == 5555

    @pytest.mark.parametrize("port", ["abc", None, -1, 70000, True])
    def test_invalid_port_defaults_to_zero(self, port):
        snapshot = InstanceSnapshot.from_payload(_payload(bridgeEndpoint={"host": "10.0.0.5", "port": port}))
        assert snapshot.bridge.port == 0
        assert snapshot.adb_serial == "10.0.0.5"

    @pytest.mark.parametrize(
        "endpoint",
        ["10.0.0.5:5555", ["10.0.0.5", 5555], {"port": 5555}, {"host": None}, {"host": 5555}],
    )
    def test_malformed_endpoint_degrades_to_unassigned(self, endpoint):
        snapshot = InstanceSnapshot.from_payload(_payload(bridgeEndpoint=endpoint))
        assert not snapshot.is_bridge_connected()


class TestGmsaasPayload:
    def test_gmsaas_fields_are_mapped(self):
        snapshot = InstanceSnapshot.from_payload(_gmsaas_payload())

        assert snapshot.instance_id == "0b5c7a9e-1111-4222-8333-444455556666"
        assert snapshot.display_name == "e2e-device"
        assert snapshot.is_ready()
        assert snapshot.is_bridge_connected()
        assert snapshot.adb_serial == "localhost:42001"
        assert snapshot.recipe_id == "9d8c7b6a-0000-4000-8000-000000000030"
        assert snapshot.recipe_name == "Pixel_API_30"

    def test_unassigned_adb_serial(self):
        snapshot = InstanceSnapshot.from_payload(
            _gmsaas_payload(state="BOOTING", adb_serial="0.0.0.0", adb_serial_port=0)
        )
        assert snapshot.is_initializing()
        assert not snapshot.is_bridge_connected()

    def test_null_adb_serial_is_unassigned(self):
        snapshot = InstanceSnapshot.from_payload(_gmsaas_payload(adb_serial=None))
        assert not snapshot.is_bridge_connected()

    def test_empty_adb_serial_is_not_the_sentinel(self):
        snapshot = InstanceSnapshot.from_payload(_gmsaas_payload(adb_serial="", adb_serial_port=0))

        assert snapshot.bridge.host == ""
        assert snapshot.is_bridge_connected()

    def test_null_gmsaas_key_falls_through_to_generic_key(self):
        payload = _gmsaas_payload(
            uuid=None,
            id="i1",
            name=None,
            displayName="e2e",
            state=None,
            lifecyclePhase="BOOTING",
        )
        payload["recipe"] = {"uuid": None, "id": "r1", "name": "Pixel_API_30"}

        snapshot = InstanceSnapshot.from_payload(payload)

        assert snapshot.instance_id == "i1"
        assert snapshot.display_name == "e2e"
        assert snapshot.is_initializing()
        assert snapshot.recipe_id == "r1"

    def test_null_id_without_fallback_fails(self):
        with pytest.raises(MalformedPayload):
            InstanceSnapshot.from_payload(_gmsaas_payload(uuid=None))


class TestConstruction:
    @pytest.mark.parametrize("key", ["id", "recipe"])
    def test_missing_identity_field_fails(self, key):
        payload = _payload()
        del payload[key]
        with pytest.raises(MalformedPayload):
            InstanceSnapshot.from_payload(payload)

    @pytest.mark.parametrize("instance_id", ["", "   ", None, 12, ["i1"]])
    def test_invalid_id_fails(self, instance_id):
        with pytest.raises(MalformedPayload):
            InstanceSnapshot.from_payload(_payload(id=instance_id))

    @pytest.mark.parametrize("instance_id", [" i1 ", "i1\n"])
    def test_id_is_kept_verbatim(self, instance_id):
        snapshot = InstanceSnapshot.from_payload(_payload(id=instance_id))

        assert snapshot.instance_id == instance_id
        assert snapshot.label == instance_id

    @pytest.mark.parametrize(
        "recipe",
        [
            None,
            "Pixel_API_30",
            {},
            {"id": "r1"},
            {"name": "Pixel_API_30"},
            {"id": "", "name": "Pixel_API_30"},
            {"id": "r1", "name": "  "},
            {"id": 1, "name": "Pixel_API_30"},
        ],
    )
    def test_invalid_recipe_fails(self, recipe):
        with pytest.raises(MalformedPayload):
            InstanceSnapshot.from_payload(_payload(recipe=recipe))

    @pytest.mark.parametrize("payload", [None, "i1", ["id", "i1"]])
    def test_non_mapping_payload_fails(self, payload):
        with pytest.raises(MalformedPayload):
            InstanceSnapshot.from_payload(payload)

    def test_only_identity_fields_yields_conservative_defaults(self):
        snapshot = InstanceSnapshot.from_payload({"id": "i1", "recipe": {"id": "r1", "name": "Pixel_API_30"}})

        assert snapshot.display_name == ""
        assert snapshot.label == "i1"
        assert snapshot.phase is LifecyclePhase.UNRECOGNIZED
        assert snapshot.raw_phase == ""
        assert not snapshot.is_ready()
        assert not snapshot.is_initializing()
        assert not snapshot.is_bridge_connected()
        assert snapshot.bridge.host == DEFAULT_UNASSIGNED_BRIDGE_HOST

    def test_unknown_fields_are_ignored(self):
        snapshot = InstanceSnapshot.from_payload(_payload(region="eu", tags=["a"]))
        assert snapshot == InstanceSnapshot.from_payload(_payload())

    def test_non_string_display_name_defaults_to_empty(self):
        snapshot = InstanceSnapshot.from_payload(_payload(displayName=7))
        assert snapshot.display_name == ""

    def test_recipe_validates_on_direct_construction(self):
        with pytest.raises(MalformedPayload):
            Recipe(recipe_id="", name="Pixel_API_30")


class TestImmutability:
    def test_snapshot_is_frozen(self):
        snapshot = InstanceSnapshot.from_payload(_payload())
        with pytest.raises(dataclasses.FrozenInstanceError):
            snapshot.raw_phase = "ONLINE"  # type: ignore[misc]

    def test_classifying_twice_gives_identical_results(self):
        payload = _payload(lifecyclePhase="ONLINE", bridgeEndpoint={"host": "10.0.0.5", "port": 5555})

        first = InstanceSnapshot.from_payload(payload)
        second = InstanceSnapshot.from_payload(payload)

        assert first == second
        assert (first.is_ready(), first.is_initializing(), first.is_bridge_connected()) == (
            second.is_ready(),
            second.is_initializing(),
            second.is_bridge_connected(),
        )

    def test_payload_changes_do_not_leak_into_snapshot(self):
        payload = _payload()
        snapshot = InstanceSnapshot.from_payload(payload)

        payload["lifecyclePhase"] = "ONLINE"
        payload["recipe"]["name"] = "changed"

        assert snapshot.is_initializing()
        assert snapshot.recipe_name == "Pixel_API_30"
