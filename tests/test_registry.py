import json

from promptloom.event_bus import EventBus
from promptloom.gateway import MemoryGateway
from promptloom.models import Message, Prompt
from promptloom.registry import AuxiliaryStateRegistry, Concern


def test_flags_default_to_absent(registry):
    assert registry.get(Concern.PREVIEW, "p1") == {}
    assert registry.is_set(Concern.COLLAPSED, "p1", "m1") is False
    assert registry.panel_open("p1") is True
    assert registry.panel_stored("p1") is None


def test_set_writes_through(gateway, registry):
    registry.set_flag(Concern.PREVIEW, "p1", "m1", True)
    assert json.loads(gateway.data["preview_state_p1"]) == {"m1": True}

    registry.set_flag(Concern.PREVIEW, "p1", "m1", False)
    assert json.loads(gateway.data["preview_state_p1"]) == {}


def test_get_returns_copy(registry):
    registry.set_flag(Concern.PREVIEW, "p1", "m1", True)
    mapping = registry.get(Concern.PREVIEW, "p1")
    mapping["m2"] = True
    assert registry.is_set(Concern.PREVIEW, "p1", "m2") is False


def test_toggle(registry):
    assert registry.toggle(Concern.COLLAPSED, "p1", "m1") is True
    assert registry.is_set(Concern.COLLAPSED, "p1", "m1")
    assert registry.toggle(Concern.COLLAPSED, "p1", "m1") is False
    assert not registry.is_set(Concern.COLLAPSED, "p1", "m1")


def test_loads_stored_maps_lazily():
    gateway = MemoryGateway({"collapsed_state_p1": '{"m1": true}'})
    registry = AuxiliaryStateRegistry(gateway)
    assert registry.is_set(Concern.COLLAPSED, "p1", "m1")


def test_malformed_storage_degrades_to_defaults():
    gateway = MemoryGateway({"preview_state_p1": "{not json", "collapsed_state_p1": "[1, 2]"})
    registry = AuxiliaryStateRegistry(gateway)
    assert registry.get(Concern.PREVIEW, "p1") == {}
    assert registry.get(Concern.COLLAPSED, "p1") == {}


def test_failed_reads_degrade_to_defaults():
    gateway = MemoryGateway({"tools_panel_open_p1": "0"})
    gateway.fail_reads = True
    registry = AuxiliaryStateRegistry(gateway)
    assert registry.panel_open("p1") is True
    assert registry.get(Concern.PREVIEW, "p1") == {}


def test_failed_writes_keep_in_memory_state():
    gateway = MemoryGateway()
    gateway.fail_writes = True
    registry = AuxiliaryStateRegistry(gateway)
    registry.set_flag(Concern.PREVIEW, "p1", "m1", True)
    assert registry.is_set(Concern.PREVIEW, "p1", "m1")


def test_remap_positional():
    registry = AuxiliaryStateRegistry()
    registry.set(Concern.PREVIEW, "old", {"a": True, "c": True})

    remapped = registry.remap_positional(Concern.PREVIEW, "old", "new", ["a", "b", "c"], ["x", "y", "z"])

    assert remapped == {"x": True, "z": True}
    assert registry.get(Concern.PREVIEW, "new") == {"x": True, "z": True}
    assert registry.get(Concern.PREVIEW, "old") == {"a": True, "c": True}


def test_remap_positional_truncates_to_shorter_list():
    registry = AuxiliaryStateRegistry()
    registry.set(Concern.COLLAPSED, "old", {"a": True, "b": True})

    remapped = registry.remap_positional(Concern.COLLAPSED, "old", "new", ["a", "b"], ["x"])
    assert remapped == {"x": True}


def test_panel_flag_storage_format(gateway, registry):
    registry.set_panel_open("p1", False)
    assert gateway.data["tools_panel_open_p1"] == "0"
    assert registry.panel_open("p1") is False

    registry.set_panel_open("p1", True)
    assert gateway.data["tools_panel_open_p1"] == "1"


def test_panel_flag_accepts_true_string():
    registry = AuxiliaryStateRegistry(MemoryGateway({"tools_panel_open_p1": "true"}))
    assert registry.panel_open("p1") is True


def test_remap_prompt_copies_closed_panel():
    registry = AuxiliaryStateRegistry(MemoryGateway())
    original = Prompt(id="old", messages=[Message(id="a"), Message(id="b")])
    copy = Prompt(id="new", messages=[Message(id="x"), Message(id="y")])
    registry.set_flag(Concern.COLLAPSED, "old", "b", True)
    registry.set_panel_open("old", False)

    registry.remap_prompt(original, copy)

    assert registry.get(Concern.COLLAPSED, "new") == {"y": True}
    assert registry.get(Concern.PREVIEW, "new") == {}
    assert registry.panel_open("new") is False


def test_forget_drops_entries(gateway, registry):
    registry.set_flag(Concern.PREVIEW, "p1", "m1", True)
    registry.set_panel_open("p1", False)

    registry.forget("p1")

    assert "preview_state_p1" not in gateway.data
    assert "tools_panel_open_p1" not in gateway.data
    assert registry.panel_open("p1") is True


def test_changes_are_announced():
    bus = EventBus()
    received = []
    bus.subscribe(received.append)
    registry = AuxiliaryStateRegistry(bus=bus)

    registry.set_flag(Concern.PREVIEW, "p1", "m1", True)

    assert received[0].event_type == "registry.changed"
    assert received[0].payload == {"concern": "preview_state", "prompt_id": "p1"}
