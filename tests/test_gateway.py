import json

from promptloom.errors import StorageError
from promptloom.gateway import FileGateway, MemoryGateway, read_json, write_json


def test_absent_key_is_ok_none():
    result = read_json(MemoryGateway(), "prompts")
    assert result.is_ok
    assert result.value is None
    assert result.unwrap_or([]) == []


def test_malformed_json_is_an_error():
    result = read_json(MemoryGateway({"prompts": "[{"}), "prompts")
    assert result.is_err
    assert isinstance(result.error, StorageError)


def test_failed_read_is_an_error():
    gateway = MemoryGateway({"prompts": "[]"})
    gateway.fail_reads = True
    assert read_json(gateway, "prompts").is_err


def test_write_json_round_trip():
    gateway = MemoryGateway()
    assert write_json(gateway, "k", {"a": [1, 2]}).is_ok
    assert read_json(gateway, "k").value == {"a": [1, 2]}


def test_write_json_unserializable():
    assert write_json(MemoryGateway(), "k", {"a": object()}).is_err


def test_file_gateway_persists_across_instances(tmp_path):
    path = tmp_path / "home" / "state.json"
    FileGateway(path).set("selected_prompt_id", "p1")

    other = FileGateway(path)
    assert other.get("selected_prompt_id").value == "p1"

    other.remove("selected_prompt_id")
    assert FileGateway(path).get("selected_prompt_id").value is None
    assert list(path.parent.glob(".state-*")) == []


def test_file_gateway_missing_file_reads_empty(tmp_path):
    gateway = FileGateway(tmp_path / "none.json")
    assert gateway.get("anything").value is None
    assert gateway.remove("anything").is_ok


def test_file_gateway_corrupt_file(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("not json", encoding="utf-8")
    gateway = FileGateway(path)

    assert gateway.get("prompts").is_err
    assert gateway.set("prompts", "[]").is_ok
    assert json.loads(path.read_text(encoding="utf-8")) == {"prompts": "[]"}


def test_file_gateway_non_string_value(tmp_path):
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"prompts": [1]}), encoding="utf-8")
    assert FileGateway(path).get("prompts").is_err
