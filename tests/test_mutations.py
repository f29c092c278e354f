from promptloom.models import Message, Prompt, Tool
from promptloom.mutations import COPY_SUFFIX, insert_at, reorder
from promptloom.registry import Concern


def test_reorder_moves_forward_and_backward():
    items = ["a", "b", "c", "d"]
    assert reorder(items, 0, 2) == ["b", "c", "a", "d"]
    assert reorder(items, 3, 1) == ["a", "d", "b", "c"]
    assert items == ["a", "b", "c", "d"]


def test_reorder_is_a_permutation_for_every_index_pair():
    items = ["a", "b", "c", "d", "e"]
    for i in range(len(items)):
        for j in range(len(items)):
            result = reorder(items, i, j)
            assert sorted(result) == items
            assert result[j] == items[i]
            rest = [x for x in result if x != items[i]]
            assert rest == [x for x in items if x != items[i]]


def test_reorder_same_index_returns_copy():
    items = ["a", "b"]
    result = reorder(items, 1, 1)
    assert result == items
    assert result is not items


def test_insert_at():
    assert insert_at(["a", "c"], 1, "b") == ["a", "b", "c"]
    assert insert_at(["a"], 1, "b") == ["a", "b"]


def test_move_prompt(store, engine):
    first = store.add_prompt()
    second = store.add_prompt()
    third = store.add_prompt()

    assert engine.move_prompt(0, 2)
    assert [p.id for p in store.prompts] == [second.id, first.id, third.id]
    assert engine.move_prompt(1, 1) is False


def test_move_message_keeps_flags_with_ids(store, registry, engine):
    prompt = store.add_prompt()
    a = store.add_message("system")
    b = store.add_message("user")
    registry.set_flag(Concern.PREVIEW, prompt.id, a.id, True)

    engine.move_message(0, 1)

    assert store.selected.message_ids() == [b.id, a.id]
    assert registry.is_set(Concern.PREVIEW, prompt.id, a.id)


def test_move_tool(store, engine):
    store.add_prompt()
    store.add_tool(Tool(name="one"))
    store.add_tool(Tool(name="two"))

    engine.move_tool(1, 0)
    assert [t.name for t in store.selected.tools] == ["two", "one"]


def test_duplicate_prompt_copies_content_with_fresh_ids(store, registry, engine):
    original = store.add_prompt(Prompt(
        title="Greeter",
        messages=[
            Message(role="system", content="Be nice", label="sys"),
            Message(role="user", content="Hi", enabled=False),
        ],
        tools=[Tool(name="lookup")],
    ))
    first, second = original.messages
    registry.set_flag(Concern.PREVIEW, original.id, first.id, True)
    registry.set_flag(Concern.COLLAPSED, original.id, second.id, True)

    copy = engine.duplicate_prompt(original.id)

    assert copy.title == "Greeter" + COPY_SUFFIX
    assert copy.id != original.id
    assert set(copy.message_ids()).isdisjoint(original.message_ids())
    assert [(m.role, m.content, m.enabled, m.label) for m in copy.messages] == [
        ("system", "Be nice", True, "sys"),
        ("user", "Hi", False, ""),
    ]
    assert copy.tools == original.tools

    assert store.prompts[0].id == copy.id
    assert store.state.selected_id == copy.id

    assert registry.get(Concern.PREVIEW, copy.id) == {copy.messages[0].id: True}
    assert registry.get(Concern.COLLAPSED, copy.id) == {copy.messages[1].id: True}
    assert registry.get(Concern.PREVIEW, original.id) == {first.id: True}


def test_flags_exist_before_copy_is_visible(store, registry, engine):
    original = store.add_prompt(Prompt(messages=[Message()]))
    registry.set_flag(Concern.COLLAPSED, original.id, original.messages[0].id, True)

    seen = []

    def observer(event):
        if event.payload.get("op") == "add_prompt":
            copy = store.prompts[0]
            seen.append(registry.is_set(Concern.COLLAPSED, copy.id, copy.messages[0].id))

    store.bus.subscribe(observer)
    engine.duplicate_prompt(original.id)
    assert seen == [True]


def test_duplicate_unknown_prompt(engine):
    assert engine.duplicate_prompt("missing") is None


def test_delete_prompt_optionally_forgets_state(store, gateway, registry, engine):
    prompt = store.add_prompt()
    registry.set_panel_open(prompt.id, False)

    assert engine.delete_prompt(prompt.id, forget_state=True)
    assert f"tools_panel_open_{prompt.id}" not in gateway.data


def test_delete_message_and_tool(store, engine):
    store.add_prompt()
    message = store.add_message("user")
    store.add_tool()

    assert engine.delete_message(message.id)
    assert engine.delete_tool(0)
    assert store.selected.messages == []
    assert store.selected.tools == []


def test_import_document_seeds_flags(store, registry, engine):
    created = engine.import_document({
        "kind": "prompt",
        "version": 2,
        "title": "Imported",
        "messages": [
            {"role": "system", "content": "S", "preview": True},
            {"role": "user", "content": "U", "collapsed": True, "enabled": False, "label": "q"},
        ],
        "tools": [{"name": "t", "parameters": {"type": "object", "properties": {}}}],
        "toolsPanelOpen": False,
    })

    assert store.selected.id == created.id
    assert created.title == "Imported"
    first, second = created.messages
    assert (second.enabled, second.label) == (False, "q")
    assert registry.get(Concern.PREVIEW, created.id) == {first.id: True}
    assert registry.get(Concern.COLLAPSED, created.id) == {second.id: True}
    assert registry.panel_open(created.id) is False
    assert created.tools[0].parameters == '{"type":"object","properties":{}}'


def test_import_document_fills_defaults(engine):
    created = engine.import_document({"messages": [{"content": "hi"}, "junk"]})

    assert created.title == "Imported Prompt"
    assert [m.role for m in created.messages] == ["user", "user"]
    assert created.messages[0].enabled is True
    assert created.tools == []


def test_import_document_non_dict(engine):
    created = engine.import_document(["not", "a", "document"])
    assert created.messages == []
    assert created.title == "Imported Prompt"


def test_import_shared_prompt_gets_new_ids(store, engine):
    preview = {
        "kind": "prompt",
        "title": "",
        "messages": [{"id": "shared-1", "role": "assistant", "content": "A"}],
        "tools": [{"name": "calc"}],
    }
    created = engine.import_shared(preview)

    assert created.title == "Imported Prompt"
    assert created.messages[0].id != "shared-1"
    assert created.messages[0].role == "assistant"
    assert created.tools[0].name == "calc"
    assert store.state.selected_id == created.id


def test_import_shared_run_uses_transcript(engine):
    created = engine.import_shared({
        "kind": "run",
        "title": "Run",
        "run": {"transcript": [{"id": "r1", "role": "assistant", "content": "done", "tool_calls": []}]},
    })
    assert [m.content for m in created.messages] == ["done"]
