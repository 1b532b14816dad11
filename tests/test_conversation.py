import json

from attache.conversation import Conversation, Message


async def test_save_and_load_round_trip(tmp_path):
    path = tmp_path / "context.json"
    conversation = Conversation(path)
    conversation.append("user", "hello")
    conversation.append("agent", "report", agent_id="agent_1")
    conversation.add_tool_call("start_agent", {"task": "x"}, 1, 4)
    await conversation.save()

    data = json.loads(path.read_text())
    assert data["messages"][1] == {
        "role": "agent", "content": "report",
        "timestamp": data["messages"][1]["timestamp"], "agent_id": "agent_1",
    }
    assert data["tool_calls"][0]["content_position"] == 4

    loaded = Conversation(path).load()
    assert [m.role for m in loaded.messages] == ["user", "agent"]
    assert loaded.messages[1].agent_id == "agent_1"
    assert loaded.tool_calls[0].tool_name == "start_agent"


def test_missing_or_corrupt_file_gives_empty_transcript(tmp_path):
    assert len(Conversation(tmp_path / "absent.json").load()) == 0
    broken = tmp_path / "context.json"
    broken.write_text("{ nope")
    assert len(Conversation(broken).load()) == 0


def test_unknown_role_is_rejected(tmp_path):
    conversation = Conversation(tmp_path / "c.json")
    try:
        conversation.append("system", "x")
    except ValueError as e:
        assert "Unknown message role" in str(e)
    else:
        raise AssertionError("expected ValueError")


def test_keep_reindexes_tool_calls(tmp_path):
    conversation = Conversation(tmp_path / "c.json")
    for i in range(5):
        conversation.append("assistant", str(i))
    conversation.add_tool_call("a", {}, 1, 0)
    conversation.add_tool_call("b", {}, 3, 2)
    conversation.keep([0, 3, 4])
    assert [m.content for m in conversation.messages] == ["0", "3", "4"]
    assert [(t.tool_name, t.message_index) for t in conversation.tool_calls] == [("b", 1)]


def test_replace_and_clear(tmp_path):
    conversation = Conversation(tmp_path / "c.json")
    conversation.append("user", "x")
    conversation.replace([Message(role="assistant", content="summary")])
    assert [m.content for m in conversation.messages] == ["summary"]
    assert conversation.tool_calls == []
    conversation.clear()
    assert conversation.to_dict() == {"messages": [], "tool_calls": []}
