from attache.history import (
    MAIN_MESSAGE_PREFIX,
    SEND_TO_MAIN,
    THINKING,
    TOOL_CALL,
    USER_MESSAGE,
    HistoryMessage,
    ToolCallPart,
    ToolResultPart,
    derive_display_messages,
    history_from_dicts,
    history_to_dicts,
)


def _sample():
    return [
        HistoryMessage.user("list files"),
        HistoryMessage.assistant("Looking.", [ToolCallPart("c1", "list_directory", {"path": "/tmp"})]),
        HistoryMessage.tool([ToolResultPart("c1", "list_directory", '{"items": []}')]),
        HistoryMessage.assistant("", [ToolCallPart("c2", SEND_TO_MAIN, {"message": "empty"})]),
        HistoryMessage.tool([ToolResultPart("c2", SEND_TO_MAIN, "{}")]),
        HistoryMessage.user(MAIN_MESSAGE_PREFIX + "check /var too"),
        HistoryMessage.user("[System]: You were interrupted by a server restart."),
    ]


def test_persistence_shape():
    data = history_to_dicts(_sample())
    assert data[0] == {"role": "user", "text": "list files"}
    assert data[1]["tool_calls"] == [{"id": "c1", "name": "list_directory", "args": {"path": "/tmp"}}]
    assert data[2]["tool_results"][0]["call_id"] == "c1"
    assert history_from_dicts(data) == _sample()


def test_plain_text_includes_arguments_and_outputs():
    msg = HistoryMessage.assistant("Looking.", [ToolCallPart("c1", "list_directory", {"path": "/tmp"})])
    assert msg.plain_text() == 'Looking. {"path": "/tmp"}'


def test_display_derivation():
    display = derive_display_messages(_sample())
    assert [(d.type, d.content) for d in display] == [
        (THINKING, "Looking."),
        (TOOL_CALL, "list_directory"),
        (SEND_TO_MAIN, "empty"),
        (USER_MESSAGE, "check /var too"),
    ]
    assert display[1].tool_output == '{"items": []}'
    assert display[1].to_dict()["tool_input"] == {"path": "/tmp"}
