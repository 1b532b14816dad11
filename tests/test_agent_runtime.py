import asyncio
import json
from dataclasses import replace
from types import SimpleNamespace

import pytest

from attache.agent_directory import COMPLETED, RUNNING, AgentDirectory, AgentRecord
from attache.agent_runtime import AUTO_REPORTS, RESTART, RESUME, START, AgentError, AgentRuntime
from attache.compaction import SUMMARY_HEADER
from attache.event_bus import AGENT_COMPLETED, AGENT_RESUMED, AGENT_STARTED, EventBus
from attache.history import MAIN_MESSAGE_PREFIX, SEND_TO_MAIN, SYSTEM, THINKING, TOOL_CALL, HistoryMessage
from attache.llm.base import StreamError, TextDelta
from attache.prompts import RESTART_NOTICE
from attache.tasks import TaskSupervisor
from tests.conftest import TEST_PROVIDER, FakeClock, call, resolve_provider


@pytest.fixture
def env(tmp_path, settings, adapter):
    bus = EventBus()
    supervisor = TaskSupervisor(bus)
    reports = []
    clock = FakeClock()

    def make_runtime(directory, resolver=resolve_provider):
        return AgentRuntime(
            directory,
            bus,
            supervisor,
            report=lambda message, agent_id: reports.append((agent_id, message)),
            adapter_factory=lambda provider: adapter,
            provider_resolver=resolver,
            settings_factory=lambda: settings,
            clock=clock,
        )

    directory = AgentDirectory(bus, tmp_path / "agents")
    return SimpleNamespace(
        bus=bus,
        supervisor=supervisor,
        directory=directory,
        runtime=make_runtime(directory),
        make_runtime=make_runtime,
        reports=reports,
        clock=clock,
        adapter=adapter,
        agents_dir=tmp_path / "agents",
    )


async def settle(env):
    await env.supervisor.wait_idle(timeout=5)


def display_types(record):
    return [m.type for m in record.display_messages]


async def test_agent_lists_directory_and_reports_once(env, workdir):
    (workdir / "report.txt").write_text("q3 numbers")
    env.adapter.agent_script = [
        [call("list_directory", "c1", path=str(workdir))],
        [call(SEND_TO_MAIN, "c2", message="The directory holds report.txt.")],
        [TextDelta("Finished.")],
    ]

    agent_id = env.runtime.start_agent(f"list files in {workdir}")
    assert agent_id.startswith("agent_")
    await settle(env)

    record = env.directory.get(agent_id)
    assert record.status == COMPLETED
    assert env.reports == [(agent_id, "The directory holds report.txt.")]

    first_call = env.adapter.agent_calls[0]
    assert first_call["messages"][0].text == f"list files in {workdir}"
    assert "list_directory" in first_call["tools"]

    listing = json.loads(record.conversation_history[2].tool_results[0].output)
    assert listing["success"] is True
    assert listing["items"][0]["name"] == "report.txt"

    assert display_types(record) == [TOOL_CALL, SEND_TO_MAIN, THINKING]
    assert [e.type for e in env.bus.get_events(agent=agent_id)].count(AGENT_COMPLETED) == 1
    completed = env.bus.get_events(types={AGENT_COMPLETED}, agent=agent_id)[0]
    assert completed.data == {"output": "Finished."}

    saved = json.loads((env.agents_dir / f"{agent_id}.json").read_text())
    assert saved["status"] == COMPLETED
    assert len(saved["conversation_history"]) == 6


@pytest.mark.parametrize("task", [":", "  ", "ab", ""])
async def test_invalid_task_creates_nothing(env, task):
    with pytest.raises(AgentError, match="too short or invalid"):
        env.runtime.start_agent(task)
    assert len(env.directory) == 0
    assert env.bus.get_events(types={AGENT_STARTED}) == []
    # a rejected task does not start the cooldown
    env.runtime.start_agent("a real task")
    await settle(env)


async def test_creation_cooldown(env):
    env.runtime.start_agent("first task")
    with pytest.raises(AgentError, match="cooldown active"):
        env.runtime.start_agent("second task")
    assert len(env.directory) == 1
    env.clock.advance(1.0)
    env.runtime.start_agent("second task")
    assert len(env.directory) == 2
    await settle(env)


async def test_unknown_provider_creates_nothing(env):
    def no_provider(name=None):
        raise KeyError("Provider 'x' not found in config")

    runtime = env.make_runtime(env.directory, resolver=no_provider)
    with pytest.raises(AgentError, match="not found"):
        runtime.start_agent("do something")
    assert len(env.directory) == 0


async def test_duplicate_report_is_delivered_once(env):
    env.adapter.agent_script = [
        [call(SEND_TO_MAIN, "c1", message="Result A"), call(SEND_TO_MAIN, "c2", message="Result A")],
    ]
    agent_id = env.runtime.start_agent("produce result A")
    await settle(env)

    assert env.reports == [(agent_id, "Result A")]
    outputs = [json.loads(r.output) for r in env.directory.get(agent_id).conversation_history[2].tool_results]
    assert outputs[0]["message"] == "Message queued to main context"
    assert outputs[1]["message"] == "Message already sent to main context"


async def test_silent_agent_gets_auto_report(env):
    agent_id = env.runtime.start_agent("think quietly")
    await settle(env)
    expected = AUTO_REPORTS[START].format(task="think quietly")
    assert env.reports == [(agent_id, expected)]
    record = env.directory.get(agent_id)
    assert record.display_messages[-1].type == SYSTEM
    assert record.display_messages[-1].content == expected


async def test_checkpoint_after_every_tool_cycle(env):
    snapshots = []
    holder = {}

    def inspect_disk(messages):
        path = env.agents_dir / f"{holder['id']}.json"
        snapshots.append(json.loads(path.read_text()))
        return [TextDelta("done")]

    env.adapter.agent_script = [[call("wait", "c1", seconds=0)], inspect_disk]
    holder["id"] = env.runtime.start_agent("wait a moment")
    await settle(env)

    assert snapshots[0]["status"] == RUNNING
    assert [m["role"] for m in snapshots[0]["conversation_history"]] == ["user", "assistant", "tool"]


async def test_stream_failure_still_completes(env):
    env.adapter.agent_script = [[TextDelta("partial"), RuntimeError("connection reset")]]
    agent_id = env.runtime.start_agent("fragile task")
    await settle(env)

    record = env.directory.get(agent_id)
    assert record.status == COMPLETED
    assert record.display_messages[0].type == THINKING
    assert record.display_messages[0].content == "partial\n\n**Error:** connection reset"
    assert len(env.reports) == 1


async def test_stream_error_event(env):
    env.adapter.agent_script = [[StreamError("rate limited")]]
    agent_id = env.runtime.start_agent("limited task")
    await settle(env)
    record = env.directory.get(agent_id)
    assert record.display_messages[0].content == "**Error:** rate limited"
    assert record.status == COMPLETED


async def test_message_to_running_agent(env):
    agent_id = env.runtime.start_agent("long research")
    assert env.runtime.send_to_agent(agent_id, "focus on 2024") is True
    await settle(env)

    texts = [m.text for m in env.adapter.agent_calls[0]["messages"]]
    assert texts == ["long research", MAIN_MESSAGE_PREFIX + "focus on 2024"]
    assert env.runtime.send_to_agent(agent_id, "too late") is False
    assert env.runtime.send_to_agent("agent_missing", "hello") is False


async def test_resume_completed_agent(env):
    agent_id = env.runtime.start_agent("count the files")
    await settle(env)

    with pytest.raises(AgentError, match="Agent not found"):
        env.runtime.resume_agent("agent_missing", "hi")

    env.runtime.resume_agent(agent_id, "now count the folders")
    with pytest.raises(AgentError, match="already running"):
        env.runtime.resume_agent(agent_id, "again")
    await settle(env)

    record = env.directory.get(agent_id)
    assert record.status == COMPLETED
    last_messages = env.adapter.agent_calls[-1]["messages"]
    assert last_messages[-1].text == MAIN_MESSAGE_PREFIX + "now count the folders"
    assert env.reports[-1] == (agent_id, AUTO_REPORTS[RESUME].format(task="count the files"))
    assert len(env.bus.get_events(types={AGENT_RESUMED}, agent=agent_id)) == 1
    assert [e.type for e in env.bus.get_events(agent=agent_id)].count(AGENT_COMPLETED) == 2


async def test_kill_running_agent(env):
    env.adapter.gate = asyncio.Event()
    agent_id = env.runtime.start_agent("endless job")
    await asyncio.sleep(0)

    assert env.runtime.kill_agent(agent_id) is True
    record = env.directory.get(agent_id)
    assert record.status == COMPLETED
    assert record.display_messages[-1].content == "Agent killed"
    assert env.runtime.kill_agent(agent_id) is False

    env.adapter.gate.set()
    await settle(env)
    assert env.reports == []
    assert len(env.bus.get_events(types={AGENT_COMPLETED}, agent=agent_id)) == 1
    assert record.status == COMPLETED


def _interrupted_record(agent_id="agent_r", provider="test"):
    return AgentRecord(
        id=agent_id,
        task="count lines",
        status=RUNNING,
        conversation_history=[
            HistoryMessage.user("count lines"),
            HistoryMessage.assistant("Counting."),
        ],
        system_prompt=f"You are a sub-agent (ID: {agent_id}).",
        provider=provider,
    )


async def test_restart_recovery_adds_one_notice(env):
    await env.directory.save(_interrupted_record())

    fresh = AgentDirectory(env.bus, env.agents_dir)
    running = await fresh.load()
    runtime = env.make_runtime(fresh)
    assert runtime.resume_interrupted(running) == ["agent_r"]
    await settle(env)

    record = fresh.get("agent_r")
    assert record.status == COMPLETED
    sent = env.adapter.agent_calls[0]["messages"]
    assert sent[-1].text == RESTART_NOTICE
    assert [m.text for m in record.conversation_history].count(RESTART_NOTICE) == 1
    assert "Resumed after server restart" in [m.content for m in record.display_messages]
    assert env.reports == [("agent_r", AUTO_REPORTS[RESTART].format(task="count lines"))]


async def test_restart_with_unknown_provider_completes_agent(env):
    await env.directory.save(_interrupted_record(provider="retired"))
    fresh = AgentDirectory(env.bus, env.agents_dir)
    runtime = env.make_runtime(fresh)
    assert runtime.resume_interrupted(await fresh.load()) == []
    await settle(env)

    assert fresh.get("agent_r").status == COMPLETED
    saved = json.loads((env.agents_dir / "agent_r.json").read_text())
    assert saved["status"] == COMPLETED
    assert env.adapter.agent_calls == []


async def test_shutdown_leaves_agent_running_on_disk(env):
    env.adapter.gate = asyncio.Event()
    agent_id = env.runtime.start_agent("interrupted job")
    await asyncio.sleep(0)
    await env.supervisor.shutdown()

    saved = json.loads((env.agents_dir / f"{agent_id}.json").read_text())
    assert saved["status"] == RUNNING
    assert env.reports == []


async def test_compaction_replaces_history(env, workdir):
    (workdir / "big.txt").write_text("x" * 400)
    small = replace(TEST_PROVIDER, max_tokens=100)
    runtime = env.make_runtime(env.directory, resolver=lambda name=None: small)
    env.adapter.summary = "Read big.txt three times."
    env.adapter.agent_script = [
        [call("read_file", f"c{i}", path="big.txt")] for i in range(3)
    ] + [[TextDelta("All read.")]]

    agent_id = runtime.start_agent("read the big file")
    await settle(env)

    record = env.directory.get(agent_id)
    after = env.adapter.agent_calls[3]["messages"]
    assert len(after) == 1
    assert after[0].text.startswith(SUMMARY_HEADER + "\nRead big.txt three times.")
    assert "Auto-compacting conversation (7 messages)..." in [m.content for m in record.display_messages]
    assert record.status == COMPLETED


async def test_compaction_failure_falls_back(env, workdir):
    (workdir / "big.txt").write_text("x" * 400)
    small = replace(TEST_PROVIDER, max_tokens=100)
    runtime = env.make_runtime(env.directory, resolver=lambda name=None: small)
    env.adapter.summary_error = RuntimeError("summarizer down")
    env.adapter.agent_script = [
        [call("read_file", f"c{i}", path="big.txt")] for i in range(4)
    ] + [[TextDelta("All read.")]]

    agent_id = runtime.start_agent("read the big file")
    await settle(env)

    record = env.directory.get(agent_id)
    contents = [m.content for m in record.display_messages]
    assert "Compaction failed, continuing with truncated history" in contents
    assert record.conversation_history[0].text == "read the big file"
    assert len(record.conversation_history) <= 8
    assert record.status == COMPLETED


async def test_shutdown_during_tool_keeps_history_resumable(env):
    env.adapter.agent_script = [[TextDelta("Waiting first."), call("wait", "c1", seconds=30)]]
    agent_id = env.runtime.start_agent("wait then report")
    for _ in range(100):
        if env.adapter.agent_calls:
            break
        await asyncio.sleep(0.01)
    await asyncio.sleep(0.05)
    await env.supervisor.shutdown()

    saved = json.loads((env.agents_dir / f"{agent_id}.json").read_text())
    assert saved["status"] == RUNNING
    assert [m["role"] for m in saved["conversation_history"]] == ["user"]

    fresh = AgentDirectory(env.bus, env.agents_dir)
    runtime = env.make_runtime(fresh)
    assert runtime.resume_interrupted(await fresh.load()) == [agent_id]
    await settle(env)

    sent = env.adapter.agent_calls[-1]["messages"]
    assert [m.text for m in sent] == ["wait then report", RESTART_NOTICE]
    for i, message in enumerate(sent):
        if message.tool_calls:
            assert sent[i + 1].tool_results
    assert fresh.get(agent_id).status == COMPLETED


async def test_endless_tool_calls_stop_at_iteration_cap(env):
    env.adapter.agent_script = [[call("list_directory", f"c{i}", path=".")] for i in range(30)]
    agent_id = env.runtime.start_agent("loop forever")
    await settle(env)

    record = env.directory.get(agent_id)
    assert len(env.adapter.agent_calls) == 20
    assert record.status == COMPLETED
    assert len(record.conversation_history) == 1 + 2 * 20
    assert env.reports == [(agent_id, AUTO_REPORTS[START].format(task="loop forever"))]


async def test_removed_agents_drop_their_read_tracker(env):
    first = env.runtime.start_agent("read something")
    env.clock.advance(1.0)
    second = env.runtime.start_agent("read another thing")
    await settle(env)
    assert {first, second} <= set(env.runtime._read_trackers)

    await env.directory.remove(first)
    assert first not in env.runtime._read_trackers
    assert second in env.runtime._read_trackers

    await env.directory.clear()
    assert env.runtime._read_trackers == {}
