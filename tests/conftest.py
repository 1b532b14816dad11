import asyncio
from typing import Optional

import pytest

import config
from config import ProviderConfig, ToolSettings
from attache.llm.base import CompletionAdapter, TextDelta, ToolCallRequest

AGENT_PROMPT_MARKER = "You are a sub-agent"


class FakeAdapter(CompletionAdapter):
    """Scripted completion adapter.

    Each script entry is one completion: a list of stream events, or a
    callable ``(messages) -> list``. Exceptions inside a list are raised
    mid-stream. Main-assistant and sub-agent completions read separate
    scripts, told apart by the system prompt. An exhausted script answers
    with a plain ``done``.
    """

    provider_type = "fake"

    def __init__(self, agent_script=None, main_script=None, summary="Condensed summary", summary_error=None):
        self.agent_script = list(agent_script or [])
        self.main_script = list(main_script or [])
        self.summary = summary
        self.summary_error = summary_error
        self.agent_calls: list[dict] = []
        self.main_calls: list[dict] = []
        self.summaries: list[str] = []
        self.gate: Optional[asyncio.Event] = None

    async def stream(self, system_prompt, messages, tools, sampling=None):
        if self.gate is not None:
            await self.gate.wait()
        is_agent = system_prompt.startswith(AGENT_PROMPT_MARKER)
        calls = self.agent_calls if is_agent else self.main_calls
        script = self.agent_script if is_agent else self.main_script
        calls.append({
            "system": system_prompt,
            "messages": list(messages),
            "tools": [t.name for t in tools],
        })
        turn = script.pop(0) if script else [TextDelta("done")]
        if callable(turn):
            turn = turn(messages)
        for event in turn:
            if isinstance(event, Exception):
                raise event
            yield event

    async def summarize(self, system_prompt, content, *, max_output_tokens, temperature):
        self.summaries.append(content)
        if self.summary_error is not None:
            raise self.summary_error
        return self.summary


def call(name: str, call_id: str = "call_1", **args) -> ToolCallRequest:
    return ToolCallRequest(id=call_id, name=name, args=args)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


TEST_PROVIDER = ProviderConfig(name="test", type="openai", model="fake-model", max_tokens=100_000)


def resolve_provider(name: Optional[str] = None) -> ProviderConfig:
    if name in (None, "", "test"):
        return TEST_PROVIDER
    raise KeyError(f"Provider {name!r} not found in config")


@pytest.fixture(autouse=True)
def data_dir(tmp_path, monkeypatch):
    """Every test gets its own data directory."""
    directory = tmp_path / "attache_data"
    monkeypatch.setenv("ATTACHE_DIR", str(directory))
    config._reset_data_dir()
    yield directory
    config._reset_data_dir()


@pytest.fixture
def workdir(tmp_path):
    directory = tmp_path / "work"
    directory.mkdir()
    return directory


@pytest.fixture
def settings(workdir):
    return ToolSettings(
        filesystem=True,
        terminal=True,
        working_dir=str(workdir),
        limit_working_dir=True,
        command_whitelist=["echo", "ls"],
    )


@pytest.fixture
def adapter():
    return FakeAdapter()
