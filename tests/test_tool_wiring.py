import json

from attache.agent_directory import AgentDirectory
from attache.agent_runtime import AgentRuntime
from attache.event_bus import EventBus
from attache.mcp_client import McpManager, McpTool, is_mcp_tool, split_qualified_name
from attache.tasks import TaskSupervisor
from attache.tool_handlers import build_agent_registry, build_main_registry
from attache.tool_registry import ToolContext
from tests.conftest import resolve_provider


class FakeMcp:
    def __init__(self):
        self.calls = []

    def tools(self):
        return [McpTool("weather", "forecast", "Get a forecast", {"type": "object", "properties": {}})]

    async def call(self, qualified_name, args):
        self.calls.append((qualified_name, args))
        return "sunny"


def test_qualified_names():
    assert split_qualified_name("mcp__weather__forecast") == ("weather", "forecast")
    assert split_qualified_name("mcp__srv__tool__v2") == ("srv", "tool__v2")
    assert split_qualified_name("mcp__lonely") is None
    assert split_qualified_name("read_file") is None
    assert is_mcp_tool("mcp__a__b")
    assert McpTool("a", "b", "", {}).qualified_name == "mcp__a__b"


async def test_mcp_tools_are_exposed_to_agents(settings):
    mcp = FakeMcp()
    registry = build_agent_registry(ToolContext(settings=settings, mcp=mcp))
    schema = next(s for s in registry.schemas() if s.name == "mcp__weather__forecast")
    assert schema.description == "[MCP: weather] Get a forecast"
    assert await registry.invoke("mcp__weather__forecast", {"city": "Oslo"}) == "sunny"
    assert mcp.calls == [("mcp__weather__forecast", {"city": "Oslo"})]


async def test_manager_without_connections():
    manager = McpManager()
    assert manager.tools() == []
    assert manager.status() == []
    not_connected = json.loads(await manager.call("mcp__ghost__tool", {}))
    assert not_connected == {"success": False, "error": 'MCP server "ghost" is not connected'}
    invalid = json.loads(await manager.call("ghost", {}))
    assert invalid["success"] is False
    await manager.shutdown()


async def test_main_tools(settings, tmp_path):
    bus = EventBus()
    supervisor = TaskSupervisor(bus)
    directory = AgentDirectory(bus, tmp_path / "agents")
    runtime = AgentRuntime(directory, bus, supervisor, provider_resolver=resolve_provider,
                           settings_factory=lambda: settings)
    registry = build_main_registry(ToolContext(settings=settings, runtime=runtime, directory=directory, bus=bus))
    assert registry.names() == ["get_active_agents", "start_agent", "send_to_agent", "kill_agent", "create_download"]

    bad = json.loads(await registry.invoke("start_agent", {"task": ":"}))
    assert bad == {"success": False, "error": "Task description is too short or invalid"}
    missing = json.loads(await registry.invoke("start_agent", {}))
    assert missing["error"].startswith("Missing or invalid required field: task")

    unknown = json.loads(await registry.invoke("send_to_agent", {"agent_id": "agent_x", "message": "hi"}))
    assert unknown["error"].startswith("Agent not found")
    killed = json.loads(await registry.invoke("kill_agent", {"agent_id": "agent_x"}))
    assert killed == {"success": False, "error": "Agent not found or not running"}
    listed = json.loads(await registry.invoke("get_active_agents", {}))
    assert listed == {"success": True, "agents": []}
