"""Core of the Attache assistant: agent runtime, directory and coordinator.

Lazy imports keep ``import attache.event_bus`` cheap for tools and tests
that do not need the full composition root.
"""


def __getattr__(name: str):
    if name in ("Assistant", "create_assistant"):
        from .core import Assistant, create_assistant
        return Assistant if name == "Assistant" else create_assistant
    raise AttributeError(f"module 'attache' has no attribute {name!r}")
