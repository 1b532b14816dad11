import pytest

import config
from attache import turn_limits


@pytest.fixture
def overrides(monkeypatch):
    monkeypatch.setattr(turn_limits, "_overrides", {})

    def apply(values):
        monkeypatch.setattr(config, "_user_config", {"turn_limits": values})
        turn_limits.reload()

    return apply


def test_defaults():
    assert turn_limits.DEFAULTS["agent.max_iterations"] == 20
    assert set(turn_limits.limits()) == set(turn_limits.DEFAULTS)


def test_unknown_name_raises():
    with pytest.raises(KeyError):
        turn_limits.get_limit("agent.max_iteration")


def test_config_override(overrides):
    overrides({"terminal.timeout": "120", "main.max_iterations": 5})
    assert turn_limits.get_limit("terminal.timeout") == 120
    assert turn_limits.get_limit("main.max_iterations") == 5
    assert turn_limits.get_limit("agent.max_iterations") == 20


def test_bad_overrides_are_ignored(overrides):
    overrides({"terminal.timeout": "soon", "web.fetch_timeout": 0, "nope": 3})
    assert turn_limits.get_limit("terminal.timeout") == 60
    assert turn_limits.get_limit("web.fetch_timeout") == 30
    assert "nope" not in turn_limits.limits()
