import json
import os
import time

import pytest

from attache import downloads
from attache.memory import MemoryStore, parse_memory_file
from attache.tool_handlers import build_agent_registry
from attache.tool_registry import ToolContext
from attache.user_profile import load_user_profile, save_user_profile


def test_user_profile(data_dir):
    assert load_user_profile() == ""
    save_user_profile("# Sam\nPrefers short answers.")
    assert load_user_profile() == "# Sam\nPrefers short answers."
    assert (data_dir / "USER.md").exists()


def test_memory_save_and_search(tmp_path):
    store = MemoryStore(tmp_path / "memories")
    first = store.save("Deploy checklist", "Run migrations before deploy.", ["ops", "deploy"])
    store.save("Deploy checklist", "Second copy.")
    store.save("Lunch", "The user likes ramen. Deploy nothing at lunch.")

    files = sorted(p.name for p in (tmp_path / "memories").glob("*.md"))
    assert first.endswith("-deploy-checklist.md")
    assert any(name.endswith("-deploy-checklist-2.md") for name in files)

    results = store.search("deploy")
    assert [r.title for r in results][:2] == ["Deploy checklist", "Deploy checklist"]
    assert results[-1].title == "Lunch"
    assert store.search("the") == []
    assert store.search("") == []

    title, content, tags = parse_memory_file((tmp_path / "memories" / first).read_text())
    assert (title, content, tags) == ("Deploy checklist", "Run migrations before deploy.", ["ops", "deploy"])


async def test_memory_tools(tmp_path, settings):
    settings.memory = True
    registry = build_agent_registry(ToolContext(settings=settings, memory=MemoryStore(tmp_path / "m")))
    saved = json.loads(await registry.invoke("save_memory", {"title": "Wifi", "content": "Password is on the fridge."}))
    assert saved["success"] is True
    found = json.loads(await registry.invoke("search_memories", {"query": "fridge password"}))
    assert found["results"][0]["title"] == "Wifi"
    missing = json.loads(await registry.invoke("save_memory", {"title": "Empty"}))
    assert missing == {"success": False, "error": "title and content are required"}


def test_downloads(data_dir, tmp_path):
    created = downloads.create_download("report.csv", content="a,b\n1,2\n")
    download_id = created["url"].split("/")[3]
    assert created["url"] == f"/api/downloads/{download_id}/report.csv"
    assert len(download_id) == 8
    path = downloads.resolve_download(download_id, "report.csv")
    assert path.read_text() == "a,b\n1,2\n"
    assert path.is_relative_to(data_dir / "downloads")

    assert downloads.resolve_download(download_id, "../../secret") is None
    assert downloads.resolve_download("../etc", "passwd") is None
    assert downloads.resolve_download(download_id, "other.csv") is None

    source = tmp_path / "chart.png"
    source.write_bytes(b"\x89PNG")
    copied = downloads.create_download("chart.png", file=str(source))
    assert (data_dir / "downloads" / copied["url"].split("/")[3] / "chart.png").read_bytes() == b"\x89PNG"

    with pytest.raises(ValueError):
        downloads.create_download("empty.txt")


async def test_create_download_tool_respects_confinement(settings, workdir):
    registry = build_agent_registry(ToolContext(settings=settings))
    (workdir / "out.txt").write_text("result")
    ok = json.loads(await registry.invoke("create_download", {"filename": "out.txt", "file": "out.txt"}))
    assert ok["success"] is True
    assert ok["url"].endswith("/out.txt")
    denied = json.loads(await registry.invoke("create_download", {"filename": "p", "file": "/etc/passwd"}))
    assert denied["success"] is False


def test_cleanup_downloads_removes_expired_folders(data_dir):
    old = downloads.create_download("old.txt", content="stale")
    fresh = downloads.create_download("new.txt", content="current")
    old_id = old["url"].split("/")[3]
    fresh_id = fresh["url"].split("/")[3]
    now = time.time()
    stale = now - 2 * downloads.DOWNLOAD_MAX_AGE
    os.utime(data_dir / "downloads" / old_id, (stale, stale))

    assert downloads.cleanup_downloads(now=now) == [old_id]
    assert downloads.resolve_download(old_id, "old.txt") is None
    assert downloads.resolve_download(fresh_id, "new.txt") is not None


def test_cleanup_without_downloads_dir(data_dir):
    assert downloads.cleanup_downloads() == []
