"""Tests for injecting the MCP server block into an external settings file."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from keyrelay.exceptions import ConfigurationError
from keyrelay.mcp.catalog import default_tools, tools_for
from keyrelay.mcp.sync import SERVERS_KEY, ConfigSynchronizer, generate_block, merge_block
from keyrelay.models import ConfigMode, MCPSettings

PREFIX = "keyrelay-"


def _make_sync(secret: str = "sk-test", **settings) -> ConfigSynchronizer:
    settings.setdefault("enabled", True)
    return ConfigSynchronizer(MCPSettings(**settings), lambda: secret)


def _owned(document: dict) -> list[str]:
    return sorted(k for k in document.get(SERVERS_KEY, {}) if k.startswith(PREFIX))


# ---------------------------------------------------------------------------
# generate_block
# ---------------------------------------------------------------------------


class TestGenerateBlock:
    def test_direct_mode_entries(self) -> None:
        block = generate_block(default_tools(), ConfigMode.DIRECT, "sk", "http://relay")

        assert sorted(block) == [f"{PREFIX}{t}" for t in ["vision", "web_reader", "web_search", "zread"]]
        search = block[f"{PREFIX}web_search"]
        assert search["type"] == "http"
        assert search["url"].startswith("https://")
        assert search["headers"] == {"Authorization": "Bearer sk"}

        vision = block[f"{PREFIX}vision"]
        assert vision["type"] == "stdio"
        assert vision["command"] == "npx"
        assert vision["env"] == {"Z_AI_API_KEY": "sk", "Z_AI_MODE": "ZAI"}

    def test_proxy_mode_entries_carry_no_secret(self) -> None:
        block = generate_block(default_tools(), ConfigMode.PROXY, "", "http://127.0.0.1:8318")

        for entry in block.values():
            assert entry["type"] == "http"
            assert entry["url"].startswith("http://127.0.0.1:8318/mcp/")
            assert "headers" not in entry
        assert "sk" not in json.dumps(block)

    def test_only_enabled_tools(self) -> None:
        tools = tools_for(MCPSettings(enabled_tools=["zread"]))
        block = generate_block(tools, ConfigMode.PROXY, "", "http://relay", prefix="kr-")
        assert list(block) == ["kr-zread"]

    def test_direct_mode_requires_secret(self) -> None:
        with pytest.raises(ConfigurationError, match="API key is required"):
            generate_block(default_tools(), ConfigMode.DIRECT, "", "http://relay")

    def test_direct_mode_without_tools_needs_no_secret(self) -> None:
        assert generate_block([], ConfigMode.DIRECT, "", "http://relay") == {}


# ---------------------------------------------------------------------------
# merge_block
# ---------------------------------------------------------------------------


class TestMergeBlock:
    def test_replaces_only_owned_entries(self) -> None:
        document = {
            "theme": "dark",
            SERVERS_KEY: {"other": {"type": "http"}, f"{PREFIX}old": {"type": "http"}},
        }
        merged = merge_block(document, {f"{PREFIX}new": {"type": "stdio"}}, PREFIX)

        assert merged["theme"] == "dark"
        assert set(merged[SERVERS_KEY]) == {"other", f"{PREFIX}new"}
        assert f"{PREFIX}old" in document[SERVERS_KEY]

    def test_empty_block_drops_empty_servers(self) -> None:
        merged = merge_block({SERVERS_KEY: {f"{PREFIX}a": {}}, "x": 1}, {}, PREFIX)
        assert merged == {"x": 1}

    def test_non_object_servers_is_refused(self) -> None:
        with pytest.raises(ConfigurationError):
            merge_block({SERVERS_KEY: ["nope"]}, {}, PREFIX)


# ---------------------------------------------------------------------------
# ConfigSynchronizer
# ---------------------------------------------------------------------------


class TestApply:
    @pytest.mark.asyncio
    async def test_missing_file_is_created(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "settings.json"
        sync = _make_sync(mode=ConfigMode.PROXY, enabled_tools=["web_search"])

        await sync.apply(path)

        document = json.loads(path.read_text())
        assert _owned(document) == [f"{PREFIX}web_search"]
        assert list(document) == [SERVERS_KEY]

    @pytest.mark.asyncio
    async def test_apply_twice_is_byte_identical(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"model": "opus", SERVERS_KEY: {"mine": {"type": "http"}}}))
        sync = _make_sync()

        await sync.apply(path)
        first = path.read_bytes()
        await sync.apply(path)

        assert path.read_bytes() == first
        assert first.endswith(b"\n")

    @pytest.mark.asyncio
    async def test_non_ascii_text_is_kept_verbatim(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"greeting": "héllo 世界"}, ensure_ascii=False), encoding="utf-8")
        sync = _make_sync(mode=ConfigMode.PROXY, enabled_tools=["zread"])

        await sync.apply(path)

        text = path.read_text(encoding="utf-8")
        assert '"greeting": "héllo 世界"' in text
        assert "\\u" not in text

    @pytest.mark.asyncio
    async def test_apply_then_remove_preserves_foreign_keys(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.json"
        original = {
            "model": "opus",
            "permissions": {"allow": ["Bash"]},
            SERVERS_KEY: {"mine": {"type": "http", "url": "http://x"}},
        }
        path.write_text(json.dumps(original))
        sync = _make_sync()

        applied = await sync.apply(path)
        assert len(_owned(applied)) == 4
        removed = await sync.remove(path)

        assert removed == original
        assert json.loads(path.read_text()) == original

    @pytest.mark.asyncio
    async def test_disabled_apply_only_strips(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({SERVERS_KEY: {f"{PREFIX}zread": {}, "mine": {}}}))
        sync = _make_sync(enabled=False, secret="")

        document = await sync.apply(path)

        assert document == {SERVERS_KEY: {"mine": {}}}

    @pytest.mark.asyncio
    async def test_disabled_apply_does_not_create_file(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.json"
        assert await _make_sync(enabled=False).apply(path) is None
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_direct_mode_without_secret_leaves_file_untouched(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.json"
        path.write_text('{"keep": true}')
        sync = _make_sync(secret="")

        with pytest.raises(ConfigurationError):
            await sync.apply(path)
        assert path.read_text() == '{"keep": true}'

    @pytest.mark.asyncio
    async def test_unparsable_file_is_replaced(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.json"
        path.write_text("{broken")
        sync = _make_sync(mode=ConfigMode.PROXY, enabled_tools=["zread"])

        document = await sync.apply(path)
        assert _owned(document) == [f"{PREFIX}zread"]

    @pytest.mark.asyncio
    async def test_settings_can_be_swapped(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.json"
        sync = _make_sync(mode=ConfigMode.PROXY)
        await sync.apply(path)

        sync.settings = MCPSettings(enabled=True, mode=ConfigMode.PROXY, enabled_tools=["zread"])
        document = await sync.apply(path)

        assert _owned(document) == [f"{PREFIX}zread"]


class TestRemove:
    @pytest.mark.asyncio
    async def test_missing_file_is_noop(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.json"
        assert await _make_sync().remove(path) is None
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_custom_prefix(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({SERVERS_KEY: {"kr-a": {}, "keyrelay-b": {}}}))
        sync = _make_sync(owner_prefix="kr-")

        document = await sync.remove(path)
        assert document == {SERVERS_KEY: {"keyrelay-b": {}}}
