"""Tests for the MCP tool layer (server.py)."""
import asyncio
import json
from unittest.mock import patch

import pytest
from starlette.testclient import TestClient

from todoist_mcp import __version__
from todoist_mcp import server as server_module
from todoist_mcp.http_transport import HttpServerTransport


def call(name, arguments=None):
    """Call a tool and decode its JSON text payload."""
    contents = asyncio.run(server_module.call_tool(name, arguments))
    assert len(contents) == 1
    assert contents[0].type == "text"
    return json.loads(contents[0].text)


class TestToolRegistry:
    def test_every_tool_has_a_handler(self):
        assert [t.name for t in server_module.TOOLS] == list(server_module.HANDLERS)

    def test_tool_count(self):
        assert len(server_module.TOOLS) == 17

    def test_schemas_are_objects(self):
        for tool in server_module.TOOLS:
            assert tool.inputSchema["type"] == "object", tool.name

    def test_list_tools(self):
        tools = asyncio.run(server_module.list_tools())
        assert tools is server_module.TOOLS


class TestCallTool:
    def test_unknown_tool(self):
        result = call("does_not_exist", {})
        assert result == {"success": False, "error": "Unknown tool: does_not_exist"}

    def test_find_tasks_translates_arguments(self):
        with patch("todoist_mcp.todoist_api.find_tasks", return_value={"success": True, "tasks": [], "count": 0}) as m:
            result = call("find_tasks", {
                "projectId": "inbox",
                "labels": ["work"],
                "searchText": "report",
                "limit": 5,
            })
        assert result["success"] is True
        m.assert_called_once_with(
            project_id="inbox",
            section_id=None,
            labels=["work"],
            search_text="report",
            limit=5,
        )

    def test_find_tasks_by_date_defaults(self):
        with patch("todoist_mcp.todoist_api.find_tasks_by_date", return_value={"success": True}) as m:
            call("find_tasks_by_date", {})
        m.assert_called_once_with(
            start_date="today",
            days_count=1,
            overdue_option="include-overdue",
            labels=None,
            limit=50,
        )

    def test_none_arguments(self):
        with patch("todoist_mcp.todoist_api.user_info", return_value={"success": True, "user": {}}) as m:
            result = call("user_info", None)
        assert result["success"] is True
        m.assert_called_once_with()

    @pytest.mark.parametrize("tool,arguments,target,expected_args", [
        ("add_tasks", {"tasks": [{"content": "A"}]}, "add_tasks", ([{"content": "A"}],)),
        ("update_tasks", {"tasks": [{"id": "1"}]}, "update_tasks", ([{"id": "1"}],)),
        ("complete_tasks", {"ids": ["1", "2"]}, "complete_tasks", (["1", "2"],)),
        ("reopen_tasks", {"ids": ["1"]}, "reopen_tasks", (["1"],)),
        ("delete_object", {"type": "label", "id": "9"}, "delete_object", ("label", "9")),
        ("add_projects", {"projects": [{"name": "P"}]}, "add_projects", ([{"name": "P"}],)),
        ("update_projects", {"projects": [{"id": "p"}]}, "update_projects", ([{"id": "p"}],)),
        ("add_sections", {"sections": [{"name": "S", "projectId": "p"}]}, "add_sections",
         ([{"name": "S", "projectId": "p"}],)),
        ("add_labels", {"labels": [{"name": "L"}]}, "add_labels", ([{"name": "L"}],)),
        ("add_comments", {"comments": [{"content": "C", "taskId": "t"}]}, "add_comments",
         ([{"content": "C", "taskId": "t"}],)),
    ])
    def test_positional_handlers(self, tool, arguments, target, expected_args):
        with patch(f"todoist_mcp.todoist_api.{target}", return_value={"success": True}) as m:
            call(tool, arguments)
        m.assert_called_once_with(*expected_args)

    @pytest.mark.parametrize("tool,arguments,target,expected_kwargs", [
        ("find_projects", {"search": "work"}, "find_projects", {"search": "work"}),
        ("find_labels", {}, "find_labels", {"search": None}),
        ("find_sections", {"projectId": "p1"}, "find_sections", {"project_id": "p1", "search": None}),
        ("find_comments", {"taskId": "t1"}, "find_comments", {"task_id": "t1", "project_id": None}),
    ])
    def test_keyword_handlers(self, tool, arguments, target, expected_kwargs):
        with patch(f"todoist_mcp.todoist_api.{target}", return_value={"success": True}) as m:
            call(tool, arguments)
        m.assert_called_once_with(**expected_kwargs)

    def test_missing_required_argument(self):
        result = call("complete_tasks", {})
        assert result["success"] is False
        assert result["error"].startswith("Tool execution error:")

    def test_handler_exception(self):
        with patch("todoist_mcp.todoist_api.user_info", side_effect=RuntimeError("network down")):
            result = call("user_info", {})
        assert result == {"success": False, "error": "Tool execution error: network down"}

    def test_non_json_values_are_stringified(self):
        from datetime import date

        with patch("todoist_mcp.todoist_api.find_projects", return_value={"success": True, "at": date(2026, 1, 2)}):
            result = call("find_projects", {})
        assert result["at"] == "2026-01-02"


class TestOverHttp:
    """The real tool registry behind the HTTP transport."""

    @pytest.fixture
    def client(self):
        return TestClient(HttpServerTransport(server_module.server).app)

    def test_tools_listed(self, client):
        tools = client.get("/tools").json()["result"]["tools"]
        assert [t["name"] for t in tools] == list(server_module.HANDLERS)

    def test_call_through_rest_route(self, client):
        with patch("todoist_mcp.todoist_api.find_projects", return_value={"success": True, "projects": [], "count": 0}):
            data = client.post("/tools/find_projects", json={"search": "work"}).json()
        payload = json.loads(data["result"]["content"][0]["text"])
        assert payload == {"success": True, "projects": [], "count": 0}

    def test_call_through_rpc(self, client):
        with patch("todoist_mcp.todoist_api.complete_tasks", return_value={"success": True, "completed": ["1"]}) as m:
            data = client.post("/rpc", json={
                "jsonrpc": "2.0",
                "id": "c1",
                "method": "tools/call",
                "params": {"name": "complete_tasks", "arguments": {"ids": ["1"]}},
            }).json()
        assert data["id"] == "c1"
        assert json.loads(data["result"]["content"][0]["text"])["completed"] == ["1"]
        m.assert_called_once_with(["1"])

    def test_schema_violation_is_tool_error(self, client):
        data = client.post("/rpc", json={
            "jsonrpc": "2.0",
            "id": 2,
            "method": "tools/call",
            "params": {"name": "find_tasks_by_date", "arguments": {"daysCount": 99}},
        }).json()
        assert data["result"]["isError"] is True

    def test_missing_token_reported_as_result(self, client):
        data = client.post("/tools/user_info", json={}).json()
        payload = json.loads(data["result"]["content"][0]["text"])
        assert payload["success"] is False
        assert "No Todoist API token" in payload["error"]


class TestLogging:
    def test_configure_logging_uses_config_level(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "debug")
        with patch("todoist_mcp.server.logging.basicConfig") as basic:
            server_module.configure_logging()
        assert basic.call_args[1]["level"] == "DEBUG"


class TestServerIdentity:
    INITIALIZE = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "initialize",
        "params": {
            "protocolVersion": "2025-03-26",
            "capabilities": {},
            "clientInfo": {"name": "test", "version": "0.1"},
        },
    }

    def test_server_reports_package_version(self):
        assert server_module.server.version == __version__

    def test_mcp_and_rpc_agree_on_version(self):
        transport = HttpServerTransport(server_module.server)
        with TestClient(transport.app) as client:
            mcp_info = client.post("/mcp", json=self.INITIALIZE).json()["result"]["serverInfo"]
            rpc_info = client.post("/rpc", json=self.INITIALIZE).json()["result"]["serverInfo"]
        assert mcp_info["version"] == __version__
        assert rpc_info["version"] == __version__
