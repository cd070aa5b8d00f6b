#!/usr/bin/env python3
"""
Todoist MCP Server

MCP server wrapping the Todoist API. Runs on stdio for local clients, and
is the server object the HTTP transport (http_transport.py) fronts.

Tools:
- find_tasks, find_tasks_by_date
- add_tasks, update_tasks, complete_tasks, reopen_tasks
- delete_object
- user_info
- find_projects, add_projects, update_projects
- find_sections, add_sections
- find_labels, add_labels
- find_comments, add_comments
"""
import asyncio
import json
import logging
import sys

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent

from . import __version__, config, todoist_api

logger = logging.getLogger("todoist-mcp")

server = Server("todoist", version=__version__)

PRIORITY_SCHEMA = {
    "type": "string",
    "enum": ["p1", "p2", "p3", "p4"],
    "description": "p1=highest, p4=lowest.",
}

LABELS_SCHEMA = {"type": "array", "items": {"type": "string"}}

ID_LIST_SCHEMA = {"type": "array", "items": {"type": "string"}}

TASK_PROPERTIES = {
    "content": {"type": "string", "description": "Task title."},
    "description": {"type": "string"},
    "dueString": {"type": "string", "description": 'Due date in natural language, e.g. "every monday at 9am".'},
    "dueDate": {"type": "string", "description": "Due date in YYYY-MM-DD."},
    "priority": PRIORITY_SCHEMA,
    "labels": LABELS_SCHEMA,
    "projectId": {"type": "string", "description": 'Project ID or "inbox".'},
    "sectionId": {"type": "string"},
    "parentId": {"type": "string"},
    "deadlineDate": {"type": "string", "description": "Deadline in YYYY-MM-DD."},
    "duration": {"type": "string", "description": 'Duration: "2h", "90m", "2h30m".'},
    "order": {"type": "number"},
}

PROJECT_PROPERTIES = {
    "name": {"type": "string", "description": "Project name."},
    "parentId": {"type": "string", "description": "Parent project ID for sub-projects."},
    "viewStyle": {"type": "string", "enum": ["list", "board", "calendar"]},
    "color": {"type": "string"},
    "isFavorite": {"type": "boolean"},
}

TOOLS = [
    Tool(
        name="find_tasks",
        description="Find active tasks by project, section, labels, or search text.",
        inputSchema={
            "type": "object",
            "properties": {
                "projectId": {
                    "type": "string",
                    "description": 'Project ID or "inbox" for inbox tasks.',
                },
                "sectionId": {
                    "type": "string",
                    "description": "Section ID to filter by.",
                },
                "labels": {
                    **LABELS_SCHEMA,
                    "description": "Filter by labels (all must match).",
                },
                "searchText": {
                    "type": "string",
                    "description": "Text search in task content and description.",
                },
                "limit": {
                    "type": "integer",
                    "description": "Max results (default 50).",
                    "default": 50,
                },
            },
        },
    ),
    Tool(
        name="find_tasks_by_date",
        description="Get tasks by date range. Use startDate 'today' for today's tasks including overdue.",
        inputSchema={
            "type": "object",
            "properties": {
                "startDate": {
                    "type": "string",
                    "description": "Start date: YYYY-MM-DD or 'today'.",
                    "default": "today",
                },
                "daysCount": {
                    "type": "integer",
                    "description": "Number of days from start (default 1).",
                    "default": 1,
                    "minimum": 1,
                    "maximum": 30,
                },
                "overdueOption": {
                    "type": "string",
                    "enum": list(todoist_api.OVERDUE_OPTIONS),
                    "description": "How to handle overdue tasks (default: include-overdue).",
                    "default": "include-overdue",
                },
                "labels": {**LABELS_SCHEMA, "description": "Filter by labels."},
                "limit": {
                    "type": "integer",
                    "description": "Max results (default 50).",
                    "default": 50,
                },
            },
        },
    ),
    Tool(
        name="add_tasks",
        description="Create one or more tasks in Todoist.",
        inputSchema={
            "type": "object",
            "properties": {
                "tasks": {
                    "type": "array",
                    "description": "Array of tasks to create.",
                    "items": {
                        "type": "object",
                        "properties": TASK_PROPERTIES,
                        "required": ["content"],
                    },
                },
            },
            "required": ["tasks"],
        },
    ),
    Tool(
        name="update_tasks",
        description=(
            "Update one or more existing tasks. projectId, sectionId or parentId move the task. "
            "Use deadlineDate 'remove' to clear a deadline."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "tasks": {
                    "type": "array",
                    "description": "Tasks to update (each must have 'id').",
                    "items": {
                        "type": "object",
                        "properties": {
                            "id": {"type": "string", "description": "Task ID to update."},
                            **TASK_PROPERTIES,
                        },
                        "required": ["id"],
                    },
                },
            },
            "required": ["tasks"],
        },
    ),
    Tool(
        name="complete_tasks",
        description="Complete (close) one or more tasks by ID.",
        inputSchema={
            "type": "object",
            "properties": {
                "ids": {**ID_LIST_SCHEMA, "description": "Task IDs to complete."},
            },
            "required": ["ids"],
        },
    ),
    Tool(
        name="reopen_tasks",
        description="Reopen one or more completed tasks by ID.",
        inputSchema={
            "type": "object",
            "properties": {
                "ids": {**ID_LIST_SCHEMA, "description": "Task IDs to reopen."},
            },
            "required": ["ids"],
        },
    ),
    Tool(
        name="delete_object",
        description="Delete a task, project, section, comment, or label by ID.",
        inputSchema={
            "type": "object",
            "properties": {
                "type": {
                    "type": "string",
                    "enum": list(todoist_api.DELETABLE_TYPES),
                    "description": "Type of object to delete.",
                },
                "id": {
                    "type": "string",
                    "description": "ID of the object to delete.",
                },
            },
            "required": ["type", "id"],
        },
    ),
    Tool(
        name="user_info",
        description="Get Todoist user information (name, email, timezone, plan).",
        inputSchema={
            "type": "object",
            "properties": {},
        },
    ),
    Tool(
        name="find_projects",
        description="List all projects, optionally filter by name.",
        inputSchema={
            "type": "object",
            "properties": {
                "search": {
                    "type": "string",
                    "description": "Search by project name (case-insensitive substring).",
                },
            },
        },
    ),
    Tool(
        name="add_projects",
        description="Create one or more Todoist projects.",
        inputSchema={
            "type": "object",
            "properties": {
                "projects": {
                    "type": "array",
                    "description": "Array of projects to create.",
                    "items": {
                        "type": "object",
                        "properties": PROJECT_PROPERTIES,
                        "required": ["name"],
                    },
                },
            },
            "required": ["projects"],
        },
    ),
    Tool(
        name="update_projects",
        description="Rename or restyle one or more projects.",
        inputSchema={
            "type": "object",
            "properties": {
                "projects": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "id": {"type": "string", "description": "Project ID to update."},
                            "name": {"type": "string"},
                            "viewStyle": {"type": "string", "enum": ["list", "board", "calendar"]},
                            "color": {"type": "string"},
                            "isFavorite": {"type": "boolean"},
                        },
                        "required": ["id"],
                    },
                },
            },
            "required": ["projects"],
        },
    ),
    Tool(
        name="find_sections",
        description="List sections, optionally within one project and filtered by name.",
        inputSchema={
            "type": "object",
            "properties": {
                "projectId": {"type": "string", "description": 'Project ID or "inbox".'},
                "search": {"type": "string", "description": "Case-insensitive name search."},
            },
        },
    ),
    Tool(
        name="add_sections",
        description="Create one or more sections in a project.",
        inputSchema={
            "type": "object",
            "properties": {
                "sections": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "name": {"type": "string"},
                            "projectId": {"type": "string", "description": 'Project ID or "inbox".'},
                            "order": {"type": "integer"},
                        },
                        "required": ["name", "projectId"],
                    },
                },
            },
            "required": ["sections"],
        },
    ),
    Tool(
        name="find_labels",
        description="List personal labels, optionally filter by name.",
        inputSchema={
            "type": "object",
            "properties": {
                "search": {"type": "string", "description": "Case-insensitive name search."},
            },
        },
    ),
    Tool(
        name="add_labels",
        description="Create one or more personal labels.",
        inputSchema={
            "type": "object",
            "properties": {
                "labels": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "name": {"type": "string"},
                            "color": {"type": "string"},
                            "isFavorite": {"type": "boolean"},
                        },
                        "required": ["name"],
                    },
                },
            },
            "required": ["labels"],
        },
    ),
    Tool(
        name="find_comments",
        description="List comments on a task or a project. Provide exactly one of taskId or projectId.",
        inputSchema={
            "type": "object",
            "properties": {
                "taskId": {"type": "string"},
                "projectId": {"type": "string"},
            },
        },
    ),
    Tool(
        name="add_comments",
        description="Add comments to tasks or projects.",
        inputSchema={
            "type": "object",
            "properties": {
                "comments": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "content": {"type": "string", "description": "Comment text (markdown)."},
                            "taskId": {"type": "string"},
                            "projectId": {"type": "string"},
                        },
                        "required": ["content"],
                    },
                },
            },
            "required": ["comments"],
        },
    ),
]

# Map tool names to API functions with argument translation
HANDLERS = {
    "find_tasks": lambda args: todoist_api.find_tasks(
        project_id=args.get("projectId"),
        section_id=args.get("sectionId"),
        labels=args.get("labels"),
        search_text=args.get("searchText"),
        limit=args.get("limit", 50),
    ),
    "find_tasks_by_date": lambda args: todoist_api.find_tasks_by_date(
        start_date=args.get("startDate", "today"),
        days_count=args.get("daysCount", 1),
        overdue_option=args.get("overdueOption", "include-overdue"),
        labels=args.get("labels"),
        limit=args.get("limit", 50),
    ),
    "add_tasks": lambda args: todoist_api.add_tasks(args["tasks"]),
    "update_tasks": lambda args: todoist_api.update_tasks(args["tasks"]),
    "complete_tasks": lambda args: todoist_api.complete_tasks(args["ids"]),
    "reopen_tasks": lambda args: todoist_api.reopen_tasks(args["ids"]),
    "delete_object": lambda args: todoist_api.delete_object(args["type"], args["id"]),
    "user_info": lambda args: todoist_api.user_info(),
    "find_projects": lambda args: todoist_api.find_projects(search=args.get("search")),
    "add_projects": lambda args: todoist_api.add_projects(args["projects"]),
    "update_projects": lambda args: todoist_api.update_projects(args["projects"]),
    "find_sections": lambda args: todoist_api.find_sections(
        project_id=args.get("projectId"),
        search=args.get("search"),
    ),
    "add_sections": lambda args: todoist_api.add_sections(args["sections"]),
    "find_labels": lambda args: todoist_api.find_labels(search=args.get("search")),
    "add_labels": lambda args: todoist_api.add_labels(args["labels"]),
    "find_comments": lambda args: todoist_api.find_comments(
        task_id=args.get("taskId"),
        project_id=args.get("projectId"),
    ),
    "add_comments": lambda args: todoist_api.add_comments(args["comments"]),
}


@server.list_tools()
async def list_tools():
    return TOOLS


@server.call_tool()
async def call_tool(name: str, arguments: dict):
    handler = HANDLERS.get(name)
    if not handler:
        result = {"success": False, "error": f"Unknown tool: {name}"}
    else:
        try:
            # The Todoist client is blocking; keep it off the event loop
            result = await asyncio.to_thread(handler, arguments or {})
        except Exception as e:
            logger.exception("Tool %s failed", name)
            result = {"success": False, "error": f"Tool execution error: {str(e)}"}

    return [TextContent(type="text", text=json.dumps(result, indent=2, default=str))]


def configure_logging():
    logging.basicConfig(
        level=config.get_log_level(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


async def main():
    configure_logging()
    logger.info("Starting Todoist MCP Server (stdio)")
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def main_sync():
    """Synchronous entry point for uvx/pip scripts."""
    asyncio.run(main())


if __name__ == "__main__":
    main_sync()
