"""
Todoist REST API client.

Sync httpx client wrapping the Todoist API v1. The API token comes from
todoist_mcp.config (TODOIST_API_KEY or the config file).

Every public function returns a dict with a "success" flag instead of
raising, so tool callers can hand the result straight back to the agent.
"""
import logging
import re
from datetime import date, timedelta

import httpx

from . import config

logger = logging.getLogger("todoist-mcp")

API_BASE = "https://api.todoist.com/api/v1"
TIMEOUT = 30.0
PAGE_SIZE = 200

# Todoist inverts priorities: p1 (urgent) is sent as 4
PRIORITY_MAP = {"p1": 4, "p2": 3, "p3": 2, "p4": 1}

OVERDUE_OPTIONS = ("overdue-only", "include-overdue", "exclude-overdue")

# Tool argument name -> Todoist field name
TASK_FIELD_MAP = {
    "content": "content",
    "description": "description",
    "dueString": "due_string",
    "dueDate": "due_date",
    "dueLang": "due_lang",
    "priority": "priority",
    "labels": "labels",
    "parentId": "parent_id",
    "sectionId": "section_id",
    "deadlineDate": "deadline_date",
    "duration": "duration",
    "order": "order",
}

PROJECT_FIELD_MAP = {
    "name": "name",
    "parentId": "parent_id",
    "viewStyle": "view_style",
    "color": "color",
    "isFavorite": "is_favorite",
}

LABEL_FIELD_MAP = {
    "name": "name",
    "color": "color",
    "order": "order",
    "isFavorite": "is_favorite",
}

# Task fields handled by POST tasks/{id}/move, most specific first
MOVE_FIELDS = ("parent_id", "section_id", "project_id")

DELETABLE_TYPES = {
    "task": "tasks",
    "project": "projects",
    "section": "sections",
    "comment": "comments",
    "label": "labels",
}

DURATION_PATTERN = re.compile(r"^\s*(?:(\d+(?:\.\d+)?)\s*h)?\s*(?:(\d+)\s*m)?\s*$", re.IGNORECASE)

_client: httpx.Client | None = None
_inbox_id: str | None = None


def _get_client() -> httpx.Client:
    """Lazy singleton httpx.Client with bearer token from config."""
    global _client
    if _client is None:
        token = config.get_api_token()
        _client = httpx.Client(
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            timeout=TIMEOUT,
        )
    return _client


def _get_paginated(path: str, params: dict | None = None, limit: int | None = None) -> list[dict]:
    """GET a cursor-paginated list endpoint, following next_cursor.

    Stops early once `limit` items have been collected.
    """
    client = _get_client()
    query = {k: v for k, v in (params or {}).items() if v is not None}
    query.setdefault("limit", PAGE_SIZE)
    items: list[dict] = []

    while True:
        resp = client.get(f"{API_BASE}/{path}", params=dict(query))
        resp.raise_for_status()
        data = resp.json()
        if isinstance(data, list):
            items.extend(data)
            break
        items.extend(data.get("results", []))
        cursor = data.get("next_cursor")
        if not cursor or (limit is not None and len(items) >= limit):
            break
        query["cursor"] = cursor

    if limit is not None:
        return items[:limit]
    return items


def _resolve_inbox_id() -> str:
    """Find the inbox project and cache its id for the session."""
    global _inbox_id
    if _inbox_id is not None:
        return _inbox_id

    for project in _get_paginated("projects"):
        if project.get("inbox_project") or project.get("is_inbox_project"):
            _inbox_id = project["id"]
            return _inbox_id

    raise ValueError("Could not find inbox project in Todoist")


def _resolve_project_id(project_id: str | None) -> str | None:
    """Resolve 'inbox' string to real inbox project ID."""
    if project_id and project_id.lower() == "inbox":
        return _resolve_inbox_id()
    return project_id


def _handle_error(e: Exception) -> dict:
    """Convert exceptions to standardized error responses."""
    if isinstance(e, httpx.HTTPStatusError):
        status = e.response.status_code
        error_map = {
            401: "Unauthorized - check your API token",
            403: "Forbidden - insufficient permissions",
            404: "Not found",
            429: "Rate limited - too many requests, try again later",
        }
        msg = error_map.get(status, f"HTTP {status}: {e.response.text[:200]}")
        result = {"success": False, "error": msg, "status_code": status}
        if status == 429:
            retry_after = e.response.headers.get("Retry-After")
            if retry_after and retry_after.isdigit():
                result["retry_after_seconds"] = int(retry_after)
        return result
    elif isinstance(e, httpx.TimeoutException):
        return {"success": False, "error": "Request timed out"}
    elif isinstance(e, httpx.ConnectError):
        return {"success": False, "error": "Could not connect to Todoist API"}
    elif isinstance(e, httpx.RequestError):
        return {"success": False, "error": f"Request error: {str(e)}"}
    elif isinstance(e, (ValueError, KeyError)):
        if isinstance(e, KeyError):
            return {"success": False, "error": f"Missing required field: {e.args[0]}"}
        return {"success": False, "error": str(e)}
    else:
        logger.exception("Unexpected error talking to Todoist")
        return {"success": False, "error": f"Unexpected error: {str(e)}"}


def _parse_duration(value) -> int:
    """Convert "2h", "90m", "2h30m" or "1.5h" (or plain minutes) to minutes."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        minutes = int(value)
    else:
        match = DURATION_PATTERN.match(str(value))
        if not match or not any(match.groups()):
            raise ValueError(f"Invalid duration '{value}'. Use forms like '2h', '90m', '2h30m'")
        hours, mins = match.groups()
        minutes = int(float(hours or 0) * 60) + int(mins or 0)
    if minutes <= 0:
        raise ValueError(f"Duration must be positive, got '{value}'")
    return minutes


def _convert_priority(value):
    if isinstance(value, str):
        if value not in PRIORITY_MAP:
            raise ValueError(f"Invalid priority '{value}'. Must be one of: p1, p2, p3, p4")
        return PRIORITY_MAP[value]
    return value


def _map_fields(source: dict, field_map: dict, keep_none: bool) -> dict:
    body = {}
    for src, dst in field_map.items():
        if src in source and (keep_none or source[src] is not None):
            body[dst] = source[src]
    return body


def _task_body(task: dict, keep_none: bool = False) -> dict:
    """Build a Todoist task payload from tool arguments."""
    body = _map_fields(task, TASK_FIELD_MAP, keep_none)

    if task.get("projectId"):
        body["project_id"] = _resolve_project_id(task["projectId"])

    if body.get("priority") is not None:
        body["priority"] = _convert_priority(body["priority"])

    if body.get("deadline_date") == "remove":
        body["deadline_date"] = None

    if body.get("duration") is not None:
        body["duration"] = _parse_duration(body["duration"])
        body["duration_unit"] = "minute"

    return body


def _filter_by_labels(tasks: list[dict], labels: list[str] | None) -> list[dict]:
    if not labels:
        return tasks
    label_set = set(labels)
    return [t for t in tasks if label_set.issubset(set(t.get("labels", [])))]


def _filter_by_name(items: list[dict], search: str | None, key: str = "name") -> list[dict]:
    if not search:
        return items
    search_lower = search.lower()
    return [item for item in items if search_lower in (item.get(key) or "").lower()]


def _run_batch(items: list, action, result_key: str, describe) -> dict:
    """Apply `action` to each item, collecting per-item errors.

    `describe(index, item)` returns extra keys identifying a failed item.
    """
    done = []
    errors = []
    for i, item in enumerate(items):
        try:
            done.append(action(item))
        except Exception as e:
            err = _handle_error(e)
            err.update(describe(i, item))
            errors.append(err)

    result = {
        "success": len(errors) == 0,
        result_key: done,
        f"{result_key}_count": len(done),
    }
    if errors:
        result["errors"] = errors
        result["error_count"] = len(errors)
    return result


def _post(path: str, body: dict | None = None):
    client = _get_client()
    if body is None:
        resp = client.post(f"{API_BASE}/{path}")
    else:
        resp = client.post(f"{API_BASE}/{path}", json=body)
    resp.raise_for_status()
    return resp


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


def find_tasks(
    project_id: str | None = None,
    section_id: str | None = None,
    labels: list[str] | None = None,
    search_text: str | None = None,
    limit: int = 50,
) -> dict:
    """Find active tasks by project, section, labels, or search text."""
    try:
        params = {
            "project_id": _resolve_project_id(project_id),
            "section_id": section_id,
        }
        # The API filters by a single label; the rest is done client-side
        if labels and len(labels) == 1:
            params["label"] = labels[0]

        client_side = bool(search_text) or bool(labels and len(labels) > 1)
        tasks = _get_paginated("tasks", params, limit=None if client_side else limit)

        tasks = _filter_by_labels(tasks, labels)
        if search_text:
            search_lower = search_text.lower()
            tasks = [
                t for t in tasks
                if search_lower in (t.get("content") or "").lower()
                or search_lower in (t.get("description") or "").lower()
            ]

        tasks = tasks[:limit]
        return {"success": True, "tasks": tasks, "count": len(tasks)}

    except Exception as e:
        return _handle_error(e)


def build_date_filter(start: date, days_count: int, overdue_option: str, today: date | None = None) -> str:
    """Build a Todoist filter query for a date window."""
    today = today or date.today()
    end = start + timedelta(days=days_count - 1)
    window = f"due before: {end + timedelta(days=1)} & due after: {start - timedelta(days=1)}"

    if overdue_option == "overdue-only":
        return "overdue"
    if overdue_option == "include-overdue":
        if days_count == 1 and start == today:
            return "overdue | today"
        return f"overdue | ({window})"
    if days_count == 1:
        return f"due: {start}"
    return window


def find_tasks_by_date(
    start_date: str = "today",
    days_count: int = 1,
    overdue_option: str = "include-overdue",
    labels: list[str] | None = None,
    limit: int = 50,
) -> dict:
    """Find tasks by date range with overdue handling."""
    try:
        if overdue_option not in OVERDUE_OPTIONS:
            raise ValueError(
                f"Invalid overdueOption '{overdue_option}'. Must be one of: {', '.join(OVERDUE_OPTIONS)}"
            )
        if not 1 <= days_count <= 30:
            raise ValueError(f"daysCount must be between 1 and 30, got {days_count}")

        start = date.today() if start_date == "today" else date.fromisoformat(start_date)
        filter_str = build_date_filter(start, days_count, overdue_option)

        tasks = _get_paginated("tasks/filter", {"query": filter_str}, limit=None if labels else limit)
        tasks = _filter_by_labels(tasks, labels)[:limit]

        return {
            "success": True,
            "tasks": tasks,
            "count": len(tasks),
            "filter": filter_str,
        }

    except Exception as e:
        return _handle_error(e)


def add_tasks(tasks: list[dict]) -> dict:
    """Create one or more tasks. Each dict needs 'content' and may have
    description, dueString, dueDate, priority, labels, projectId, sectionId,
    parentId, deadlineDate, duration, order."""
    try:
        _get_client()

        def create(task):
            body = {"content": task["content"], **_task_body(task)}
            return _post("tasks", body).json()

        return _run_batch(
            tasks,
            create,
            "created",
            lambda i, task: {"task_index": i, "task_content": task.get("content", "unknown")},
        )

    except Exception as e:
        return _handle_error(e)


def update_tasks(tasks: list[dict]) -> dict:
    """Update one or more tasks. Each dict must have 'id' plus fields to update.

    projectId, sectionId and parentId move the task through the separate
    move endpoint; the update endpoint ignores them.
    """
    try:
        _get_client()

        def update(task):
            task_id = task["id"]
            body = _task_body(task, keep_none=True)
            move = {k: body.pop(k) for k in MOVE_FIELDS if k in body}

            updated = {"id": task_id}
            if body:
                updated = _post(f"tasks/{task_id}", body).json()

            # The move endpoint takes one destination; the most specific wins
            target = next((k for k in MOVE_FIELDS if move.get(k)), None)
            if target:
                resp = _post(f"tasks/{task_id}/move", {target: move[target]})
                if resp.content:
                    updated = resp.json()
            return updated

        return _run_batch(
            tasks,
            update,
            "updated",
            lambda i, task: {"task_id": task.get("id", "unknown")},
        )

    except Exception as e:
        return _handle_error(e)


def complete_tasks(ids: list[str]) -> dict:
    """Complete (close) one or more tasks by ID."""
    try:
        _get_client()

        def close(task_id):
            _post(f"tasks/{task_id}/close")
            return task_id

        return _run_batch(ids, close, "completed", lambda i, task_id: {"task_id": task_id})

    except Exception as e:
        return _handle_error(e)


def reopen_tasks(ids: list[str]) -> dict:
    """Reopen one or more completed tasks by ID."""
    try:
        _get_client()

        def reopen(task_id):
            _post(f"tasks/{task_id}/reopen")
            return task_id

        return _run_batch(ids, reopen, "reopened", lambda i, task_id: {"task_id": task_id})

    except Exception as e:
        return _handle_error(e)


def delete_object(object_type: str, object_id: str) -> dict:
    """Delete a task, project, section, comment, or label."""
    try:
        endpoint = DELETABLE_TYPES.get(object_type)
        if not endpoint:
            return {
                "success": False,
                "error": f"Invalid type '{object_type}'. Valid: {', '.join(DELETABLE_TYPES)}",
            }

        client = _get_client()
        resp = client.delete(f"{API_BASE}/{endpoint}/{object_id}")
        resp.raise_for_status()
        return {"success": True, "deleted_type": object_type, "deleted_id": object_id}

    except Exception as e:
        return _handle_error(e)


def user_info() -> dict:
    """Get the authenticated user's profile."""
    try:
        client = _get_client()
        resp = client.get(f"{API_BASE}/user")
        resp.raise_for_status()
        user = resp.json()

        return {
            "success": True,
            "user": {
                "id": user.get("id"),
                "full_name": user.get("full_name"),
                "email": user.get("email"),
                "tz_info": user.get("tz_info"),
                "start_day": user.get("start_day"),
                "is_premium": user.get("is_premium"),
                "premium_until": user.get("premium_until"),
            },
        }

    except Exception as e:
        return _handle_error(e)


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


def find_projects(search: str | None = None) -> dict:
    """List all projects, optionally filter by name."""
    try:
        projects = _filter_by_name(_get_paginated("projects"), search)
        return {"success": True, "projects": projects, "count": len(projects)}

    except Exception as e:
        return _handle_error(e)


def add_projects(projects: list[dict]) -> dict:
    """Create one or more projects. Each dict may have: name, parentId, viewStyle, color, isFavorite."""
    try:
        _get_client()

        def create(project):
            body = {"name": project["name"], **_map_fields(project, PROJECT_FIELD_MAP, keep_none=False)}
            return _post("projects", body).json()

        return _run_batch(
            projects,
            create,
            "created",
            lambda i, project: {"project_index": i, "project_name": project.get("name", "unknown")},
        )

    except Exception as e:
        return _handle_error(e)


def update_projects(projects: list[dict]) -> dict:
    """Update one or more projects. Each dict must have 'id'."""
    try:
        _get_client()

        def update(project):
            project_id = project["id"]
            body = _map_fields(project, PROJECT_FIELD_MAP, keep_none=False)
            # Moving a project is a separate endpoint
            body.pop("parent_id", None)
            return _post(f"projects/{project_id}", body).json()

        return _run_batch(
            projects,
            update,
            "updated",
            lambda i, project: {"project_id": project.get("id", "unknown")},
        )

    except Exception as e:
        return _handle_error(e)


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


def find_sections(project_id: str | None = None, search: str | None = None) -> dict:
    """List sections, optionally for one project and filtered by name."""
    try:
        sections = _get_paginated("sections", {"project_id": _resolve_project_id(project_id)})
        sections = _filter_by_name(sections, search)
        return {"success": True, "sections": sections, "count": len(sections)}

    except Exception as e:
        return _handle_error(e)


def add_sections(sections: list[dict]) -> dict:
    """Create one or more sections. Each dict needs name and projectId."""
    try:
        _get_client()

        def create(section):
            body = {
                "name": section["name"],
                "project_id": _resolve_project_id(section["projectId"]),
            }
            if section.get("order") is not None:
                body["order"] = section["order"]
            return _post("sections", body).json()

        return _run_batch(
            sections,
            create,
            "created",
            lambda i, section: {"section_index": i, "section_name": section.get("name", "unknown")},
        )

    except Exception as e:
        return _handle_error(e)


# ---------------------------------------------------------------------------
# Labels
# ---------------------------------------------------------------------------


def find_labels(search: str | None = None) -> dict:
    """List personal labels, optionally filter by name."""
    try:
        labels = _filter_by_name(_get_paginated("labels"), search)
        return {"success": True, "labels": labels, "count": len(labels)}

    except Exception as e:
        return _handle_error(e)


def add_labels(labels: list[dict]) -> dict:
    """Create one or more personal labels."""
    try:
        _get_client()

        def create(label):
            body = {"name": label["name"], **_map_fields(label, LABEL_FIELD_MAP, keep_none=False)}
            return _post("labels", body).json()

        return _run_batch(
            labels,
            create,
            "created",
            lambda i, label: {"label_index": i, "label_name": label.get("name", "unknown")},
        )

    except Exception as e:
        return _handle_error(e)


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


def find_comments(task_id: str | None = None, project_id: str | None = None) -> dict:
    """List comments on a task or a project (exactly one of the two)."""
    try:
        if bool(task_id) == bool(project_id):
            raise ValueError("Provide exactly one of taskId or projectId")

        params = {"task_id": task_id, "project_id": _resolve_project_id(project_id)}
        comments = _get_paginated("comments", params)
        return {"success": True, "comments": comments, "count": len(comments)}

    except Exception as e:
        return _handle_error(e)


def add_comments(comments: list[dict]) -> dict:
    """Add comments. Each dict needs content plus taskId or projectId."""
    try:
        _get_client()

        def create(comment):
            task_id = comment.get("taskId")
            project_id = comment.get("projectId")
            if bool(task_id) == bool(project_id):
                raise ValueError("Each comment needs exactly one of taskId or projectId")
            body = {"content": comment["content"]}
            if task_id:
                body["task_id"] = task_id
            else:
                body["project_id"] = _resolve_project_id(project_id)
            return _post("comments", body).json()

        return _run_batch(
            comments,
            create,
            "created",
            lambda i, comment: {"comment_index": i},
        )

    except Exception as e:
        return _handle_error(e)


def reset_client():
    """Reset the client and cached state. Used for testing."""
    global _client, _inbox_id
    if _client is not None:
        _client.close()
    _client = None
    _inbox_id = None
