from __future__ import annotations

from datetime import datetime
from typing import Any

from app.crm.constants import MISSING_VALUE, TASK_PRIORITIES, TASK_STATUSES, TaskPriority, TaskStatus
from app.crm.utils import parse_api_datetime, parse_int

TITLE_MIN, TITLE_MAX = 3, 200
DESCRIPTION_MAX = 1000


def payload_from_form(form: Any) -> dict[str, Any]:
    return {
        "title": (form.get("title") or "").strip(),
        "description": (form.get("description") or "").strip(),
        "dueDate": (form.get("dueDate") or "").strip(),
        "status": (form.get("status") or TaskStatus.TODO.value).strip(),
        "priority": (form.get("priority") or TaskPriority.MEDIUM.value).strip(),
        "customerId": (form.get("customerId") or "").strip(),
        "offerId": (form.get("offerId") or "").strip(),
    }


def validate_task_payload(payload: dict, *, is_edit: bool, now: datetime | None = None) -> dict[str, str]:
    errors: dict[str, str] = {}
    title = (payload.get("title") or "").strip()
    if not title:
        errors["title"] = "Title is required."
    elif not TITLE_MIN <= len(title) <= TITLE_MAX:
        errors["title"] = f"Title must be between {TITLE_MIN} and {TITLE_MAX} characters."
    if len(payload.get("description") or "") > DESCRIPTION_MAX:
        errors["description"] = f"Description must not exceed {DESCRIPTION_MAX} characters."
    if parse_int(payload.get("customerId")) is None:
        errors["customerId"] = "Select a customer."
    offer_raw = (payload.get("offerId") or "").strip()
    if offer_raw and parse_int(offer_raw) is None:
        errors["offerId"] = "Invalid offer."

    due_raw = (payload.get("dueDate") or "").strip()
    if not due_raw:
        errors["dueDate"] = "Due date is required."
    else:
        due = parse_api_datetime(due_raw)
        if due is None:
            errors["dueDate"] = "Due date is invalid."
        elif not is_edit:
            # Existing tasks may keep a past due date.
            now = now or (datetime.now(due.tzinfo) if due.tzinfo else datetime.now())
            if due < now:
                errors["dueDate"] = "Due date must be in the future."

    if (payload.get("status") or "") not in TASK_STATUSES:
        errors["status"] = f"Invalid status. Must be one of: {', '.join(TASK_STATUSES)}"
    if (payload.get("priority") or "") not in TASK_PRIORITIES:
        errors["priority"] = f"Invalid priority. Must be one of: {', '.join(TASK_PRIORITIES)}"
    return errors


def api_payload(payload: dict[str, Any]) -> dict[str, Any]:
    due = parse_api_datetime(payload["dueDate"])
    return {
        "title": payload["title"],
        "description": payload.get("description") or None,
        "dueDate": due.strftime("%Y-%m-%dT%H:%M:%S") if due else None,
        "status": payload["status"],
        "priority": payload["priority"],
        "customerId": parse_int(payload["customerId"]),
        "offerId": parse_int(payload.get("offerId")),
    }


def offer_lookup(offers: list[dict[str, Any]]) -> dict[int, str]:
    out = {}
    for o in offers:
        oid = parse_int(o.get("id"))
        if oid is not None:
            out[oid] = o.get("title") or MISSING_VALUE
    return out


def task_customer_name(task: dict[str, Any], names: dict[int, str]) -> str:
    """Prefer the backend's denormalised name; dangling ids fall back to "-"."""
    if task.get("customerName"):
        return task["customerName"]
    return names.get(parse_int(task.get("customerId")), MISSING_VALUE)


def task_offer_title(task: dict[str, Any], titles: dict[int, str]) -> str:
    if task.get("offerTitle"):
        return task["offerTitle"]
    offer_id = parse_int(task.get("offerId"))
    if offer_id is None:
        return MISSING_VALUE
    return titles.get(offer_id, MISSING_VALUE)


def filter_tasks(
    tasks: list[dict[str, Any]],
    search: str = "",
    status: str = "",
    priority: str = "",
    customer_id: int | None = None,
) -> list[dict[str, Any]]:
    search = (search or "").strip().lower()
    out = []
    for t in tasks:
        if search and search not in (t.get("title") or "").lower():
            continue
        if status and status != "ALL" and t.get("status") != status:
            continue
        if priority and priority != "ALL" and t.get("priority") != priority:
            continue
        if customer_id is not None and parse_int(t.get("customerId")) != customer_id:
            continue
        out.append(t)
    return out
