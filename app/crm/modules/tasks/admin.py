from __future__ import annotations

from flask import Blueprint, flash, jsonify, redirect, render_template, request, url_for

from app.crm.audit import record_event
from app.crm.auth import current_api, current_session
from app.crm.constants import TASK_PRIORITIES, TASK_STATUSES
from app.crm.errors import NotFound, RequestFailure, ValidationFailure, user_message
from app.crm.modules.offers.service import customer_lookup
from app.crm.modules.tasks.service import (
    api_payload,
    filter_tasks,
    offer_lookup,
    payload_from_form,
    task_customer_name,
    task_offer_title,
    validate_task_payload,
)
from app.crm.rbac import require_capability
from app.crm.security import safe_next_path, wants_json
from app.crm.transitions import TransitionErrorKind, TransitionOutcome, ViewState, task_controller
from app.crm.utils import fetch_joined, format_datetime_input, is_overdue, parse_int

bp = Blueprint("tasks", __name__)

_ERROR_STATUS = {
    TransitionErrorKind.INVALID: 400,
    TransitionErrorKind.FORBIDDEN: 403,
    TransitionErrorKind.NOT_FOUND: 404,
    TransitionErrorKind.SERVER: 502,
}


def _actor() -> str | None:
    return current_session().username


def _render_form(task: dict, errors: dict, *, is_edit: bool, status: int = 200):
    api = current_api()
    customers: list = []
    offers: list = []
    error = None
    try:
        data = fetch_joined({"customers": api.list_customers, "offers": api.list_offers})
        customers, offers = data["customers"], data["offers"]
    except RequestFailure as e:
        error = user_message(e, "customer and offer lists")
    return (
        render_template(
            "tasks/form.html",
            task=task,
            errors=errors,
            customers=customers,
            offers=offers,
            statuses=TASK_STATUSES,
            priorities=TASK_PRIORITIES,
            is_edit=is_edit,
            error=error,
        ),
        status,
    )


# ---------- List ----------
@bp.get("/tasks")
@require_capability("view")
def tasks_list():
    search = (request.args.get("q") or "").strip()
    status_filter = (request.args.get("status") or "").strip()
    priority_filter = (request.args.get("priority") or "").strip()
    customer_filter = parse_int(request.args.get("customer_id"))

    api = current_api()
    tasks: list = []
    customers: list = []
    offers: list = []
    error = None
    try:
        data = fetch_joined({"tasks": api.list_tasks, "customers": api.list_customers, "offers": api.list_offers})
        tasks, customers, offers = data["tasks"], data["customers"], data["offers"]
    except RequestFailure as e:
        error = user_message(e, "task list")

    names = customer_lookup(customers)
    titles = offer_lookup(offers)
    rows = [
        {
            **t,
            "customer_display": task_customer_name(t, names),
            "offer_display": task_offer_title(t, titles),
            "overdue": is_overdue(t),
        }
        for t in filter_tasks(tasks, search, status_filter, priority_filter, customer_filter)
    ]
    return render_template(
        "tasks/list.html",
        tasks=rows,
        total=len(tasks),
        customers=customers,
        search=search,
        status_filter=status_filter,
        priority_filter=priority_filter,
        customer_filter=customer_filter,
        statuses=TASK_STATUSES,
        priorities=TASK_PRIORITIES,
        error=error,
    )


# ---------- Status transitions ----------
def _transition_response(task_id: int, view: ViewState, outcome: TransitionOutcome, old_status: str | None, nxt: str | None):
    if outcome.ok:
        if outcome.sent:
            record_event(
                actor=_actor(),
                action="task.status_change",
                entity_type="Task",
                entity_id=str(task_id),
                metadata={"old": old_status, "new": outcome.requested_status},
            )
        status = view.status_of(task_id)
        if wants_json(request):
            return jsonify({"id": task_id, "status": status, "done": status == "DONE", "state": outcome.state.value})
        flash("Task status updated.", "success")
    else:
        err = outcome.error
        if wants_json(request):
            return jsonify({"id": task_id, "state": outcome.state.value, "kind": err.kind.value, "message": err.message}), _ERROR_STATUS[err.kind]
        flash(err.message, "danger")
    return redirect(safe_next_path(nxt) or url_for("tasks.tasks_list"))


def _request_data() -> dict:
    data = request.get_json(silent=True) if request.is_json else request.form
    return data or {}


@bp.post("/tasks/<int:task_id>/toggle")
@require_capability("toggle_completion")
def task_toggle_post(task_id: int):
    data = _request_data()
    current_status = (data.get("current_status") or "").strip() or None
    view = ViewState([{"id": task_id, "status": current_status}])
    outcome = task_controller(current_api(), view).toggle_completion(task_id)
    return _transition_response(task_id, view, outcome, current_status, data.get("next"))


@bp.post("/tasks/<int:task_id>/status")
@require_capability("toggle_completion")
def task_status_post(task_id: int):
    data = _request_data()
    current_status = (data.get("current_status") or "").strip() or None
    new_status = (data.get("status") or "").strip()
    view = ViewState([{"id": task_id, "status": current_status}])
    outcome = task_controller(current_api(), view).transition(task_id, new_status)
    return _transition_response(task_id, view, outcome, current_status, data.get("next"))


# ---------- New ----------
@bp.get("/tasks/new")
@require_capability("modify")
def tasks_new_get():
    preset = {
        "status": "TODO",
        "priority": "MEDIUM",
        "customerId": request.args.get("customer_id") or "",
        "offerId": request.args.get("offer_id") or "",
    }
    return _render_form(preset, {}, is_edit=False)


@bp.post("/tasks/new")
@require_capability("modify")
def tasks_new_post():
    payload = payload_from_form(request.form)
    try:
        errors = validate_task_payload(payload, is_edit=False)
        if errors:
            raise ValidationFailure(errors)
        created = current_api().create_task(api_payload(payload)) or {}
    except ValidationFailure as e:
        return _render_form(payload, e.errors, is_edit=False, status=400)
    except RequestFailure as e:
        flash(user_message(e, "task"), "danger")
        return _render_form(payload, {}, is_edit=False, status=400)

    record_event(actor=_actor(), action="task.create", entity_type="Task", entity_id=str(created.get("id")), metadata={"title": payload["title"]})
    flash("Task created.", "success")
    return redirect(url_for("tasks.tasks_list"))


# ---------- Detail ----------
@bp.get("/tasks/<int:task_id>")
@require_capability("view")
def task_detail(task_id: int):
    api = current_api()
    try:
        task = api.get_task(task_id)
    except RequestFailure as e:
        flash(user_message(e, "task"), "danger")
        return redirect(url_for("tasks.tasks_list"))

    customer = None
    offer = None
    customer_id = parse_int(task.get("customerId"))
    offer_id = parse_int(task.get("offerId"))
    # Related records are optional; a deleted one just is not shown.
    try:
        if customer_id is not None:
            customer = api.get_customer(customer_id)
    except NotFound:
        customer = None
    except RequestFailure as e:
        flash(user_message(e, "customer"), "warning")
    try:
        if offer_id is not None:
            offer = api.get_offer(offer_id)
    except NotFound:
        offer = None
    except RequestFailure as e:
        flash(user_message(e, "offer"), "warning")

    return render_template(
        "tasks/detail.html",
        task=task,
        customer=customer,
        offer=offer,
        overdue=is_overdue(task),
        statuses=TASK_STATUSES,
    )


# ---------- Edit ----------
@bp.get("/tasks/<int:task_id>/edit")
@require_capability("modify")
def task_edit_get(task_id: int):
    try:
        task = current_api().get_task(task_id)
    except RequestFailure as e:
        flash(user_message(e, "task"), "danger")
        return redirect(url_for("tasks.tasks_list"))
    shown = {**task, "dueDate": format_datetime_input(task.get("dueDate")), "offerId": task.get("offerId") or ""}
    return _render_form(shown, {}, is_edit=True)


@bp.post("/tasks/<int:task_id>/edit")
@require_capability("modify")
def task_edit_post(task_id: int):
    payload = payload_from_form(request.form)
    shown = {**payload, "id": task_id}
    try:
        errors = validate_task_payload(payload, is_edit=True)
        if errors:
            raise ValidationFailure(errors)
        current_api().update_task(task_id, api_payload(payload))
    except ValidationFailure as e:
        return _render_form(shown, e.errors, is_edit=True, status=400)
    except NotFound as e:
        flash(user_message(e, "task"), "danger")
        return redirect(url_for("tasks.tasks_list"))
    except RequestFailure as e:
        flash(user_message(e, "task"), "danger")
        return _render_form(shown, {}, is_edit=True, status=400)

    record_event(actor=_actor(), action="task.update", entity_type="Task", entity_id=str(task_id))
    flash("Task updated.", "success")
    return redirect(url_for("tasks.task_detail", task_id=task_id))


# ---------- Delete (confirm first) ----------
@bp.get("/tasks/<int:task_id>/delete")
@require_capability("delete")
def task_delete_get(task_id: int):
    try:
        task = current_api().get_task(task_id)
    except RequestFailure as e:
        flash(user_message(e, "task"), "danger")
        return redirect(url_for("tasks.tasks_list"))
    return render_template(
        "confirm_delete.html",
        title="Delete task",
        what=task.get("title") or f"task #{task_id}",
        action_url=url_for("tasks.task_delete_post", task_id=task_id),
        cancel_url=url_for("tasks.task_detail", task_id=task_id),
    )


@bp.post("/tasks/<int:task_id>/delete")
@require_capability("delete")
def task_delete_post(task_id: int):
    if request.form.get("confirm") != "yes":
        flash("Deletion not confirmed.", "warning")
        return redirect(url_for("tasks.task_delete_get", task_id=task_id))
    try:
        current_api().delete_task(task_id)
    except RequestFailure as e:
        flash(user_message(e, "task"), "danger")
        return redirect(url_for("tasks.tasks_list"))

    record_event(actor=_actor(), action="task.delete", entity_type="Task", entity_id=str(task_id))
    flash("Task deleted.", "success")
    return redirect(url_for("tasks.tasks_list"))
