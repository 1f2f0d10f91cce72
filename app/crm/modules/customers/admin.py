from __future__ import annotations

from flask import Blueprint, flash, redirect, render_template, request, url_for

from app.crm.audit import record_event
from app.crm.auth import current_api, current_session
from app.crm.constants import CUSTOMER_STATUSES
from app.crm.errors import NotFound, RequestFailure, ValidationFailure, user_message
from app.crm.modules.customers.service import (
    api_payload,
    filter_customers,
    payload_from_form,
    validate_customer_payload,
)
from app.crm.rbac import require_capability

bp = Blueprint("customers", __name__)


def _actor() -> str | None:
    return current_session().username


def _load_or_redirect(customer_id: int):
    """Returns (customer, None) or (None, redirect-response)."""
    try:
        return current_api().get_customer(customer_id), None
    except RequestFailure as e:
        flash(user_message(e, "customer"), "danger")
        return None, redirect(url_for("customers.customers_list"))


# ---------- List ----------
@bp.get("/customers")
@require_capability("view")
def customers_list():
    search = (request.args.get("q") or "").strip()
    status_filter = (request.args.get("status") or "").strip()

    customers: list = []
    error = None
    try:
        customers = current_api().list_customers()
    except RequestFailure as e:
        error = user_message(e, "customer list")

    filtered = filter_customers(customers, search, status_filter)
    return render_template(
        "customers/list.html",
        customers=filtered,
        total=len(customers),
        search=search,
        status_filter=status_filter,
        statuses=CUSTOMER_STATUSES,
        error=error,
    )


# ---------- New ----------
@bp.get("/customers/new")
@require_capability("modify")
def customers_new_get():
    return render_template("customers/form.html", customer={"status": "LEAD"}, errors={}, statuses=CUSTOMER_STATUSES, is_edit=False)


@bp.post("/customers/new")
@require_capability("modify")
def customers_new_post():
    payload = payload_from_form(request.form)
    try:
        errors = validate_customer_payload(payload)
        if errors:
            raise ValidationFailure(errors)
        created = current_api().create_customer(api_payload(payload)) or {}
    except ValidationFailure as e:
        return render_template("customers/form.html", customer=payload, errors=e.errors, statuses=CUSTOMER_STATUSES, is_edit=False), 400
    except RequestFailure as e:
        flash(user_message(e, "customer"), "danger")
        return render_template("customers/form.html", customer=payload, errors={}, statuses=CUSTOMER_STATUSES, is_edit=False), 400

    record_event(actor=_actor(), action="customer.create", entity_type="Customer", entity_id=str(created.get("id")), metadata={"email": payload["email"]})
    flash("Customer created.", "success")
    return redirect(url_for("customers.customers_list"))


# ---------- Detail ----------
@bp.get("/customers/<int:customer_id>")
@require_capability("view")
def customer_detail(customer_id: int):
    customer, resp = _load_or_redirect(customer_id)
    if resp is not None:
        return resp
    return render_template("customers/detail.html", customer=customer)


# ---------- Edit ----------
@bp.get("/customers/<int:customer_id>/edit")
@require_capability("modify")
def customer_edit_get(customer_id: int):
    customer, resp = _load_or_redirect(customer_id)
    if resp is not None:
        return resp
    return render_template("customers/form.html", customer=customer, errors={}, statuses=CUSTOMER_STATUSES, is_edit=True)


@bp.post("/customers/<int:customer_id>/edit")
@require_capability("modify")
def customer_edit_post(customer_id: int):
    payload = payload_from_form(request.form)
    payload_with_id = {**payload, "id": customer_id}
    try:
        errors = validate_customer_payload(payload)
        if errors:
            raise ValidationFailure(errors)
        current_api().update_customer(customer_id, api_payload(payload))
    except ValidationFailure as e:
        return render_template("customers/form.html", customer=payload_with_id, errors=e.errors, statuses=CUSTOMER_STATUSES, is_edit=True), 400
    except NotFound as e:
        flash(user_message(e, "customer"), "danger")
        return redirect(url_for("customers.customers_list"))
    except RequestFailure as e:
        flash(user_message(e, "customer"), "danger")
        return render_template("customers/form.html", customer=payload_with_id, errors={}, statuses=CUSTOMER_STATUSES, is_edit=True), 400

    record_event(actor=_actor(), action="customer.update", entity_type="Customer", entity_id=str(customer_id))
    flash("Customer updated.", "success")
    return redirect(url_for("customers.customer_detail", customer_id=customer_id))


# ---------- Delete (confirm first) ----------
@bp.get("/customers/<int:customer_id>/delete")
@require_capability("delete")
def customer_delete_get(customer_id: int):
    customer, resp = _load_or_redirect(customer_id)
    if resp is not None:
        return resp
    return render_template(
        "confirm_delete.html",
        title="Delete customer",
        what=f"{customer.get('firstName') or ''} {customer.get('lastName') or ''}".strip() or f"customer #{customer_id}",
        action_url=url_for("customers.customer_delete_post", customer_id=customer_id),
        cancel_url=url_for("customers.customer_detail", customer_id=customer_id),
    )


@bp.post("/customers/<int:customer_id>/delete")
@require_capability("delete")
def customer_delete_post(customer_id: int):
    if request.form.get("confirm") != "yes":
        flash("Deletion not confirmed.", "warning")
        return redirect(url_for("customers.customer_delete_get", customer_id=customer_id))
    try:
        current_api().delete_customer(customer_id)
    except RequestFailure as e:
        flash(user_message(e, "customer"), "danger")
        return redirect(url_for("customers.customers_list"))

    record_event(actor=_actor(), action="customer.delete", entity_type="Customer", entity_id=str(customer_id))
    flash("Customer deleted.", "success")
    return redirect(url_for("customers.customers_list"))
