from __future__ import annotations

from flask import Blueprint, flash, jsonify, redirect, render_template, request, url_for

from app.crm.audit import record_event
from app.crm.auth import current_api, current_session
from app.crm.constants import OFFER_STATUSES
from app.crm.errors import NotFound, RequestFailure, ValidationFailure, user_message
from app.crm.modules.offers.service import (
    api_payload,
    customer_lookup,
    filter_offers,
    payload_from_form,
    validate_offer_payload,
)
from app.crm.rbac import require_capability
from app.crm.security import safe_next_path, wants_json
from app.crm.transitions import TransitionErrorKind, ViewState, offer_controller
from app.crm.utils import fetch_joined, parse_int

bp = Blueprint("offers", __name__)

_ERROR_STATUS = {
    TransitionErrorKind.INVALID: 400,
    TransitionErrorKind.FORBIDDEN: 403,
    TransitionErrorKind.NOT_FOUND: 404,
    TransitionErrorKind.SERVER: 502,
}


def _actor() -> str | None:
    return current_session().username


def _customers_or_empty() -> tuple[list, str | None]:
    try:
        return current_api().list_customers(), None
    except RequestFailure as e:
        return [], user_message(e, "customer list")


def _render_form(offer: dict, errors: dict, *, is_edit: bool, status: int = 200):
    customers, error = _customers_or_empty()
    return (
        render_template(
            "offers/form.html",
            offer=offer,
            errors=errors,
            customers=customers,
            statuses=OFFER_STATUSES,
            is_edit=is_edit,
            error=error,
        ),
        status,
    )


# ---------- List ----------
@bp.get("/offers")
@require_capability("view")
def offers_list():
    search = (request.args.get("q") or "").strip()
    status_filter = (request.args.get("status") or "").strip()
    customer_filter = parse_int(request.args.get("customer_id"))

    api = current_api()
    offers: list = []
    customers: list = []
    error = None
    try:
        data = fetch_joined({"offers": api.list_offers, "customers": api.list_customers})
        offers, customers = data["offers"], data["customers"]
    except RequestFailure as e:
        error = user_message(e, "offer list")

    names = customer_lookup(customers)
    filtered = filter_offers(offers, names, search, status_filter, customer_filter)
    return render_template(
        "offers/list.html",
        offers=filtered,
        total=len(offers),
        customers=customers,
        customer_names=names,
        search=search,
        status_filter=status_filter,
        customer_filter=customer_filter,
        statuses=OFFER_STATUSES,
        error=error,
    )


# ---------- Status transition ----------
@bp.post("/offers/<int:offer_id>/status")
@require_capability("modify")
def offer_status_post(offer_id: int):
    data = request.get_json(silent=True) if request.is_json else request.form
    data = data or {}
    new_status = (data.get("status") or "").strip()
    current_status = (data.get("current_status") or "").strip() or None

    view = ViewState([{"id": offer_id, "status": current_status}])
    outcome = offer_controller(current_api(), view).transition(offer_id, new_status)

    if outcome.ok:
        if outcome.sent:
            record_event(
                actor=_actor(),
                action="offer.status_change",
                entity_type="Offer",
                entity_id=str(offer_id),
                metadata={"old": current_status, "new": new_status},
            )
        if wants_json(request):
            return jsonify({"id": offer_id, "status": view.status_of(offer_id), "state": outcome.state.value})
        flash("Offer status updated.", "success")
    else:
        err = outcome.error
        if wants_json(request):
            return jsonify({"id": offer_id, "state": outcome.state.value, "kind": err.kind.value, "message": err.message}), _ERROR_STATUS[err.kind]
        flash(err.message, "danger")

    return redirect(safe_next_path(data.get("next")) or url_for("offers.offers_list"))


# ---------- New ----------
@bp.get("/offers/new")
@require_capability("modify")
def offers_new_get():
    preset = {"status": "DRAFT", "customerId": request.args.get("customer_id") or ""}
    return _render_form(preset, {}, is_edit=False)


@bp.post("/offers/new")
@require_capability("modify")
def offers_new_post():
    payload = payload_from_form(request.form)
    try:
        errors = validate_offer_payload(payload)
        if errors:
            raise ValidationFailure(errors)
        created = current_api().create_offer(api_payload(payload)) or {}
    except ValidationFailure as e:
        return _render_form(payload, e.errors, is_edit=False, status=400)
    except RequestFailure as e:
        flash(user_message(e, "offer"), "danger")
        return _render_form(payload, {}, is_edit=False, status=400)

    record_event(actor=_actor(), action="offer.create", entity_type="Offer", entity_id=str(created.get("id")), metadata={"title": payload["title"]})
    flash("Offer created.", "success")
    return redirect(url_for("offers.offers_list"))


# ---------- Detail ----------
@bp.get("/offers/<int:offer_id>")
@require_capability("view")
def offer_detail(offer_id: int):
    api = current_api()
    try:
        offer = api.get_offer(offer_id)
    except RequestFailure as e:
        flash(user_message(e, "offer"), "danger")
        return redirect(url_for("offers.offers_list"))

    customer = None
    customer_id = parse_int(offer.get("customerId"))
    if customer_id is not None:
        try:
            customer = api.get_customer(customer_id)
        except NotFound:
            customer = None
        except RequestFailure as e:
            flash(user_message(e, "customer"), "warning")
    return render_template("offers/detail.html", offer=offer, customer=customer, statuses=OFFER_STATUSES)


# ---------- Edit ----------
@bp.get("/offers/<int:offer_id>/edit")
@require_capability("modify")
def offer_edit_get(offer_id: int):
    try:
        offer = current_api().get_offer(offer_id)
    except RequestFailure as e:
        flash(user_message(e, "offer"), "danger")
        return redirect(url_for("offers.offers_list"))
    return _render_form(offer, {}, is_edit=True)


@bp.post("/offers/<int:offer_id>/edit")
@require_capability("modify")
def offer_edit_post(offer_id: int):
    payload = payload_from_form(request.form)
    shown = {**payload, "id": offer_id}
    try:
        errors = validate_offer_payload(payload)
        if errors:
            raise ValidationFailure(errors)
        current_api().update_offer(offer_id, api_payload(payload))
    except ValidationFailure as e:
        return _render_form(shown, e.errors, is_edit=True, status=400)
    except NotFound as e:
        flash(user_message(e, "offer"), "danger")
        return redirect(url_for("offers.offers_list"))
    except RequestFailure as e:
        flash(user_message(e, "offer"), "danger")
        return _render_form(shown, {}, is_edit=True, status=400)

    record_event(actor=_actor(), action="offer.update", entity_type="Offer", entity_id=str(offer_id))
    flash("Offer updated.", "success")
    return redirect(url_for("offers.offer_detail", offer_id=offer_id))


# ---------- Delete (confirm first) ----------
@bp.get("/offers/<int:offer_id>/delete")
@require_capability("delete")
def offer_delete_get(offer_id: int):
    try:
        offer = current_api().get_offer(offer_id)
    except RequestFailure as e:
        flash(user_message(e, "offer"), "danger")
        return redirect(url_for("offers.offers_list"))
    return render_template(
        "confirm_delete.html",
        title="Delete offer",
        what=offer.get("title") or f"offer #{offer_id}",
        action_url=url_for("offers.offer_delete_post", offer_id=offer_id),
        cancel_url=url_for("offers.offer_detail", offer_id=offer_id),
    )


@bp.post("/offers/<int:offer_id>/delete")
@require_capability("delete")
def offer_delete_post(offer_id: int):
    if request.form.get("confirm") != "yes":
        flash("Deletion not confirmed.", "warning")
        return redirect(url_for("offers.offer_delete_get", offer_id=offer_id))
    try:
        current_api().delete_offer(offer_id)
    except RequestFailure as e:
        flash(user_message(e, "offer"), "danger")
        return redirect(url_for("offers.offers_list"))

    record_event(actor=_actor(), action="offer.delete", entity_type="Offer", entity_id=str(offer_id))
    flash("Offer deleted.", "success")
    return redirect(url_for("offers.offers_list"))
