from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from app.crm.constants import OFFER_STATUSES, UNKNOWN_CUSTOMER, OfferStatus
from app.crm.modules.customers.service import customer_name
from app.crm.utils import parse_int

TITLE_MIN, TITLE_MAX = 3, 200
DESCRIPTION_MAX = 1000


def parse_price(raw: Any) -> Decimal | None:
    if raw is None:
        return None
    s = str(raw).strip().replace(" ", "").replace(",", ".")
    if not s:
        return None
    try:
        return Decimal(s)
    except InvalidOperation:
        return None


def payload_from_form(form: Any) -> dict[str, Any]:
    return {
        "title": (form.get("title") or "").strip(),
        "description": (form.get("description") or "").strip(),
        "price": (form.get("price") or "").strip(),
        "customerId": (form.get("customerId") or "").strip(),
        "status": (form.get("status") or OfferStatus.DRAFT.value).strip(),
    }


def validate_offer_payload(payload: dict) -> dict[str, str]:
    errors: dict[str, str] = {}
    title = (payload.get("title") or "").strip()
    if not title:
        errors["title"] = "Title is required."
    elif not TITLE_MIN <= len(title) <= TITLE_MAX:
        errors["title"] = f"Title must be between {TITLE_MIN} and {TITLE_MAX} characters."
    if len(payload.get("description") or "") > DESCRIPTION_MAX:
        errors["description"] = f"Description must not exceed {DESCRIPTION_MAX} characters."
    price = parse_price(payload.get("price"))
    if price is None or price <= 0:
        errors["price"] = "Value must be greater than 0."
    if parse_int(payload.get("customerId")) is None:
        errors["customerId"] = "Select a customer."
    if (payload.get("status") or "") not in OFFER_STATUSES:
        errors["status"] = f"Invalid status. Must be one of: {', '.join(OFFER_STATUSES)}"
    return errors


def api_payload(payload: dict[str, Any]) -> dict[str, Any]:
    return {
        "title": payload["title"],
        "description": payload.get("description") or None,
        "price": float(parse_price(payload["price"])),
        "customerId": parse_int(payload["customerId"]),
        "status": payload["status"],
    }


def customer_lookup(customers: list[dict[str, Any]]) -> dict[int, str]:
    out = {}
    for c in customers:
        cid = parse_int(c.get("id"))
        if cid is not None:
            out[cid] = customer_name(c) or UNKNOWN_CUSTOMER
    return out


def offer_customer_name(offer: dict[str, Any], names: dict[int, str]) -> str:
    return names.get(parse_int(offer.get("customerId")), UNKNOWN_CUSTOMER)


def filter_offers(
    offers: list[dict[str, Any]],
    names: dict[int, str],
    search: str = "",
    status: str = "",
    customer_id: int | None = None,
) -> list[dict[str, Any]]:
    search = (search or "").strip().lower()
    out = []
    for o in offers:
        if status and status != "ALL" and o.get("status") != status:
            continue
        if customer_id is not None and parse_int(o.get("customerId")) != customer_id:
            continue
        if search:
            title = (o.get("title") or "").lower()
            if search not in title and search not in offer_customer_name(o, names).lower():
                continue
        out.append(o)
    return out
