from __future__ import annotations

import re
from typing import Any

from app.crm.constants import CUSTOMER_STATUSES, CustomerStatus

EMAIL_RE = re.compile(r"\S+@\S+\.\S+")
PHONE_COUNTRY_PREFIX = "+48"


def format_phone_number(value: str | None) -> str:
    """
    Normalise to "+48 123 456 789". A leading 48 country code is dropped when
    more than nine digits are given; extra digits beyond nine are ignored, so
    callers check phone_digits_ok() first.
    """
    value = value or ""
    digits = re.sub(r"\D", "", value)
    number = digits[2:] if len(digits) > 9 and digits.startswith("48") else digits
    parts = [number[0:3], number[3:6], number[6:9]]
    if len(number) > 6:
        return f"{PHONE_COUNTRY_PREFIX} {parts[0]} {parts[1]} {parts[2]}".strip()
    if len(number) > 3:
        return f"{PHONE_COUNTRY_PREFIX} {parts[0]} {parts[1]}".strip()
    if number:
        return f"{PHONE_COUNTRY_PREFIX} {parts[0]}".strip()
    return "+" if value.startswith("+") else ""


def phone_digits_ok(value: str | None) -> bool:
    """Nine digits, or eleven when they start with the 48 country code."""
    digits = re.sub(r"\D", "", value or "")
    return len(digits) == 9 or (len(digits) == 11 and digits.startswith("48"))


def payload_from_form(form: Any) -> dict[str, Any]:
    raw_phone = (form.get("phone") or "").strip()
    # Input that would lose digits is kept as typed so validation rejects it.
    phone = format_phone_number(raw_phone) if phone_digits_ok(raw_phone) else raw_phone
    return {
        "firstName": (form.get("firstName") or "").strip(),
        "lastName": (form.get("lastName") or "").strip(),
        "email": (form.get("email") or "").strip(),
        "phone": phone,
        "status": (form.get("status") or CustomerStatus.LEAD.value).strip(),
    }


def validate_customer_payload(payload: dict) -> dict[str, str]:
    """Per-field errors; empty dict when valid."""
    errors: dict[str, str] = {}
    if not (payload.get("firstName") or "").strip():
        errors["firstName"] = "First name is required."
    if not (payload.get("lastName") or "").strip():
        errors["lastName"] = "Last name is required."
    email = (payload.get("email") or "").strip()
    if not email:
        errors["email"] = "Email is required."
    elif not EMAIL_RE.search(email):
        errors["email"] = "Email is invalid."
    phone = payload.get("phone") or ""
    if phone:
        digits = re.sub(r"\D", "", phone)
        if len(digits) != 11 or not phone.startswith(PHONE_COUNTRY_PREFIX):
            errors["phone"] = "Phone number must look like +48 123 456 789."
    status = (payload.get("status") or "").strip()
    if status not in CUSTOMER_STATUSES:
        errors["status"] = f"Invalid status. Must be one of: {', '.join(CUSTOMER_STATUSES)}"
    return errors


def api_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Body for POST/PUT; an empty phone is sent as null."""
    body = dict(payload)
    body["phone"] = body.get("phone") or None
    return body


def customer_name(customer: dict[str, Any] | None) -> str | None:
    if not customer:
        return None
    name = f"{customer.get('firstName') or ''} {customer.get('lastName') or ''}".strip()
    return name or None


def filter_customers(customers: list[dict[str, Any]], search: str = "", status: str = "") -> list[dict[str, Any]]:
    search = (search or "").strip().lower()
    out = []
    for c in customers:
        if status and status != "ALL" and c.get("status") != status:
            continue
        if search:
            haystack = [
                (c.get("firstName") or "").lower(),
                (c.get("lastName") or "").lower(),
                (c.get("email") or "").lower(),
            ]
            if not any(search in h for h in haystack):
                continue
        out.append(c)
    return out
