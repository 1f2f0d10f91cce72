from __future__ import annotations

from flask import Blueprint, flash, redirect, render_template, request, url_for

from app.crm.audit import record_event
from app.crm.auth import current_api, current_session
from app.crm.errors import AuthorizationFailure, NotFound, RequestFailure, user_message
from app.crm.rbac import require_capability
from app.crm.roles import EffectiveRole, parse_role, role_from_claims

bp = Blueprint("users", __name__)

# The backend never grants ADMIN through the role endpoint.
ROLE_CHOICES = [EffectiveRole.USER.value, EffectiveRole.MANAGER.value]


def _user_role(user: dict) -> EffectiveRole | None:
    return role_from_claims(user.get("roles") or [])


def _assignable(value: str | None) -> EffectiveRole | None:
    role = parse_role(value)
    return role if role is not None and role.value in ROLE_CHOICES else None


def _reject(message: str):
    flash(message, "danger")
    return redirect(url_for("users.users_list"))


@bp.get("/users")
@require_capability("manage_users")
def users_list():
    users: list = []
    error = None
    try:
        users = current_api().list_users()
    except RequestFailure as e:
        error = user_message(e, "user list")
    rows = []
    for u in users:
        role = _user_role(u)
        rows.append({**u, "role_display": role.value if role else "-", "role_locked": role is EffectiveRole.ADMIN})
    return render_template("users/list.html", users=rows, roles=ROLE_CHOICES, error=error)


@bp.get("/users/<int:user_id>/role")
@require_capability("manage_users")
def user_role_confirm(user_id: int):
    role = _assignable(request.args.get("role"))
    if role is None:
        return _reject("Select a valid role.")
    return render_template(
        "users/confirm_role.html",
        user_id=user_id,
        username=(request.args.get("username") or "").strip() or f"user #{user_id}",
        role=role.value,
    )


@bp.post("/users/<int:user_id>/role")
@require_capability("manage_users")
def user_role_post(user_id: int):
    role = _assignable(request.form.get("role"))
    if role is None:
        return _reject("Select a valid role.")
    if request.form.get("confirm") != "yes":
        flash("Role change not confirmed.", "warning")
        return redirect(url_for("users.users_list"))

    api = current_api()
    try:
        # Administrators keep their role; check against the current list.
        target = next((u for u in api.list_users() if str(u.get("id")) == str(user_id)), None)
        if target is None:
            return _reject("The user was not found.")
        if _user_role(target) is EffectiveRole.ADMIN:
            return _reject("The role of an administrator cannot be changed.")
        api.change_user_role(user_id, role.claim)
    except AuthorizationFailure:
        return _reject("You do not have permission to change user roles.")
    except NotFound:
        return _reject("The user was not found.")
    except RequestFailure as e:
        return _reject(f"Could not change the role: {e.detail or 'Server error'}")

    record_event(
        actor=current_session().username,
        action="user.role_change",
        entity_type="User",
        entity_id=str(user_id),
        metadata={"role": role.claim},
    )
    flash("Role changed.", "success")
    # The list is fetched again on redirect.
    return redirect(url_for("users.users_list"))
