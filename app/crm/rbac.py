from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g, redirect, request, url_for

from app.crm.roles import EffectiveRole


# Capability predicates. Pure; callers pass the role freshly resolved from the
# current principal so nothing here can go stale after logout or a role change.
def can_view(role: EffectiveRole | None) -> bool:
    return role is not None


def can_modify(role: EffectiveRole | None) -> bool:
    return role is not None and role >= EffectiveRole.MANAGER


def can_delete(role: EffectiveRole | None) -> bool:
    return role is EffectiveRole.ADMIN


def can_toggle_completion(role: EffectiveRole | None) -> bool:
    # Any authenticated principal may flip task status.
    return role is not None


def can_manage_users(role: EffectiveRole | None) -> bool:
    return role is EffectiveRole.ADMIN


CAPABILITIES: dict[str, Callable[[EffectiveRole | None], bool]] = {
    "view": can_view,
    "modify": can_modify,
    "delete": can_delete,
    "toggle_completion": can_toggle_completion,
    "manage_users": can_manage_users,
}


def has_capability(role: EffectiveRole | None, capability: str) -> bool:
    try:
        predicate = CAPABILITIES[capability]
    except KeyError:
        raise ValueError(f"Unknown capability: {capability}") from None
    return predicate(role)


def current_role() -> EffectiveRole | None:
    ctx = getattr(g, "crm_session", None)
    if ctx is None or not ctx.is_authenticated:
        return None
    return ctx.role


def require_capability(capability: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    if capability not in CAPABILITIES:
        raise ValueError(f"Unknown capability: {capability}")

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            ctx = getattr(g, "crm_session", None)
            # Anonymous -> login, keeping the requested path.
            if ctx is None or not ctx.is_authenticated:
                nxt = request.full_path or request.path
                if nxt.endswith("?"):
                    nxt = nxt[:-1]
                return redirect(url_for("auth.login_get", next=nxt))
            if not has_capability(ctx.role, capability):
                g.missing_capability = capability
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
