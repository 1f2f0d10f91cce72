from __future__ import annotations

import threading
import time
import uuid
from collections import defaultdict

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for

from app.crm.api_client import CrmApiClient
from app.crm.audit import record_event
from app.crm.errors import AuthenticationFailure, NotFound, RequestFailure, ValidationFailure
from app.crm.security import safe_next_path
from app.crm.session import Principal, SessionContext

bp = Blueprint("auth", __name__)

# Failed-login throttle per client IP, in-process only.
LOGIN_MAX_ATTEMPTS = 5
LOGIN_WINDOW_SECONDS = 300
_login_attempts: dict[str, list[float]] = defaultdict(list)
_attempts_lock = threading.Lock()


def _login_throttled(ip: str) -> bool:
    horizon = time.monotonic() - LOGIN_WINDOW_SECONDS
    with _attempts_lock:
        recent = [t for t in _login_attempts[ip] if t > horizon]
        _login_attempts[ip] = recent
        return len(recent) >= LOGIN_MAX_ATTEMPTS


def _note_attempt(ip: str) -> None:
    with _attempts_lock:
        _login_attempts[ip].append(time.monotonic())


def _forget_attempts(ip: str) -> None:
    with _attempts_lock:
        _login_attempts.pop(ip, None)


def _build_api(ctx: SessionContext) -> CrmApiClient:
    def _forced_logout() -> None:
        if ctx.is_authenticated:
            record_event(actor=ctx.username, action="auth.session_expired", entity_type="User", entity_id=ctx.username)
        ctx.teardown()

    return CrmApiClient(
        base_url=current_app.config["CRM_API_BASE_URL"],
        credential=ctx.credential,
        http=current_app.extensions["crm_http"],
        timeout_seconds=current_app.config["CRM_API_TIMEOUT"],
        on_unauthorized=_forced_logout,
    )


def load_session_context() -> None:
    """
    Builds g.crm_session from the signed session cookie and g.api with a
    snapshot of its credential. Also assigns a per-request request_id for log
    correlation.
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    # The concrete session object, not the proxy: joined fetches run on worker
    # threads and a 401 there must still be able to clear it.
    ctx = SessionContext.load(session._get_current_object())  # type: ignore[attr-defined]
    g.crm_session = ctx
    g.api = _build_api(ctx)


def current_session() -> SessionContext:
    ctx = getattr(g, "crm_session", None)
    if ctx is None:
        raise RuntimeError("No session context")
    return ctx


def current_api() -> CrmApiClient:
    api = getattr(g, "api", None)
    if api is None:
        raise RuntimeError("No API client")
    return api


def _probe_principal(api: CrmApiClient, ctx: SessionContext, username: str) -> Principal:
    """
    Validate the freshly built credential before it is persisted. Backends
    that expose `GET /users/me` also return role claims; for those that do
    not, any protected endpoint proves the credential and the principal has
    no claims.
    """
    try:
        me = api.current_user(credential=ctx.credential)
        return Principal.from_api(me, fallback_username=username)
    except NotFound:
        api.list_customers(credential=ctx.credential)
        return Principal(username=username)


def validate_registration(form: dict) -> dict[str, str]:
    errors: dict[str, str] = {}
    if not (form.get("username") or "").strip():
        errors["username"] = "Username is required."
    if not (form.get("email") or "").strip():
        errors["email"] = "Email is required."
    if not form.get("password"):
        errors["password"] = "Password is required."
    elif form.get("password") != form.get("confirm_password"):
        errors["confirm_password"] = "Passwords do not match."
    return errors


def perform_login(username: str, password: str) -> Principal:
    """
    ANONYMOUS -> AUTHENTICATING -> AUTHENTICATED, or back to ANONYMOUS when
    the probe fails. Raises AuthenticationFailure for bad credentials.
    """
    ctx = current_session()
    ctx.begin_login(username, password)
    # Probe with a client that must not tear down the (not yet committed) session.
    probe = CrmApiClient(
        base_url=current_app.config["CRM_API_BASE_URL"],
        credential=ctx.credential,
        http=current_app.extensions["crm_http"],
        timeout_seconds=current_app.config["CRM_API_TIMEOUT"],
    )
    try:
        principal = _probe_principal(probe, ctx, username)
    except Exception:
        ctx.abort()
        raise
    ctx.commit(principal)
    g.api = _build_api(ctx)
    return principal


@bp.get("/login")
def login_get():
    nxt = (request.args.get("next") or "").strip()
    return render_template("auth/login.html", next=nxt)


@bp.post("/login")
def login_post():
    username = (request.form.get("username") or "").strip()
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()
    ip = request.remote_addr or "unknown"

    if not username or not password:
        flash("Username and password are required.", "danger")
        return redirect(url_for("auth.login_get", next=nxt or None))

    if _login_throttled(ip):
        flash("Too many login attempts. Please wait 5 minutes.", "danger")
        return redirect(url_for("auth.login_get"))

    _note_attempt(ip)

    try:
        principal = perform_login(username, password)
    except AuthenticationFailure:
        record_event(actor=None, action="auth.login_failed", entity_type="User", entity_id=username, reason="Invalid credentials")
        flash("Invalid username or password.", "danger")
        return redirect(url_for("auth.login_get", next=nxt or None))
    except RequestFailure as e:
        current_app.logger.warning("Login probe failed (username=%s request_id=%s): %s", username, g.request_id, e)
        flash("Could not connect to the server. Please try again.", "danger")
        return redirect(url_for("auth.login_get", next=nxt or None))

    _forget_attempts(ip)
    record_event(
        actor=principal.username,
        action="auth.login",
        entity_type="User",
        entity_id=principal.username,
        metadata={"role": current_session().role.value if current_session().role else None},
    )
    return redirect(safe_next_path(nxt) or url_for("routes.index"))


@bp.get("/register")
def register_get():
    return render_template("auth/register.html", form={}, errors={})


@bp.post("/register")
def register_post():
    form = {
        "username": (request.form.get("username") or "").strip(),
        "email": (request.form.get("email") or "").strip(),
        "password": request.form.get("password") or "",
        "confirm_password": request.form.get("confirm_password") or "",
    }
    try:
        errors = validate_registration(form)
        if errors:
            raise ValidationFailure(errors)
        current_api().register(form["username"], form["email"], form["password"])
    except ValidationFailure as e:
        return render_template("auth/register.html", form=form, errors=e.errors), 400
    except RequestFailure as e:
        flash(e.detail or "Registration failed. Please try again.", "danger")
        return render_template("auth/register.html", form=form, errors={}), 400

    record_event(actor=form["username"], action="auth.register", entity_type="User", entity_id=form["username"])

    # Sign the new account in straight away.
    try:
        perform_login(form["username"], form["password"])
    except (AuthenticationFailure, RequestFailure):
        flash("Account created. Please sign in.", "success")
        return redirect(url_for("auth.login_get"))
    return redirect(url_for("routes.index"))


@bp.get("/logout")
def logout():
    ctx = current_session()
    if ctx.is_authenticated:
        record_event(actor=ctx.username, action="auth.logout", entity_type="User", entity_id=ctx.username)
    ctx.teardown()
    return redirect(url_for("auth.login_get"))
