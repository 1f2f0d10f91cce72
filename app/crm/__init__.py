import logging
from typing import Any

import requests
from dotenv import load_dotenv
from flask import Flask, flash, g, jsonify, redirect, render_template, request, session, url_for

from app.crm.config import load_config
from app.crm.errors import AuthenticationFailure
from app.crm.routes import bp as routes_bp
from app.crm.auth import bp as auth_bp, load_session_context
from app.crm.modules.customers.admin import bp as customers_bp
from app.crm.modules.offers.admin import bp as offers_bp
from app.crm.modules.tasks.admin import bp as tasks_bp
from app.crm.modules.users.admin import bp as users_bp


def create_app(http: Any = None) -> Flask:
    """
    `http` is the transport used to reach the CRM backend; defaults to a
    shared requests.Session. Tests pass a scripted fake.
    """
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.extensions["crm_http"] = http if http is not None else requests.Session()

    level = getattr(logging, str(app.config.get("LOG_LEVEL") or "INFO"), logging.INFO)
    logging.getLogger("app.crm").setLevel(level)
    app.logger.setLevel(level)

    from app.crm.security import ensure_csrf_token, validate_csrf, wants_json

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.context_processor
    def _inject_permissions() -> dict:
        from app.crm.rbac import current_role, has_capability

        def can(capability: str) -> bool:
            return has_capability(current_role(), capability)

        ctx = getattr(g, "crm_session", None)
        return {
            "can": can,
            "current_username": ctx.username if ctx is not None and ctx.is_authenticated else None,
            "current_role": current_role(),
        }

    from app.crm import constants as _c
    from app.crm.utils import format_currency, format_datetime

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d %H:%M") -> str:
        return format_datetime(value, format)

    @app.template_filter("currency")
    def _currency_filter(value) -> str:
        return format_currency(value)

    @app.template_filter("label")
    def _label_filter(value, kind: str) -> str:
        labels = {
            "customer": _c.CUSTOMER_STATUS_LABELS,
            "offer": _c.OFFER_STATUS_LABELS,
            "task": _c.TASK_STATUS_LABELS,
            "priority": _c.TASK_PRIORITY_LABELS,
        }.get(kind, {})
        if value is None:
            return _c.MISSING_VALUE
        return labels.get(value, str(value))

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Login/register/logout carry no session-bound state yet.
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                if wants_json(request):
                    return jsonify({"message": "CSRF token missing or invalid."}), 400
                return render_template("errors/400.html", message="CSRF token missing or invalid."), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not str(app.config.get("CRM_API_BASE_URL") or "").startswith(("http://", "https://")):
            raise RuntimeError("CRM_API_BASE_URL must be an http(s) URL in production.")

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(customers_bp)
    app.register_blueprint(offers_bp)
    app.register_blueprint(tasks_bp)
    app.register_blueprint(users_bp)

    def _load_session_wrapper():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            g.crm_session = None
            return None
        return load_session_context()

    # Must run before the CSRF guard so a 401 raised anywhere sees a context.
    app.before_request_funcs.setdefault(None, []).insert(0, _load_session_wrapper)

    @app.errorhandler(AuthenticationFailure)
    def _authentication_failure(e):  # type: ignore[no-redef]
        # The client hook has already cleared the session; make sure of it for
        # failures raised before any client existed.
        ctx = getattr(g, "crm_session", None)
        if ctx is not None:
            ctx.teardown()
        app.logger.info("Session ended by backend 401 (path=%s request_id=%s)", request.path, getattr(g, "request_id", None))
        login_url = url_for("auth.login_get")
        if wants_json(request):
            return jsonify({"message": e.message, "redirect": login_url}), 401
        flash("Your session has expired. Please sign in again.", "warning")
        return redirect(login_url), 302

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return render_template("errors/500.html"), 500

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_capability", None)
        if missing:
            app.logger.warning("Forbidden: missing_capability=%s request_id=%s", missing, getattr(g, "request_id", None))
        if wants_json(request):
            return jsonify({"message": "You do not have permission to perform this action."}), 403
        return render_template("errors/403.html", missing_capability=missing), 403

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        if wants_json(request):
            return jsonify({"message": "Not found."}), 404
        return render_template("errors/404.html"), 404

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
