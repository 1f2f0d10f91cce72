from flask import Blueprint, render_template

from app.crm.auth import current_api
from app.crm.errors import RequestFailure
from app.crm.rbac import require_capability
from app.crm.utils import fetch_joined, is_overdue

bp = Blueprint("routes", __name__)


@bp.get("/")
@require_capability("view")
def index():
    api = current_api()
    error = None
    counts = None
    try:
        data = fetch_joined(
            {
                "customers": api.list_customers,
                "offers": api.list_offers,
                "tasks": api.list_tasks,
            }
        )
    except RequestFailure as e:
        error = e.message
    else:
        tasks = data["tasks"]
        counts = {
            "customers": len(data["customers"]),
            "offers": len(data["offers"]),
            "tasks": len(tasks),
            "open_tasks": sum(1 for t in tasks if t.get("status") != "DONE"),
            "overdue_tasks": sum(1 for t in tasks if is_overdue(t)),
        }
    return render_template("dashboard.html", counts=counts, error=error)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for probes. No backend access, minimal overhead.
    """
    return "ok", 200
