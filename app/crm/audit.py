import json
import logging
from typing import Any

from flask import g, has_request_context, request

logger = logging.getLogger(__name__)


def record_event(
    *,
    actor: str | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """
    Append-only audit event helper. The backend owns persistence, so events
    go to the `app.crm.audit` log stream.
    """
    in_request = has_request_context()
    rid = request_id or (getattr(g, "request_id", None) if in_request else None)
    ev = {
        "request_id": rid,
        "actor": actor,
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "reason": reason,
        "metadata": metadata or None,
        "client_ip": request.remote_addr if in_request else None,
    }
    logger.info("audit %s", json.dumps(ev, sort_keys=True, default=str))
    return ev
