from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import requests

from app.crm.errors import (
    AuthenticationFailure,
    AuthorizationFailure,
    BadRequest,
    Conflict,
    CrmApiError,
    GENERIC_ERROR_MESSAGE,
    NotFound,
    ServerFailure,
)
from app.crm.session import Credential

logger = logging.getLogger(__name__)

_STATUS_ERRORS: dict[int, type[CrmApiError]] = {
    400: BadRequest,
    401: AuthenticationFailure,
    403: AuthorizationFailure,
    404: NotFound,
    409: Conflict,
    422: BadRequest,
}


def _error_message(resp: Any) -> str | None:
    """Pull `message` out of the backend's error envelope, if there is one."""
    try:
        body = resp.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        msg = body.get("message")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()
    return None


@dataclass(frozen=True)
class CrmApiClient:
    """
    Thin wrapper over the CRM REST backend.

    The credential is a snapshot taken when the client is built (once per
    incoming request), so a logout during the request cannot swap the
    credential of calls already being assembled.
    """

    base_url: str
    credential: Credential | None = None
    http: Any = field(default_factory=requests.Session)
    timeout_seconds: float = 30
    on_unauthorized: Callable[[], None] | None = None

    def _headers(self, credential: Credential | None) -> dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if credential is not None:
            headers["Authorization"] = credential.header_value
        return headers

    def request_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        credential: Credential | None = None,
    ) -> Any:
        url = self.base_url.rstrip("/") + path
        cred = credential if credential is not None else self.credential
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        try:
            resp = self.http.request(
                method,
                url,
                params=params or None,
                json=json,
                headers=self._headers(cred),
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as e:
            logger.warning("CRM API %s %s failed: %s", method, path, e)
            raise ServerFailure("Could not reach the CRM server. Please try again.") from e

        status = resp.status_code
        if status == 401:
            logger.info("CRM API %s %s returned 401; ending session", method, path)
            if self.on_unauthorized is not None:
                self.on_unauthorized()
            raise AuthenticationFailure("Your session has expired. Please sign in again.", status_code=401)

        if status >= 400:
            detail = _error_message(resp)
            err_cls = _STATUS_ERRORS.get(status, ServerFailure)
            logger.warning("CRM API %s %s -> HTTP %s (%s)", method, path, status, detail or "no detail")
            raise err_cls(detail or GENERIC_ERROR_MESSAGE, status_code=status, detail=detail)

        if status == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise ServerFailure(f"Invalid JSON from CRM API ({path})", status_code=status) from e

    def _list(self, path: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        data = self.request_json("GET", path, params=params)
        return data if isinstance(data, list) else []

    # ---------- Auth / users ----------
    def current_user(self, *, credential: Credential | None = None) -> dict[str, Any]:
        data = self.request_json("GET", "/users/me", credential=credential)
        return data if isinstance(data, dict) else {}

    def register(self, username: str, email: str, password: str) -> dict[str, Any] | None:
        return self.request_json(
            "POST",
            "/auth/register",
            json={"username": username, "email": email, "password": password},
        )

    def list_users(self) -> list[dict[str, Any]]:
        return self._list("/users")

    def change_user_role(self, user_id: int, role: str) -> dict[str, Any] | None:
        return self.request_json("PATCH", f"/users/{int(user_id)}/role", json={"role": role})

    # ---------- Customers ----------
    def list_customers(self, *, credential: Credential | None = None) -> list[dict[str, Any]]:
        data = self.request_json("GET", "/customers", credential=credential)
        return data if isinstance(data, list) else []

    def get_customer(self, customer_id: int) -> dict[str, Any]:
        return self.request_json("GET", f"/customers/{int(customer_id)}") or {}

    def create_customer(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        return self.request_json("POST", "/customers", json=payload)

    def update_customer(self, customer_id: int, payload: dict[str, Any]) -> dict[str, Any] | None:
        return self.request_json("PUT", f"/customers/{int(customer_id)}", json=payload)

    def delete_customer(self, customer_id: int) -> None:
        self.request_json("DELETE", f"/customers/{int(customer_id)}")

    # ---------- Offers ----------
    def list_offers(self) -> list[dict[str, Any]]:
        return self._list("/offers")

    def get_offer(self, offer_id: int) -> dict[str, Any]:
        return self.request_json("GET", f"/offers/{int(offer_id)}") or {}

    def create_offer(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        return self.request_json("POST", "/offers", json=payload)

    def update_offer(self, offer_id: int, payload: dict[str, Any]) -> dict[str, Any] | None:
        return self.request_json("PUT", f"/offers/{int(offer_id)}", json=payload)

    def delete_offer(self, offer_id: int) -> None:
        self.request_json("DELETE", f"/offers/{int(offer_id)}")

    def update_offer_status(self, offer_id: int, status: str) -> dict[str, Any] | None:
        return self.request_json("PATCH", f"/offers/{int(offer_id)}/status", json={"status": status})

    # ---------- Tasks ----------
    def list_tasks(self) -> list[dict[str, Any]]:
        return self._list("/tasks")

    def get_task(self, task_id: int) -> dict[str, Any]:
        return self.request_json("GET", f"/tasks/{int(task_id)}") or {}

    def create_task(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        return self.request_json("POST", "/tasks", json=payload)

    def update_task(self, task_id: int, payload: dict[str, Any]) -> dict[str, Any] | None:
        return self.request_json("PUT", f"/tasks/{int(task_id)}", json=payload)

    def delete_task(self, task_id: int) -> None:
        self.request_json("DELETE", f"/tasks/{int(task_id)}")

    def update_task_status(self, task_id: int, status: str) -> dict[str, Any] | None:
        return self.request_json("PATCH", f"/tasks/{int(task_id)}/status", json={"status": status})
