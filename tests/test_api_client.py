import pytest
import requests

from conftest import API_BASE, FakeResponse, FakeTransport

from app.crm.api_client import CrmApiClient
from app.crm.errors import (
    AuthenticationFailure,
    AuthorizationFailure,
    BadRequest,
    Conflict,
    GENERIC_ERROR_MESSAGE,
    NotFound,
    ServerFailure,
)
from app.crm.session import Credential


def make_client(transport, **kw):
    kw.setdefault("credential", Credential.from_password("admin", "pw"))
    return CrmApiClient(base_url=API_BASE, http=transport, timeout_seconds=5, **kw)


def test_requests_carry_basic_auth_and_json_headers():
    t = FakeTransport()
    t.add("GET", "/customers", 200, [{"id": 1}])
    api = make_client(t)
    assert api.list_customers() == [{"id": 1}]
    headers = t.calls[0]["headers"]
    assert headers["Authorization"] == "Basic YWRtaW46cHc="
    assert headers["Accept"] == "application/json"


def test_no_credential_no_authorization_header():
    t = FakeTransport()
    t.add("POST", "/auth/register", 201, {"id": 9})
    make_client(t, credential=None).register("bob", "bob@example.com", "pw")
    call = t.calls[0]
    assert "Authorization" not in call["headers"]
    assert call["json"] == {"username": "bob", "email": "bob@example.com", "password": "pw"}


def test_explicit_credential_overrides_snapshot():
    t = FakeTransport()
    t.add("GET", "/users/me", 200, {"username": "carol"})
    cred = Credential.from_password("carol", "x")
    make_client(t).current_user(credential=cred)
    assert t.calls[0]["headers"]["Authorization"] == cred.header_value


@pytest.mark.parametrize(
    "status,exc",
    [
        (400, BadRequest),
        (403, AuthorizationFailure),
        (404, NotFound),
        (409, Conflict),
        (422, BadRequest),
        (500, ServerFailure),
        (503, ServerFailure),
    ],
)
def test_status_mapping(status, exc):
    t = FakeTransport()
    t.add("GET", "/offers/3", status, {"message": "boom"})
    with pytest.raises(exc) as ei:
        make_client(t).get_offer(3)
    assert ei.value.detail == "boom"
    assert ei.value.message == "boom"
    assert ei.value.status_code == status


def test_missing_error_message_falls_back_to_generic():
    t = FakeTransport()
    t.add("DELETE", "/tasks/1", 500)
    with pytest.raises(ServerFailure) as ei:
        make_client(t).delete_task(1)
    assert ei.value.detail is None
    assert ei.value.message == GENERIC_ERROR_MESSAGE


def test_401_calls_unauthorized_hook_then_raises():
    t = FakeTransport()
    t.add("GET", "/tasks", 401)
    hits = []
    with pytest.raises(AuthenticationFailure):
        make_client(t, on_unauthorized=lambda: hits.append(1)).list_tasks()
    assert hits == [1]


def test_network_error_is_server_failure():
    t = FakeTransport()
    t.route("GET", "/customers", requests.ConnectionError("refused"))
    with pytest.raises(ServerFailure):
        make_client(t).list_customers()


def test_empty_bodies():
    t = FakeTransport()
    t.add("DELETE", "/customers/4", 204)
    t.add("GET", "/offers", 200)
    api = make_client(t)
    assert api.delete_customer(4) is None
    assert api.list_offers() == []


def test_invalid_json_is_server_failure():
    t = FakeTransport()
    resp = FakeResponse(200)
    resp.content = b"<html>"
    t.route("GET", "/customers/1", resp)
    with pytest.raises(ServerFailure):
        make_client(t).get_customer(1)


def test_status_updates_send_only_the_status():
    t = FakeTransport()
    t.add("PATCH", "/offers/7/status", 200, {"id": 7, "status": "SENT"})
    t.add("PATCH", "/tasks/2/status", 200, {"id": 2, "status": "DONE"})
    t.add("PATCH", "/users/5/role", 200, {"id": 5})
    api = make_client(t)
    api.update_offer_status(7, "SENT")
    api.update_task_status(2, "DONE")
    api.change_user_role(5, "ROLE_MANAGER")
    assert [(c["method"], c["path"], c["json"]) for c in t.calls] == [
        ("PATCH", "/offers/7/status", {"status": "SENT"}),
        ("PATCH", "/tasks/2/status", {"status": "DONE"}),
        ("PATCH", "/users/5/role", {"role": "ROLE_MANAGER"}),
    ]


def test_crud_paths():
    t = FakeTransport()
    t.add("POST", "/customers", 201, {"id": 1})
    t.add("PUT", "/offers/2", 200, {"id": 2})
    t.add("POST", "/tasks", 201, {"id": 3})
    api = make_client(t)
    assert api.create_customer({"firstName": "A"}) == {"id": 1}
    assert api.update_offer(2, {"title": "T"}) == {"id": 2}
    assert api.create_task({"title": "X"}) == {"id": 3}
    assert [c["method"] for c in t.calls] == ["POST", "PUT", "POST"]
