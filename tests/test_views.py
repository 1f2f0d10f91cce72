from conftest import csrf_token, login

CUSTOMERS = [
    {"id": 1, "firstName": "Jan", "lastName": "Kowalski", "email": "jan@example.com", "phone": "+48 123 456 789", "status": "ACTIVE"},
    {"id": 2, "firstName": "Anna", "lastName": "Nowak", "email": "anna@example.com", "phone": None, "status": "LEAD"},
]


def test_manager_without_claims_sees_edit_but_not_delete(client, transport):
    login(client, transport, "manager")
    transport.add("GET", "/customers", 200, CUSTOMERS)
    body = client.get("/customers").get_data(as_text=True)
    assert 'class="edit-control"' in body
    assert 'class="delete-control"' not in body
    assert "Showing 2 of 2 customers" in body


def test_admin_sees_delete_controls(client, transport):
    login(client, transport, "admin", roles=["ROLE_ADMIN"])
    transport.add("GET", "/customers", 200, CUSTOMERS)
    body = client.get("/customers").get_data(as_text=True)
    assert 'class="delete-control"' in body
    assert ">Users<" in body


def test_user_sees_no_mutating_controls(client, transport):
    login(client, transport, "alice", roles=["ROLE_USER"])
    transport.add("GET", "/customers", 200, CUSTOMERS)
    body = client.get("/customers").get_data(as_text=True)
    assert "edit-control" not in body and "delete-control" not in body
    assert client.get("/customers/new").status_code == 403


def test_customer_search_filter(client, transport):
    login(client, transport, "alice", roles=["ROLE_USER"])
    transport.add("GET", "/customers", 200, CUSTOMERS)
    body = client.get("/customers?q=nowak").get_data(as_text=True)
    assert "Showing 1 of 2 customers" in body


def test_list_failure_shows_retry_banner(client, transport):
    login(client, transport, "alice", roles=["ROLE_USER"])
    transport.add("GET", "/customers", 500, {"message": "db down"})
    r = client.get("/customers")
    assert r.status_code == 200
    body = r.get_data(as_text=True)
    assert "Server error: db down. Please try again." in body
    assert "Retry" in body


def test_dashboard_join_fails_fast(client, transport):
    login(client, transport, "alice", roles=["ROLE_USER"])
    transport.add("GET", "/customers", 200, CUSTOMERS)
    transport.add("GET", "/offers", 500, {"message": "offers unavailable"})
    transport.add("GET", "/tasks", 200, [])
    body = client.get("/").get_data(as_text=True)
    assert "offers unavailable" in body
    assert "Customers: 2" not in body


def test_create_customer_validation_never_reaches_backend(client, transport):
    login(client, transport, "manager")
    r = client.post(
        "/customers/new",
        data={"firstName": "Jan", "lastName": "", "email": "bad", "csrf_token": csrf_token(client)},
    )
    assert r.status_code == 400
    assert transport.calls_to("POST") == []


def test_create_customer_formats_phone(client, transport):
    login(client, transport, "manager")
    transport.add("POST", "/customers", 201, {"id": 3})
    r = client.post(
        "/customers/new",
        data={
            "firstName": "Jan",
            "lastName": "Nowy",
            "email": "jan@nowy.pl",
            "phone": "123456789",
            "status": "LEAD",
            "csrf_token": csrf_token(client),
        },
    )
    assert r.status_code == 302
    assert transport.calls_to("POST", "/customers")[0]["json"]["phone"] == "+48 123 456 789"


def test_delete_requires_confirmation(client, transport):
    login(client, transport, "admin", roles=["ROLE_ADMIN"])
    transport.add("GET", "/customers/1", 200, CUSTOMERS[0])
    transport.add("DELETE", "/customers/1", 204)

    r = client.get("/customers/1/delete")
    assert r.status_code == 200
    assert "Jan Kowalski" in r.get_data(as_text=True)

    r = client.post("/customers/1/delete", data={"csrf_token": csrf_token(client)})
    assert r.status_code == 302
    assert transport.calls_to("DELETE") == []

    r = client.post("/customers/1/delete", data={"confirm": "yes", "csrf_token": csrf_token(client)})
    assert r.status_code == 302
    assert len(transport.calls_to("DELETE", "/customers/1")) == 1


def test_manager_cannot_delete(client, transport):
    login(client, transport, "manager")
    r = client.post("/customers/1/delete", data={"confirm": "yes", "csrf_token": csrf_token(client)})
    assert r.status_code == 403
    assert transport.calls == []


def test_missing_customer_redirects_to_list(client, transport):
    login(client, transport, "alice", roles=["ROLE_USER"])
    r = client.get("/customers/99")
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/customers")


def test_offers_list_unknown_customer(client, transport):
    login(client, transport, "manager")
    transport.add("GET", "/offers", 200, [{"id": 1, "title": "Website", "price": 1200, "status": "DRAFT", "customerId": 42}])
    transport.add("GET", "/customers", 200, CUSTOMERS)
    body = client.get("/offers").get_data(as_text=True)
    assert "Unknown customer" in body
    assert "1 200,00 PLN" in body
    assert "data-status-control" in body


def test_offers_list_read_only_for_users(client, transport):
    login(client, transport, "alice", roles=["ROLE_USER"])
    transport.add("GET", "/offers", 200, [{"id": 1, "title": "Website", "price": 1200, "status": "SENT", "customerId": 1}])
    transport.add("GET", "/customers", 200, CUSTOMERS)
    body = client.get("/offers").get_data(as_text=True)
    assert "data-status-control" not in body
    assert "Jan Kowalski" in body


def test_offer_detail_with_deleted_customer(client, transport):
    login(client, transport, "alice", roles=["ROLE_USER"])
    transport.add("GET", "/offers/1", 200, {"id": 1, "title": "Website", "price": 10, "status": "SENT", "customerId": 42})
    r = client.get("/offers/1")
    assert r.status_code == 200
    assert "Unknown customer" in r.get_data(as_text=True)


def test_tasks_list_overdue_and_toggle(client, transport):
    login(client, transport, "alice", roles=["ROLE_USER"])
    transport.add(
        "GET",
        "/tasks",
        200,
        [
            {"id": 1, "title": "Call Jan", "status": "TODO", "priority": "HIGH", "dueDate": "2001-01-01T10:00:00", "customerId": 1},
            {"id": 2, "title": "Send docs", "status": "DONE", "priority": "LOW", "dueDate": "2001-01-01T10:00:00", "customerId": 7, "offerId": 9},
        ],
    )
    transport.add("GET", "/customers", 200, CUSTOMERS)
    transport.add("GET", "/offers", 200, [])
    body = client.get("/tasks").get_data(as_text=True)
    assert body.count("Overdue</span>") == 1
    assert "data-toggle-control" in body
    assert "Jan Kowalski" in body


def test_create_task_in_the_past_is_rejected(client, transport):
    login(client, transport, "manager")
    transport.add("GET", "/customers", 200, CUSTOMERS)
    transport.add("GET", "/offers", 200, [])
    r = client.post(
        "/tasks/new",
        data={
            "title": "Call Jan",
            "dueDate": "2001-01-01T10:00",
            "status": "TODO",
            "priority": "HIGH",
            "customerId": "1",
            "csrf_token": csrf_token(client),
        },
    )
    assert r.status_code == 400
    assert "Due date must be in the future." in r.get_data(as_text=True)
    assert transport.calls_to("POST") == []


def test_users_page_is_admin_only(client, transport):
    login(client, transport, "manager")
    assert client.get("/users").status_code == 403


def test_admin_changes_role_after_confirmation(client, transport):
    login(client, transport, "admin", roles=["ROLE_ADMIN"])
    transport.add("GET", "/users", 200, [{"id": 5, "username": "bob", "email": "bob@x.pl", "roles": ["ROLE_USER"]}])
    transport.add("PATCH", "/users/5/role", 200, {"id": 5})

    body = client.get("/users").get_data(as_text=True)
    assert "bob" in body

    r = client.get("/users/5/role?role=MANAGER&username=bob")
    assert r.status_code == 200
    assert "Change the role of <strong>bob</strong>" in r.get_data(as_text=True)

    r = client.post("/users/5/role", data={"role": "MANAGER", "confirm": "yes", "csrf_token": csrf_token(client)})
    assert r.status_code == 302
    assert transport.calls_to("PATCH")[0]["json"] == {"role": "ROLE_MANAGER"}


USERS = [
    {"id": 1, "username": "admin", "email": "admin@x.pl", "roles": ["ROLE_ADMIN"]},
    {"id": 5, "username": "bob", "email": "bob@x.pl", "roles": ["ROLE_USER"]},
]


def test_admin_rows_have_no_role_control_and_admin_is_not_offered(client, transport):
    login(client, transport, "admin", roles=["ROLE_ADMIN"])
    transport.add("GET", "/users", 200, USERS)
    body = client.get("/users").get_data(as_text=True)
    assert body.count("Cannot change") == 1
    assert body.count('name="role"') == 1
    assert '<option value="ADMIN"' not in body
    assert '<option value="MANAGER"' in body


def test_promotion_to_admin_is_refused_before_the_backend(client, transport):
    login(client, transport, "admin", roles=["ROLE_ADMIN"])
    transport.add("GET", "/users", 200, USERS)

    r = client.get("/users/5/role?role=ADMIN&username=bob")
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/users")

    r = client.post("/users/5/role", data={"role": "ROLE_ADMIN", "confirm": "yes", "csrf_token": csrf_token(client)})
    assert r.status_code == 302
    assert transport.calls_to("PATCH") == []


def test_administrator_cannot_be_demoted(client, transport):
    login(client, transport, "admin", roles=["ROLE_ADMIN"])
    transport.add("GET", "/users", 200, USERS)
    r = client.post("/users/1/role", data={"role": "USER", "confirm": "yes", "csrf_token": csrf_token(client)})
    assert r.status_code == 302
    assert transport.calls_to("PATCH") == []
    with client.session_transaction() as s:
        assert ("danger", "The role of an administrator cannot be changed.") in s.get("_flashes", [])
