import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from app.crm.errors import AuthenticationFailure, AuthorizationFailure, NotFound
from app.crm.utils import (
    fetch_joined,
    format_currency,
    format_datetime,
    format_datetime_input,
    is_overdue,
    parse_api_datetime,
)


def test_fetch_joined_returns_all_results():
    out = fetch_joined({"a": lambda: [1], "b": lambda: [2, 3]})
    assert out == {"a": [1], "b": [2, 3]}


def test_fetch_joined_runs_concurrently():
    barrier = threading.Barrier(2, timeout=5)

    def wait_for_peer():
        barrier.wait()
        return True

    assert fetch_joined({"a": wait_for_peer, "b": wait_for_peer}) == {"a": True, "b": True}


def test_fetch_joined_fails_with_no_partial_result():
    def slow():
        time.sleep(0.1)
        return ["late"]

    def broken():
        raise NotFound("gone", status_code=404)

    with pytest.raises(NotFound):
        fetch_joined({"slow": slow, "broken": broken})


def test_fetch_joined_later_401_wins_over_earlier_failure():
    teardowns = []

    def forbidden():
        raise AuthorizationFailure(status_code=403)

    def expired_later():
        time.sleep(0.2)
        teardowns.append("session cleared")
        raise AuthenticationFailure(status_code=401)

    with pytest.raises(AuthenticationFailure):
        fetch_joined({"customers": forbidden, "offers": lambda: [], "tasks": expired_later})
    # The 401 side effect has happened by the time the join returns.
    assert teardowns == ["session cleared"]


def test_fetch_joined_401_is_raised_without_waiting():
    release = threading.Event()

    def stuck():
        release.wait(5)
        return []

    def expired():
        raise AuthenticationFailure(status_code=401)

    started = time.monotonic()
    try:
        with pytest.raises(AuthenticationFailure):
            fetch_joined({"stuck": stuck, "expired": expired})
        assert time.monotonic() - started < 2
    finally:
        release.set()


def test_fetch_joined_empty():
    assert fetch_joined({}) == {}


def test_parse_api_datetime_forms():
    assert parse_api_datetime("2024-03-05T10:30:00") == datetime(2024, 3, 5, 10, 30)
    assert parse_api_datetime([2024, 3, 5, 10, 30]) == datetime(2024, 3, 5, 10, 30)
    assert parse_api_datetime("2024-03-05T10:30:00Z").tzinfo == timezone.utc
    assert parse_api_datetime("not a date") is None
    assert parse_api_datetime(None) is None


def test_formatting():
    assert format_datetime("2024-03-05T10:30:00") == "2024-03-05 10:30"
    assert format_datetime(None) == "-"
    assert format_datetime_input([2024, 3, 5, 10, 30]) == "2024-03-05T10:30"
    assert format_currency(1234.5) == "1 234,50 PLN"
    assert format_currency("1000000") == "1 000 000,00 PLN"
    assert format_currency(99) == "99,00 PLN"
    assert format_currency(None) == "-"


def test_is_overdue():
    now = datetime(2024, 6, 1, 12, 0)
    past = (now - timedelta(days=1)).isoformat()
    future = (now + timedelta(days=1)).isoformat()
    assert is_overdue({"dueDate": past, "status": "TODO"}, now=now)
    assert not is_overdue({"dueDate": past, "status": "DONE"}, now=now)
    assert not is_overdue({"dueDate": future, "status": "TODO"}, now=now)
    assert not is_overdue({"status": "TODO"}, now=now)
