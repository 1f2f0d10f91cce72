from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from app.crm.constants import MISSING_VALUE, TaskStatus
from app.crm.errors import AuthenticationFailure


def fetch_joined(calls: dict[str, Callable[[], Any]]) -> dict[str, Any]:
    """
    Run independent fetches concurrently and join them.

    Fail-fast: none of the partial results are returned when any fetch
    fails. An AuthenticationFailure is re-raised as soon as it happens. Any
    other failure first waits for the fetches still in flight, because a 401
    among them must end the session before the response is written; that
    401 then takes precedence over the earlier failure.
    """
    if not calls:
        return {}
    pool = ThreadPoolExecutor(max_workers=len(calls))
    try:
        futures = {pool.submit(fn): name for name, fn in calls.items()}
        done, pending = wait(futures, return_when=FIRST_EXCEPTION)
        first = _first_exception(done)
        if first is None:
            return {name: fut.result() for fut, name in futures.items()}
        if not isinstance(first, AuthenticationFailure) and pending:
            wait(pending)
            unauthorized = [e for e in map(_exception_of, pending) if isinstance(e, AuthenticationFailure)]
            if unauthorized:
                raise unauthorized[0]
        raise first
    finally:
        pool.shutdown(wait=False, cancel_futures=True)


def _exception_of(fut: Future) -> BaseException | None:
    return None if fut.cancelled() else fut.exception()


def _first_exception(done: set[Future]) -> BaseException | None:
    errors = [e for e in map(_exception_of, done) if e is not None]
    for exc in errors:
        if isinstance(exc, AuthenticationFailure):
            return exc
    return errors[0] if errors else None


def parse_api_datetime(value: Any) -> datetime | None:
    """
    Backend timestamps arrive either as ISO strings or as Jackson-style
    arrays [year, month, day, hour?, minute?, second?].
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (list, tuple)):
        if len(value) < 3:
            return None
        parts = [int(v) for v in value[:6]]
        return datetime(*parts)
    if isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            return None
    return None


def format_datetime(value: Any, fmt: str = "%Y-%m-%d %H:%M") -> str:
    dt = parse_api_datetime(value)
    return dt.strftime(fmt) if dt else MISSING_VALUE


def format_datetime_input(value: Any) -> str:
    """Format for an <input type="datetime-local">."""
    dt = parse_api_datetime(value)
    return dt.strftime("%Y-%m-%dT%H:%M") if dt else ""


def format_currency(value: Any, currency: str = "PLN") -> str:
    """1234.5 -> "1 234,50 PLN"."""
    try:
        amount = Decimal(str(value)).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError):
        return MISSING_VALUE
    sign = "-" if amount < 0 else ""
    whole, frac = f"{abs(amount):.2f}".split(".")
    groups = []
    while len(whole) > 3:
        groups.insert(0, whole[-3:])
        whole = whole[:-3]
    groups.insert(0, whole)
    return f"{sign}{' '.join(groups)},{frac} {currency}"


def is_overdue(task: dict[str, Any], now: datetime | None = None) -> bool:
    due = parse_api_datetime(task.get("dueDate"))
    if due is None or task.get("status") == TaskStatus.DONE.value:
        return False
    if now is None:
        now = datetime.now(due.tzinfo) if due.tzinfo else datetime.now()
    return due < now


def parse_int(value: Any) -> int | None:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None
