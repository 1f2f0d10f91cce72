"""
Session store and its lifecycle.

    ANONYMOUS -> AUTHENTICATING -> AUTHENTICATED -> ANONYMOUS (logout or any 401)

A SessionContext is built once per request from the signed session cookie and
is the only owner of the persisted keys. It is passed explicitly to the API
client and the permission gate; nothing reads the cookie behind its back.

A stored credential is trusted speculatively on load: the context starts
AUTHENTICATED without re-validating, and the first 401 from the backend tears
it down.
"""
from __future__ import annotations

import base64
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from app.crm.constants import SESSION_AUTH_KEY, SESSION_ROLES_KEY, SESSION_USERNAME_KEY
from app.crm.roles import EffectiveRole, resolve_role


class SessionState(str, Enum):
    ANONYMOUS = "ANONYMOUS"
    AUTHENTICATING = "AUTHENTICATING"
    AUTHENTICATED = "AUTHENTICATED"


class SessionStateError(RuntimeError):
    pass


@dataclass(frozen=True)
class Principal:
    username: str
    role_claims: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_api(cls, data: dict[str, Any], *, fallback_username: str) -> "Principal":
        """Build from a `GET /users/me` body; roles may be absent."""
        username = (data.get("username") or fallback_username or "").strip()
        roles = data.get("roles") or []
        if isinstance(roles, str):
            roles = [roles]
        return cls(username=username, role_claims=frozenset(str(r) for r in roles if r))


@dataclass(frozen=True)
class Credential:
    token: str

    @classmethod
    def from_password(cls, username: str, password: str) -> "Credential":
        raw = f"{username}:{password}".encode("utf-8")
        return cls(base64.b64encode(raw).decode("ascii"))

    @property
    def header_value(self) -> str:
        return f"Basic {self.token}"

    def __repr__(self) -> str:
        return "Credential(token=***)"


class SessionContext:
    def __init__(self, store: MutableMapping[str, Any]):
        self._store = store
        self.state = SessionState.ANONYMOUS
        self.principal: Principal | None = None
        self.credential: Credential | None = None
        self._pending_username: str | None = None

    @classmethod
    def load(cls, store: MutableMapping[str, Any]) -> "SessionContext":
        ctx = cls(store)
        token = store.get(SESSION_AUTH_KEY)
        username = store.get(SESSION_USERNAME_KEY)
        if token and username:
            ctx.credential = Credential(str(token))
            ctx.principal = Principal(
                username=str(username),
                role_claims=frozenset(store.get(SESSION_ROLES_KEY) or ()),
            )
            ctx.state = SessionState.AUTHENTICATED
        return ctx

    @property
    def is_authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED

    @property
    def role(self) -> EffectiveRole | None:
        # Recomputed on every read.
        if not self.is_authenticated:
            return None
        return resolve_role(self.principal)

    @property
    def username(self) -> str | None:
        return self.principal.username if self.principal else None

    def begin_login(self, username: str, password: str) -> Credential:
        if self.state is SessionState.AUTHENTICATING:
            raise SessionStateError("Login already in progress")
        if self.state is SessionState.AUTHENTICATED:
            # Switching accounts: drop the old identity first.
            self.teardown()
        self.state = SessionState.AUTHENTICATING
        self._pending_username = username
        self.credential = Credential.from_password(username, password)
        return self.credential

    def commit(self, principal: Principal) -> None:
        if self.state is not SessionState.AUTHENTICATING or self.credential is None:
            raise SessionStateError(f"Cannot commit login from state {self.state.value}")
        self.principal = principal
        self.state = SessionState.AUTHENTICATED
        self._pending_username = None
        self._store[SESSION_AUTH_KEY] = self.credential.token
        self._store[SESSION_USERNAME_KEY] = principal.username
        self._store[SESSION_ROLES_KEY] = sorted(principal.role_claims)

    def abort(self) -> None:
        if self.state is not SessionState.AUTHENTICATING:
            raise SessionStateError(f"No login in progress (state={self.state.value})")
        self.state = SessionState.ANONYMOUS
        self.credential = None
        self.principal = None
        self._pending_username = None

    def teardown(self) -> None:
        """Clear principal and credential together, in memory and in the store."""
        for key in (SESSION_AUTH_KEY, SESSION_USERNAME_KEY, SESSION_ROLES_KEY):
            self._store.pop(key, None)
        self.state = SessionState.ANONYMOUS
        self.credential = None
        self.principal = None
        self._pending_username = None
