"""Shared test fixtures for starlette-ldapauth tests."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from typing import Any

import pytest
from ldap3.utils.conv import escape_filter_chars

from starlette_ldapauth.config import LDAPAuthConfig
from starlette_ldapauth.directory.protocol import DirectoryEntry
from starlette_ldapauth.errors import DirectoryConnectionError, DirectoryError

# ---------------------------------------------------------------------------
# In-memory directory used in place of a real LDAP server.
# FakeSession mirrors the DirectorySession protocol and records every call
# so tests can assert on the exact protocol sequence.
# ---------------------------------------------------------------------------

INVALID_CREDENTIALS = 49
UNWILLING_TO_PERFORM = 53

SERVICE_DN = "cn=admin,dc=x"
SERVICE_PASSWORD = "pw"

_UID_RE = re.compile(r"\(uid=((?:[^()\\]|\\[0-9a-fA-F]{2})*)\)")


@dataclass
class FakeDirectory:
    """A tiny directory: a service account plus ``uid`` entries."""

    service_dn: str = SERVICE_DN
    service_password: str = SERVICE_PASSWORD
    users: dict[str, tuple[str, str]] = field(default_factory=dict)
    allow_unauthenticated: bool = True
    fail_dial: bool = False
    fail_tls: bool = False
    fail_search: Exception | None = None
    bind_delay: float = 0.0
    calls: list[tuple[Any, ...]] = field(default_factory=list)
    sessions: list[FakeSession] = field(default_factory=list)

    def add_user(self, dn: str, uid: str, password: str) -> None:
        self.users[dn] = (uid, password)

    def dial(self, url: str) -> FakeSession:
        self.calls.append(("dial", url))
        if self.fail_dial:
            raise DirectoryConnectionError(f"cannot connect to {url}")
        session = FakeSession(self)
        self.sessions.append(session)
        return session

    @property
    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]


class FakeSession:
    def __init__(self, directory: FakeDirectory) -> None:
        self._dir = directory
        self.closed = False

    def start_tls(self, tls: Any) -> None:
        self._dir.calls.append(("start_tls", tls))
        if self._dir.fail_tls:
            raise DirectoryError("StartTLS failed")

    def bind(self, dn: str, credential: str) -> None:
        self._dir.calls.append(("bind", dn))
        if self._dir.bind_delay:
            time.sleep(self._dir.bind_delay)
        if dn == self._dir.service_dn and credential == self._dir.service_password:
            return
        user = self._dir.users.get(dn)
        if user is not None and user[1] == credential:
            return
        raise DirectoryError("bind failed: invalidCredentials", result_code=INVALID_CREDENTIALS)

    def unauthenticated_bind(self, dn: str) -> None:
        self._dir.calls.append(("unauthenticated_bind", dn))
        if not self._dir.allow_unauthenticated:
            raise DirectoryError("bind failed: unwillingToPerform", result_code=UNWILLING_TO_PERFORM)

    def search(self, base: str, search_filter: str, attributes: Any) -> list[DirectoryEntry]:
        self._dir.calls.append(("search", base, search_filter, tuple(attributes)))
        if self._dir.fail_search is not None:
            raise self._dir.fail_search
        match = _UID_RE.search(search_filter)
        if match is None:
            return []
        wanted = match.group(1)
        return [
            DirectoryEntry(dn=dn, attributes={"uid": [uid]})
            for dn, (uid, _) in self._dir.users.items()
            if self.escape_filter(uid) == wanted
        ]

    def escape_filter(self, value: str) -> str:
        return escape_filter_chars(value)

    def close(self) -> None:
        self._dir.calls.append(("close",))
        self.closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def directory() -> FakeDirectory:
    """Directory with exactly one ``alice`` entry whose password is ``secret``."""
    d = FakeDirectory()
    d.add_user("uid=alice,ou=people,dc=x", "alice", "secret")
    return d


@pytest.fixture
def config(directory: FakeDirectory) -> LDAPAuthConfig:
    """Service bind plus user search under ``dc=x``."""
    return LDAPAuthConfig(
        url="ldap://example:389",
        bind_dn=SERVICE_DN,
        bind_credentials=SERVICE_PASSWORD,
        search_base="dc=x",
        search_filter="(uid={{username}})",
        connector=directory,
    )


@pytest.fixture
def bind_only_config(directory: FakeDirectory) -> LDAPAuthConfig:
    """Service bind only: no search base or filter."""
    return LDAPAuthConfig(
        url="ldap://example:389",
        bind_dn=SERVICE_DN,
        bind_credentials=SERVICE_PASSWORD,
        connector=directory,
    )
