"""Tests for LDAPAuthenticator: the bind / search / bind sequence."""

from __future__ import annotations

import dataclasses
import logging

import anyio
import pytest
from ldap3 import Tls

from starlette_ldapauth.authenticator import Authenticated, AuthenticatedUser, LDAPAuthenticator, Rejected
from starlette_ldapauth.classifier import Category
from starlette_ldapauth.config import LDAPAuthConfig
from starlette_ldapauth.credentials import Credentials
from starlette_ldapauth.errors import DirectoryConnectionError, MissingCredentialsError, SearchError
from tests.conftest import SERVICE_DN, FakeDirectory


def _supplier(username: str = "alice", password: str = "secret"):
    calls: list[None] = []

    async def supply() -> Credentials:
        calls.append(None)
        return Credentials(username, password)

    supply.calls = calls  # type: ignore[attr-defined]
    return supply


async def _authenticate(config: LDAPAuthConfig, username: str = "alice", password: str = "secret"):
    return await LDAPAuthenticator(config).authenticate(_supplier(username, password))


class TestSuccess:
    async def test_valid_user(self, config: LDAPAuthConfig, directory: FakeDirectory):
        verdict = await _authenticate(config)
        assert isinstance(verdict, Authenticated)
        assert verdict.user == AuthenticatedUser(username="alice", dn="uid=alice,ou=people,dc=x")

    async def test_protocol_sequence(self, config: LDAPAuthConfig, directory: FakeDirectory):
        await _authenticate(config)
        assert directory.calls == [
            ("dial", "ldap://example:389"),
            ("bind", SERVICE_DN),
            ("search", "dc=x", "(uid=alice)", ("dn", "dc")),
            ("bind", "uid=alice,ou=people,dc=x"),
            ("close",),
        ]

    async def test_service_bind_only(self, bind_only_config: LDAPAuthConfig, directory: FakeDirectory):
        supplier = _supplier()
        verdict = await LDAPAuthenticator(bind_only_config).authenticate(supplier)
        assert isinstance(verdict, Authenticated)
        assert verdict.user == AuthenticatedUser()
        assert directory.call_names == ["dial", "bind", "close"]
        assert supplier.calls == []

    async def test_unauthenticated_service_bind(self, config: LDAPAuthConfig, directory: FakeDirectory):
        cfg = dataclasses.replace(config, bind_credentials="")
        await _authenticate(cfg)
        assert directory.calls[1] == ("unauthenticated_bind", SERVICE_DN)

    async def test_starttls_before_bind(self, config: LDAPAuthConfig, directory: FakeDirectory):
        tls = Tls()
        cfg = dataclasses.replace(config, tls=tls)
        verdict = await _authenticate(cfg)
        assert isinstance(verdict, Authenticated)
        assert directory.calls[1] == ("start_tls", tls)
        assert directory.call_names[2] == "bind"

    async def test_repeated_attempts_are_idempotent(self, config: LDAPAuthConfig, directory: FakeDirectory):
        first = await _authenticate(config)
        second = await _authenticate(config)
        assert first == second
        assert len(directory.sessions) == 2


class TestRejections:
    async def test_wrong_user_password(self, config: LDAPAuthConfig):
        verdict = await _authenticate(config, password="wrong")
        assert isinstance(verdict, Rejected)
        assert verdict.error.reason == "InvalidCredentialsError"
        assert verdict.error.category is Category.UNAUTHORIZED
        assert verdict.error.result_code == 49

    async def test_wrong_service_credentials_skip_search(self, config: LDAPAuthConfig, directory: FakeDirectory):
        cfg = dataclasses.replace(config, bind_credentials="wrong")
        verdict = await _authenticate(cfg)
        assert isinstance(verdict, Rejected)
        assert verdict.error.reason == "ServiceBindError"
        assert verdict.error.category is Category.UNAUTHORIZED
        assert "search" not in directory.call_names

    async def test_refused_unauthenticated_bind(self, config: LDAPAuthConfig, directory: FakeDirectory):
        directory.allow_unauthenticated = False
        verdict = await _authenticate(dataclasses.replace(config, bind_credentials=""))
        assert isinstance(verdict, Rejected)
        assert verdict.error.reason == "ServiceBindError"

    async def test_unknown_user(self, config: LDAPAuthConfig, directory: FakeDirectory):
        verdict = await _authenticate(config, username="mallory")
        assert isinstance(verdict, Rejected)
        assert verdict.error.reason == "UserNotFoundOrAmbiguousError"
        assert verdict.error.category is Category.UNAUTHORIZED
        assert directory.call_names == ["dial", "bind", "search", "close"]

    async def test_ambiguous_user(self, config: LDAPAuthConfig, directory: FakeDirectory):
        directory.add_user("uid=alice,ou=other,dc=x", "alice", "secret")
        verdict = await _authenticate(config)
        assert isinstance(verdict, Rejected)
        assert verdict.error.reason == "UserNotFoundOrAmbiguousError"

    async def test_empty_password_never_reaches_directory(self, config: LDAPAuthConfig, directory: FakeDirectory):
        verdict = await _authenticate(config, password="")
        assert isinstance(verdict, Rejected)
        assert verdict.error.reason == "InvalidCredentialsError"
        assert verdict.error.category is Category.UNAUTHORIZED
        assert directory.call_names == ["dial", "bind", "search", "close"]

    async def test_missing_credentials(self, config: LDAPAuthConfig, directory: FakeDirectory):
        async def supply() -> Credentials:
            raise MissingCredentialsError()

        verdict = await LDAPAuthenticator(config).authenticate(supply)
        assert isinstance(verdict, Rejected)
        assert verdict.error.reason == "MissingCredentialsError"
        assert verdict.error.detail == "missing credentials"
        assert directory.call_names == ["dial", "bind", "close"]

    async def test_username_is_escaped(self, config: LDAPAuthConfig, directory: FakeDirectory):
        verdict = await _authenticate(config, username="*)(uid=*")
        assert isinstance(verdict, Rejected)
        search = next(call for call in directory.calls if call[0] == "search")
        assert search[2] == r"(uid=\2a\29\28uid=\2a)"


class TestFaults:
    async def test_dial_failure(self, config: LDAPAuthConfig, directory: FakeDirectory):
        directory.fail_dial = True
        verdict = await _authenticate(config)
        assert isinstance(verdict, Rejected)
        assert verdict.error.reason == "DirectoryConnectionError"
        assert verdict.error.category is Category.INTERNAL
        assert directory.sessions == []

    async def test_tls_failure(self, config: LDAPAuthConfig, directory: FakeDirectory):
        directory.fail_tls = True
        verdict = await _authenticate(dataclasses.replace(config, tls=Tls()))
        assert isinstance(verdict, Rejected)
        assert verdict.error.reason == "TLSError"
        assert verdict.error.category is Category.INTERNAL
        assert "bind" not in directory.call_names

    async def test_search_result_code(self, config: LDAPAuthConfig, directory: FakeDirectory):
        directory.fail_search = SearchError("search failed: noSuchObject", result_code=32)
        verdict = await _authenticate(config)
        assert isinstance(verdict, Rejected)
        assert verdict.error.reason == "SearchError"
        assert verdict.error.category is Category.UNAUTHORIZED

    async def test_connection_lost_during_search(self, config: LDAPAuthConfig, directory: FakeDirectory):
        directory.fail_search = DirectoryConnectionError("search failed: socket closed")
        verdict = await _authenticate(config)
        assert isinstance(verdict, Rejected)
        assert verdict.error.reason == "DirectoryConnectionError"
        assert verdict.error.category is Category.INTERNAL

    async def test_unexpected_error_is_logged(
        self, config: LDAPAuthConfig, directory: FakeDirectory, caplog: pytest.LogCaptureFixture
    ):
        directory.fail_search = RuntimeError("boom")
        with caplog.at_level(logging.ERROR, logger="starlette_ldapauth.authenticator"):
            verdict = await _authenticate(config)
        assert isinstance(verdict, Rejected)
        assert verdict.error.category is Category.INTERNAL
        assert any("Unexpected error" in r.message for r in caplog.records)


class TestSessionRelease:
    @pytest.mark.parametrize(
        ("setup", "password"),
        [
            (lambda d: None, "secret"),
            (lambda d: None, "wrong"),
            (lambda d: setattr(d, "fail_tls", True), "secret"),
            (lambda d: setattr(d, "fail_search", RuntimeError("boom")), "secret"),
            (lambda d: setattr(d, "service_password", "rotated"), "secret"),
        ],
    )
    async def test_session_closed_on_every_path(self, config: LDAPAuthConfig, directory: FakeDirectory, setup, password):
        setup(directory)
        await _authenticate(dataclasses.replace(config, tls=Tls()), password=password)
        assert len(directory.sessions) == 1
        assert directory.sessions[0].closed is True
        assert directory.calls[-1] == ("close",)

    async def test_close_failure_does_not_mask_verdict(
        self, config: LDAPAuthConfig, directory: FakeDirectory, caplog: pytest.LogCaptureFixture
    ):
        original_dial = directory.dial

        def dial(url: str):
            session = original_dial(url)

            def close() -> None:
                raise OSError("already closed")

            session.close = close
            return session

        cfg = dataclasses.replace(config, connector=type("Connector", (), {"dial": staticmethod(dial)})())
        with caplog.at_level(logging.WARNING, logger="starlette_ldapauth.authenticator"):
            verdict = await _authenticate(cfg)
        assert isinstance(verdict, Authenticated)
        assert any("Failed to close" in r.message for r in caplog.records)

    async def test_session_closed_when_cancelled(self, config: LDAPAuthConfig, directory: FakeDirectory):
        directory.bind_delay = 0.3
        with anyio.move_on_after(0.1) as scope:
            await _authenticate(config)
        assert scope.cancelled_caught
        assert len(directory.sessions) == 1
        assert directory.sessions[0].closed is True
        assert directory.calls[-1] == ("close",)
