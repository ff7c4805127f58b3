"""LDAPAuthenticator: the service bind / user search / user bind sequence."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from functools import partial
from typing import Any, TypeVar, Union

import anyio
import anyio.to_thread

from starlette_ldapauth.classifier import ClassifiedError, ErrorClassifier
from starlette_ldapauth.config import USERNAME_PLACEHOLDER, LDAPAuthConfig
from starlette_ldapauth.credentials import Credentials
from starlette_ldapauth.directory.protocol import DirectorySession
from starlette_ldapauth.errors import (
    DirectoryConnectionError,
    DirectoryError,
    InvalidCredentialsError,
    LDAPAuthError,
    SearchError,
    ServiceBindError,
    TLSError,
    UserNotFoundOrAmbiguousError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

CredentialsSupplier = Callable[[], Awaitable[Credentials]]


@dataclass(frozen=True)
class AuthenticatedUser:
    """The user a request was authenticated as.

    ``dn`` is None when only the service bind was checked.
    """

    username: str | None = None
    dn: str | None = None


@dataclass(frozen=True)
class Authenticated:
    """Verdict: the request may continue."""

    user: AuthenticatedUser


@dataclass(frozen=True)
class Rejected:
    """Verdict: the request failed authentication."""

    error: ClassifiedError


Verdict = Union[Authenticated, Rejected]


def _reraise_as(exc: DirectoryError, error_type: type[DirectoryError]) -> DirectoryError:
    """Re-type a session error for the step it happened in.

    Transport failures keep their type so they are reported as faults.
    """
    if isinstance(exc, (DirectoryConnectionError, error_type)):
        return exc
    return error_type(exc.message, result_code=exc.result_code)


class LDAPAuthenticator:
    """Runs one authentication attempt per call against the directory.

    Each call opens exactly one directory session and closes it on every
    exit path. Directory calls block, so they run in a worker thread one at a
    time, in order.

    Args:
        config: Shared middleware configuration.
        classifier: Maps failures to ``ClassifiedError``.
    """

    def __init__(self, config: LDAPAuthConfig, classifier: ErrorClassifier | None = None) -> None:
        self._config = config
        self._classifier = classifier or ErrorClassifier()

    @property
    def config(self) -> LDAPAuthConfig:
        return self._config

    async def authenticate(self, credentials: CredentialsSupplier) -> Verdict:
        """Run one authentication attempt.

        ``credentials`` is only awaited when a user search is configured.
        """
        try:
            user = await self._run(credentials)
        except Exception as exc:
            if not isinstance(exc, LDAPAuthError):
                logger.exception("Unexpected error during LDAP authentication")
            classified = self._classifier.classify(exc)
            logger.debug("Authentication rejected: %s (%s)", classified.reason, classified.detail)
            return Rejected(classified)
        return Authenticated(user)

    async def _run(self, credentials: CredentialsSupplier) -> AuthenticatedUser:
        cfg = self._config
        session: DirectorySession = await self._call(cfg.connector.dial, cfg.url)
        try:
            if cfg.tls is not None:
                try:
                    await self._call(session.start_tls, cfg.tls)
                except DirectoryError as exc:
                    raise _reraise_as(exc, TLSError) from exc

            try:
                if cfg.bind_credentials:
                    await self._call(session.bind, cfg.bind_dn, cfg.bind_credentials)
                else:
                    await self._call(session.unauthenticated_bind, cfg.bind_dn)
            except DirectoryError as exc:
                raise _reraise_as(exc, ServiceBindError) from exc
            logger.debug("Service bind succeeded")

            if not cfg.search_enabled:
                return AuthenticatedUser()

            username, password = await credentials()
            search_filter = cfg.search_filter.replace(USERNAME_PLACEHOLDER, session.escape_filter(username))
            try:
                entries = await self._call(session.search, cfg.search_base, search_filter, cfg.search_attributes)
            except DirectoryError as exc:
                raise _reraise_as(exc, SearchError) from exc
            if len(entries) != 1:
                raise UserNotFoundOrAmbiguousError()

            user_dn = entries[0].dn
            if not password:
                # an empty password would be an unauthenticated bind
                raise InvalidCredentialsError("empty password")
            try:
                await self._call(session.bind, user_dn, password)
            except DirectoryError as exc:
                raise _reraise_as(exc, InvalidCredentialsError) from exc
            logger.debug("User bind succeeded")
            return AuthenticatedUser(username=username, dn=user_dn)
        finally:
            # still runs when the request is cancelled mid-bind
            with anyio.CancelScope(shield=True):
                try:
                    await self._call(session.close)
                except Exception:
                    logger.warning("Failed to close directory session", exc_info=True)

    @staticmethod
    async def _call(func: Callable[..., T], *args: Any) -> T:
        return await anyio.to_thread.run_sync(partial(func, *args))
