"""ASGI middleware that authenticates requests against an LDAP directory."""

from __future__ import annotations

import inspect
import logging
from collections import deque
from contextvars import ContextVar
from functools import partial
from typing import Any

from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from starlette_ldapauth.authenticator import AuthenticatedUser, LDAPAuthenticator, Rejected
from starlette_ldapauth.classifier import Category, ClassifiedError, ErrorClassifier
from starlette_ldapauth.config import LDAPAuthConfig
from starlette_ldapauth.credentials import lookup_credentials

logger = logging.getLogger(__name__)

# Bridge between the middleware and downstream handlers
ldap_user_var: ContextVar[AuthenticatedUser | None] = ContextVar("ldap_user", default=None)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class _BufferedReceive:
    """Records messages read while authenticating and replays them downstream."""

    def __init__(self, receive: Any) -> None:
        self._receive = receive
        self._buffer: deque[dict[str, Any]] = deque()

    async def record(self) -> dict[str, Any]:
        message = await self._receive()
        self._buffer.append(message)
        return message

    async def replay(self) -> dict[str, Any]:
        if self._buffer:
            return self._buffer.popleft()
        return await self._receive()


class LDAPAuthMiddleware:
    """ASGI middleware that authenticates every HTTP request with LDAP binds.

    On success ``ldap_user_var`` holds the ``AuthenticatedUser`` while the
    wrapped app runs. On failure the classified error is passed through the
    configured error callback and answered with 401 or 500.

    Args:
        app: The ASGI application to wrap.
        config: Middleware configuration.
        classifier: Maps failures to HTTP-facing errors.
        realm: Realm advertised in the ``WWW-Authenticate`` header of 401
            responses.
    """

    def __init__(
        self,
        app: Any,
        config: LDAPAuthConfig,
        *,
        classifier: ErrorClassifier | None = None,
        realm: str = "Restricted",
    ) -> None:
        # Refuse to build a middleware that could never let a request through
        if not callable(getattr(config, "success_callback", None)):
            raise TypeError("success_callback must not be None")
        self._app = app
        self._config = config
        self._authenticator = LDAPAuthenticator(config, classifier)
        self._realm = realm

    async def __call__(self, scope: dict[str, Any], receive: Any, send: Any) -> None:
        if scope["type"] != "http":
            await self._app(scope, receive, send)
            return

        buffered = _BufferedReceive(receive)
        request = Request(scope, buffered.record)
        cfg = self._config

        if cfg.skip is not None and cfg.skip(request):
            await self._app(scope, buffered.replay, send)
            return

        supplier = partial(
            lookup_credentials,
            cfg.credentials_lookup,
            request,
            cfg.username_field,
            cfg.password_field,
        )
        verdict = await self._authenticator.authenticate(supplier)

        if isinstance(verdict, Rejected):
            path = scope.get("path", "")
            logger.warning("Authentication failed for %s: %s", path, verdict.error.reason)
            response = await self._handle_error(request, verdict.error)
            await response(scope, buffered.replay, send)
            return

        token = ldap_user_var.set(verdict.user)
        try:
            response = await _maybe_await(cfg.success_callback(request))
            if response is not None:
                await response(scope, buffered.replay, send)
                return
            await self._app(scope, buffered.replay, send)
        finally:
            ldap_user_var.reset(token)

    async def _handle_error(self, request: Request, error: ClassifiedError) -> Response:
        """Run the error callback, if any, and pick the response to send."""
        callback = self._config.error_callback
        if callback is None:
            return self.render_error(error)

        result = await _maybe_await(callback(request, error))
        if isinstance(result, Response):
            return result
        if isinstance(result, ClassifiedError):
            return self.render_error(result)
        return self.render_error(error)

    def render_error(self, error: ClassifiedError) -> Response:
        """Render a classified error as a JSON response."""
        if error.category is Category.UNAUTHORIZED:
            return JSONResponse(
                {"error": "Unauthorized", "detail": error.detail},
                status_code=401,
                headers={"WWW-Authenticate": f'Basic realm="{self._realm}"'},
            )
        return JSONResponse(
            {"error": "Internal Server Error", "detail": error.detail},
            status_code=error.status_code,
        )
