"""Credential extraction from incoming requests."""

from __future__ import annotations

import base64
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, NamedTuple, Union

from starlette.formparsers import MultiPartException
from starlette.requests import Request

from starlette_ldapauth.errors import LDAPAuthError, MissingCredentialsError

logger = logging.getLogger(__name__)

# Body lookups always use these keys, whatever the configured field names are.
BODY_USERNAME_KEY = "username"
BODY_PASSWORD_KEY = "password"

_FORM_TYPES = {"application/x-www-form-urlencoded", "multipart/form-data"}


class Credentials(NamedTuple):
    """A username/password pair scoped to a single request."""

    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


CredentialsLookup = Callable[
    [Request, str, str],
    Union[Credentials, tuple[str, str], Awaitable[Union[Credentials, tuple[str, str]]]],
]


async def default_credentials_lookup(request: Request, username_field: str, password_field: str) -> Credentials:
    """Find a username and password in ``request``.

    Sources are tried in order and the first complete pair wins:

    1. Query parameters named ``username_field`` / ``password_field``.
    2. A form or JSON body, using the literal keys ``username`` and
       ``password``. The configured field names do NOT apply here.
    3. Headers named ``username_field`` / ``password_field``.
    4. The ``Authorization`` header, either ``Basic base64(user:pass)`` or a
       value that is itself ``base64("Basic user:pass")``.

    Raises:
        MissingCredentialsError: No source yielded a complete pair.
    """
    username = request.query_params.get(username_field, "")
    password = request.query_params.get(password_field, "")
    if username and password:
        return Credentials(username, password)

    body = await _body_fields(request)
    username = _as_str(body.get(BODY_USERNAME_KEY))
    password = _as_str(body.get(BODY_PASSWORD_KEY))
    if username and password:
        return Credentials(username, password)

    username = request.headers.get(username_field, "")
    password = request.headers.get(password_field, "")
    if username and password:
        return Credentials(username, password)

    authorization = request.headers.get("authorization", "")
    if authorization:
        credentials = parse_authorization(authorization)
        if credentials is not None:
            return credentials

    raise MissingCredentialsError()


async def _body_fields(request: Request) -> dict[str, Any]:
    """Parse a form or JSON body into a dict. Unparseable bodies yield {}."""
    content_type = request.headers.get("content-type", "").split(";", 1)[0].strip().lower()
    is_json = content_type == "application/json" or content_type.endswith("+json")
    if not is_json and content_type not in _FORM_TYPES:
        return {}

    try:
        if not await request.body():
            return {}
        if is_json:
            data = await request.json()
            return data if isinstance(data, dict) else {}
        form = await request.form()
        return dict(form)
    except (ValueError, MultiPartException):
        logger.debug("Ignoring unparseable %s request body", content_type)
        return {}


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _b64decode(value: str) -> str | None:
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except ValueError:
        return None


def parse_authorization(value: str) -> Credentials | None:
    """Decode Basic credentials from an ``Authorization`` header value.

    Returns None for anything malformed.
    """
    scheme, _, token = value.strip().partition(" ")
    if scheme.lower() == "basic" and token:
        decoded = _b64decode(token.strip())
        if decoded is None:
            return None
        username, sep, password = decoded.partition(":")
        return Credentials(username, password) if sep else None

    decoded = _b64decode(value.strip())
    if decoded is None or "Basic" not in decoded:
        return None
    remainder = decoded.split("Basic", 1)[1]
    if remainder.startswith(" "):
        remainder = remainder[1:]
    parts = remainder.split(":")
    if len(parts) != 2:
        return None
    return Credentials(parts[0], parts[1])


async def lookup_credentials(
    lookup: CredentialsLookup,
    request: Request,
    username_field: str,
    password_field: str,
) -> Credentials:
    """Run a built-in or user-supplied lookup and normalise its result.

    Sync and async lookups are both accepted. Errors that are not part of
    the ``LDAPAuthError`` taxonomy become ``MissingCredentialsError`` with
    the default message; the original error is only kept as the cause.
    """
    try:
        result = lookup(request, username_field, password_field)
        if inspect.isawaitable(result):
            result = await result
        username, password = result
    except LDAPAuthError:
        raise
    except Exception as exc:
        logger.debug("Credentials lookup failed", exc_info=True)
        raise MissingCredentialsError() from exc
    return Credentials(username, password)
