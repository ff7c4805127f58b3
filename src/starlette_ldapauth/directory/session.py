"""ldap3-backed directory sessions."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from ldap3 import ANONYMOUS, DEREF_NEVER, NONE, SIMPLE, SUBTREE, SYNC, Connection, Server, Tls
from ldap3.core.exceptions import (
    LDAPCommunicationError,
    LDAPException,
    LDAPOperationResult,
    LDAPSocketOpenError,
    LDAPStartTLSError,
)
from ldap3.operation.bind import bind_operation
from ldap3.utils.conv import escape_filter_chars, to_unicode

from starlette_ldapauth.directory.protocol import DirectoryEntry, DirectorySession
from starlette_ldapauth.errors import DirectoryConnectionError, DirectoryError, TLSError

logger = logging.getLogger(__name__)


def _result_error(conn: Connection, operation: str) -> DirectoryError:
    """Build a DirectoryError from the last result stored on ``conn``."""
    result = conn.result or {}
    code = result.get("result")
    description = result.get("description") or "unknown"
    if not isinstance(code, int) or code == 0:
        return DirectoryError(f"{operation} failed")
    return DirectoryError(f"{operation} failed: {description}", result_code=code)


class Ldap3Session:
    """``DirectorySession`` over an ``ldap3.Connection``.

    The connection is created with ``raise_exceptions=False``: operation
    results are read from ``Connection.result`` and converted here, while
    ldap3 exceptions (socket failures, client-side checks) become
    ``DirectoryConnectionError`` or a code-carrying ``DirectoryError``.
    """

    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    def start_tls(self, tls: Any) -> None:
        # a Server passed to Ldap3Connector is shared, keep its own settings
        if self._conn.server.tls is None:
            self._conn.server.tls = tls
        try:
            ok = self._conn.start_tls()
        except LDAPStartTLSError as exc:
            raise TLSError(f"StartTLS failed: {exc}") from exc
        except LDAPException as exc:
            raise self._translate(exc, "StartTLS") from exc
        if not ok:
            err = _result_error(self._conn, "StartTLS")
            raise TLSError(err.message, result_code=err.result_code)

    def bind(self, dn: str, credential: str) -> None:
        self._bind(dn, credential, SIMPLE)

    def unauthenticated_bind(self, dn: str) -> None:
        if not dn:
            self._bind(None, None, ANONYMOUS)
            return

        # ldap3 refuses a name on ANONYMOUS binds, so send the RFC 4513
        # unauthenticated bind (name, empty password) ourselves
        conn = self._conn
        request = bind_operation(conn.version, ANONYMOUS, None, "")
        request["name"] = to_unicode(dn) if conn.auto_encode else dn
        try:
            with conn.connection_lock:
                if conn.closed:
                    conn.open(read_server_info=False)
                conn.post_send_single_response(conn.send("bindRequest", request))
        except LDAPException as exc:
            raise self._translate(exc, "bind") from exc
        if (conn.result or {}).get("result") != 0:
            raise _result_error(conn, "bind")

    def _bind(self, dn: str | None, credential: str | None, authentication: str) -> None:
        self._conn.user = dn
        self._conn.password = credential
        self._conn.authentication = authentication
        try:
            ok = self._conn.bind()
        except LDAPException as exc:
            raise self._translate(exc, "bind") from exc
        if not ok:
            raise _result_error(self._conn, "bind")

    def search(self, base: str, search_filter: str, attributes: Sequence[str]) -> list[DirectoryEntry]:
        try:
            self._conn.search(
                search_base=base,
                search_filter=search_filter,
                search_scope=SUBTREE,
                dereference_aliases=DEREF_NEVER,
                attributes=list(attributes),
                size_limit=0,
                time_limit=0,
            )
        except LDAPException as exc:
            raise self._translate(exc, "search") from exc

        # ldap3 reports False for an empty result set, so check the code instead
        code = (self._conn.result or {}).get("result")
        if isinstance(code, int) and code != 0:
            raise _result_error(self._conn, "search")

        return [
            DirectoryEntry(dn=item["dn"], attributes=dict(item.get("attributes") or {}))
            for item in (self._conn.response or [])
            if item.get("type") == "searchResEntry"
        ]

    def escape_filter(self, value: str) -> str:
        return escape_filter_chars(value)

    def close(self) -> None:
        try:
            self._conn.unbind()
        except LDAPException:
            logger.debug("Error while closing LDAP connection", exc_info=True)

    @staticmethod
    def _translate(exc: LDAPException, operation: str) -> DirectoryError:
        """Map an ldap3 exception to the directory error taxonomy."""
        if isinstance(exc, LDAPOperationResult) and isinstance(exc.result, int) and exc.result != 0:
            return DirectoryError(f"{operation} failed: {exc.description}", result_code=exc.result)
        if operation == "bind" and not isinstance(exc, (LDAPCommunicationError, LDAPSocketOpenError)):
            # client-side refusals, e.g. an empty password on a simple bind
            return DirectoryError(f"{operation} failed: {exc}")
        return DirectoryConnectionError(f"{operation} failed: {exc}")


class Ldap3Connector:
    """``DirectoryConnector`` that opens ldap3 connections.

    Args:
        connect_timeout: Seconds to wait for the socket to open.
        receive_timeout: Seconds to wait for each response.
        client_strategy: ldap3 client strategy; ``SYNC`` unless testing
            with ``MOCK_SYNC``.
        server: Pre-built ``ldap3.Server`` to use instead of one built from
            the URL on every dial.
        tls: ``ldap3.Tls`` settings given to servers built from the URL.
    """

    def __init__(
        self,
        *,
        connect_timeout: float | None = None,
        receive_timeout: float | None = None,
        client_strategy: str = SYNC,
        server: Server | None = None,
        tls: Tls | None = None,
    ) -> None:
        self._connect_timeout = connect_timeout
        self._receive_timeout = receive_timeout
        self._client_strategy = client_strategy
        self._server = server
        self._tls = tls

    def dial(self, url: str) -> DirectorySession:
        server = self._server
        if server is None:
            server = Server(url, get_info=NONE, tls=self._tls, connect_timeout=self._connect_timeout)
        try:
            conn = Connection(
                server,
                client_strategy=self._client_strategy,
                raise_exceptions=False,
                receive_timeout=self._receive_timeout,
            )
            conn.open()
        except LDAPException as exc:
            raise DirectoryConnectionError(f"cannot connect to {url}: {exc}") from exc
        logger.debug("Opened LDAP connection to %s", url)
        return Ldap3Session(conn)
