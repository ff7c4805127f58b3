"""Directory session protocol for pluggable LDAP client backends."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class DirectoryEntry:
    """A single entry returned by a directory search.

    Attributes:
        dn: Distinguished name of the entry.
        attributes: Attribute values returned by the server.
    """

    dn: str
    attributes: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class DirectorySession(Protocol):
    """A live connection to a directory server.

    Every method blocks on network I/O. Failures raise
    ``starlette_ldapauth.errors.DirectoryError``; transport failures raise
    its ``DirectoryConnectionError`` subclass.
    """

    def start_tls(self, tls: Any) -> None:
        """Upgrade the connection to TLS."""
        ...

    def bind(self, dn: str, credential: str) -> None:
        """Authenticate the connection as ``dn``."""
        ...

    def unauthenticated_bind(self, dn: str) -> None:
        """Bind without a credential."""
        ...

    def search(self, base: str, search_filter: str, attributes: Sequence[str]) -> list[DirectoryEntry]:
        """Search the whole subtree under ``base`` without dereferencing aliases.

        No size or time limit is requested.
        """
        ...

    def escape_filter(self, value: str) -> str:
        """Escape filter metacharacters in ``value``."""
        ...

    def close(self) -> None:
        """Release the connection. Must be safe to call after any failure."""
        ...


@runtime_checkable
class DirectoryConnector(Protocol):
    """Opens directory sessions."""

    def dial(self, url: str) -> DirectorySession:
        """Connect to the server at ``url``.

        Raises:
            DirectoryConnectionError: The server could not be reached.
        """
        ...
