"""LDAPAuthConfig: immutable middleware configuration."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ldap3 import Tls

from starlette_ldapauth.callbacks import ErrorCallback, SkipPredicate, SuccessCallback, continue_pipeline
from starlette_ldapauth.credentials import CredentialsLookup, default_credentials_lookup
from starlette_ldapauth.directory.protocol import DirectoryConnector
from starlette_ldapauth.directory.session import Ldap3Connector

logger = logging.getLogger(__name__)

USERNAME_PLACEHOLDER = "{{username}}"
DEFAULT_SEARCH_ATTRIBUTES: tuple[str, ...] = ("dn", "dc")
DEFAULT_USERNAME_FIELD = "username"
DEFAULT_PASSWORD_FIELD = "password"
ENV_PREFIX = "LDAPAUTH_"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class LDAPAuthConfig:
    """Configuration shared read-only by every request.

    Attributes:
        url: Directory URL, e.g. ``ldap://localhost:389`` or
            ``ldaps://localhost:636``.
        bind_dn: Service account DN used for the first bind.
        bind_credentials: Service account password. Empty performs an
            unauthenticated bind.
        search_base: Base DN to search users under.
        search_filter: User filter, e.g. ``(uid={{username}})``. The literal
            ``{{username}}`` is replaced with the escaped username. When
            ``search_base`` and ``search_filter`` are both empty only the
            service bind is checked; setting just one of them is an error.
        search_attributes: Attributes requested on the user search.
        tls: ``ldap3.Tls`` settings. When set, StartTLS is issued before any
            bind.
        username_field: Query parameter / header holding the username.
        password_field: Query parameter / header holding the password. Note
            that request bodies are always read with the keys ``username``
            and ``password`` regardless of these two fields.
        credentials_lookup: Replaces the whole credential extraction.
        success_callback: Called after a successful authentication. Returning
            None continues to the wrapped app; returning a ``Response``
            sends it instead.
        error_callback: Called with every classified failure. May return a
            ``Response``, a replacement ``ClassifiedError`` or None.
        skip: Predicate; True bypasses authentication for the request.
        connector: Opens directory sessions. Defaults to ``Ldap3Connector``.
    """

    url: str
    bind_dn: str = ""
    bind_credentials: str = field(default="", repr=False)
    search_base: str = ""
    search_filter: str = ""
    search_attributes: tuple[str, ...] = DEFAULT_SEARCH_ATTRIBUTES
    tls: Tls | None = None
    username_field: str = DEFAULT_USERNAME_FIELD
    password_field: str = DEFAULT_PASSWORD_FIELD
    credentials_lookup: CredentialsLookup | None = default_credentials_lookup
    success_callback: SuccessCallback | None = continue_pipeline
    error_callback: ErrorCallback | None = None
    skip: SkipPredicate | None = None
    connector: DirectoryConnector | None = None

    def __post_init__(self) -> None:
        if not self.url or not self.url.strip():
            raise ValueError("url must not be empty")

        # Fill defaults for optional values left empty
        if not self.search_attributes:
            object.__setattr__(self, "search_attributes", DEFAULT_SEARCH_ATTRIBUTES)
        else:
            object.__setattr__(self, "search_attributes", tuple(self.search_attributes))
        if not self.username_field:
            object.__setattr__(self, "username_field", DEFAULT_USERNAME_FIELD)
        if not self.password_field:
            object.__setattr__(self, "password_field", DEFAULT_PASSWORD_FIELD)
        if self.credentials_lookup is None:
            object.__setattr__(self, "credentials_lookup", default_credentials_lookup)
        if self.success_callback is None:
            object.__setattr__(self, "success_callback", continue_pipeline)
        if self.connector is None:
            object.__setattr__(self, "connector", Ldap3Connector(tls=self.tls))

        if bool(self.search_base) != bool(self.search_filter):
            raise ValueError("search_base and search_filter must be set together")
        if self.search_filter and USERNAME_PLACEHOLDER not in self.search_filter:
            logger.warning(
                "search_filter %r has no %s placeholder; every user resolves to the same entry",
                self.search_filter,
                USERNAME_PLACEHOLDER,
            )

        for name in ("credentials_lookup", "success_callback"):
            if not callable(getattr(self, name)):
                raise TypeError(f"{name} must be callable")
        for name in ("error_callback", "skip"):
            value = getattr(self, name)
            if value is not None and not callable(value):
                raise TypeError(f"{name} must be callable or None")
        if not hasattr(self.connector, "dial"):
            raise TypeError("connector must provide dial(url)")

    @property
    def search_enabled(self) -> bool:
        """True when the user search and user bind run after the service bind."""
        return bool(self.search_base and self.search_filter)

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        prefix: str = ENV_PREFIX,
        **overrides: Any,
    ) -> LDAPAuthConfig:
        """Build a configuration from environment variables.

        Reads ``URL``, ``BIND_DN``, ``BIND_CREDENTIALS``, ``SEARCH_BASE``,
        ``SEARCH_FILTER``, ``SEARCH_ATTRIBUTES`` (comma separated),
        ``USERNAME_FIELD``, ``PASSWORD_FIELD`` and ``STARTTLS``, each with
        ``prefix`` prepended. Keyword overrides win over the environment.
        """
        env = os.environ if environ is None else environ

        def _get(name: str) -> str:
            return env.get(prefix + name, "").strip()

        values: dict[str, Any] = {
            "url": _get("URL"),
            "bind_dn": _get("BIND_DN"),
            "bind_credentials": env.get(prefix + "BIND_CREDENTIALS", ""),
            "search_base": _get("SEARCH_BASE"),
            "search_filter": _get("SEARCH_FILTER"),
            "username_field": _get("USERNAME_FIELD"),
            "password_field": _get("PASSWORD_FIELD"),
        }
        attributes = _get("SEARCH_ATTRIBUTES")
        if attributes:
            values["search_attributes"] = tuple(a.strip() for a in attributes.split(",") if a.strip())
        if _get("STARTTLS").lower() in _TRUTHY:
            values["tls"] = Tls()

        values.update(overrides)
        if not values["url"]:
            raise ValueError(f"{prefix}URL is not set")
        return cls(**values)
