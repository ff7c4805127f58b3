"""starlette-ldapauth: LDAP bind authentication middleware for Starlette and ASGI apps."""

from __future__ import annotations

from starlette_ldapauth.authenticator import (
    Authenticated,
    AuthenticatedUser,
    LDAPAuthenticator,
    Rejected,
    Verdict,
)
from starlette_ldapauth.callbacks import continue_pipeline, skip_paths
from starlette_ldapauth.classifier import Category, ClassifiedError, ErrorClassifier
from starlette_ldapauth.config import LDAPAuthConfig
from starlette_ldapauth.credentials import Credentials, default_credentials_lookup, parse_authorization
from starlette_ldapauth.directory import (
    DirectoryConnector,
    DirectoryEntry,
    DirectorySession,
    Ldap3Connector,
    Ldap3Session,
)
from starlette_ldapauth.errors import (
    DirectoryConnectionError,
    DirectoryError,
    InvalidCredentialsError,
    LDAPAuthError,
    MissingCredentialsError,
    SearchError,
    ServiceBindError,
    TLSError,
    UserNotFoundOrAmbiguousError,
)
from starlette_ldapauth.middleware import LDAPAuthMiddleware, ldap_user_var

__all__ = [
    # Public API
    "LDAPAuthMiddleware",
    "LDAPAuthConfig",
    "ldap_user_var",
    # Orchestration
    "LDAPAuthenticator",
    "Authenticated",
    "AuthenticatedUser",
    "Rejected",
    "Verdict",
    # Credentials
    "Credentials",
    "default_credentials_lookup",
    "parse_authorization",
    # Callbacks
    "continue_pipeline",
    "skip_paths",
    # Errors
    "Category",
    "ClassifiedError",
    "ErrorClassifier",
    "LDAPAuthError",
    "MissingCredentialsError",
    "UserNotFoundOrAmbiguousError",
    "DirectoryError",
    "DirectoryConnectionError",
    "TLSError",
    "ServiceBindError",
    "SearchError",
    "InvalidCredentialsError",
    # Directory adapters
    "DirectoryConnector",
    "DirectoryEntry",
    "DirectorySession",
    "Ldap3Connector",
    "Ldap3Session",
]

__version__ = "0.1.0"
