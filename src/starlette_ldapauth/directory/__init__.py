"""Directory adapters: session protocol and the ldap3 implementation."""

from starlette_ldapauth.directory.protocol import DirectoryConnector, DirectoryEntry, DirectorySession
from starlette_ldapauth.directory.session import Ldap3Connector, Ldap3Session

__all__ = [
    "DirectoryConnector",
    "DirectoryEntry",
    "DirectorySession",
    "Ldap3Connector",
    "Ldap3Session",
]
