"""Error taxonomy raised while authenticating a request against LDAP."""

from __future__ import annotations


class LDAPAuthError(Exception):
    """Base class for every failure of an authentication attempt.

    Attributes:
        message: Human-readable reason.
        rejection: True when the failure is a verdict on the caller's
            credentials rather than a fault of the directory or the server.
    """

    rejection: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class MissingCredentialsError(LDAPAuthError):
    """No username/password pair could be found in the request."""

    rejection = True

    def __init__(self, message: str = "missing credentials") -> None:
        super().__init__(message)


class UserNotFoundOrAmbiguousError(LDAPAuthError):
    """The user search matched zero or more than one entry."""

    rejection = True

    def __init__(self, message: str = "user does not exist or too many entries returned") -> None:
        super().__init__(message)


class DirectoryError(LDAPAuthError):
    """A directory operation failed.

    ``result_code`` is the LDAP result code returned by the server, or None
    when the failure happened before a result was received (socket errors,
    client-side checks). A zero code means success and is never an error.
    """

    def __init__(self, message: str, *, result_code: int | None = None) -> None:
        if result_code == 0:
            raise ValueError("LDAP result code 0 (success) cannot be raised as an error")
        super().__init__(message)
        self.result_code = result_code


class DirectoryConnectionError(DirectoryError):
    """The directory server could not be reached."""


class TLSError(DirectoryError):
    """StartTLS negotiation failed."""


class ServiceBindError(DirectoryError):
    """The service account bind was refused."""


class SearchError(DirectoryError):
    """The user search could not be executed."""


class InvalidCredentialsError(DirectoryError):
    """The located user could not bind with the supplied password."""

    rejection = True
