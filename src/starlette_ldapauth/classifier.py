"""ErrorClassifier: authentication failures → HTTP-facing errors."""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass

from ldap3.core.results import RESULT_CODES

from starlette_ldapauth.errors import DirectoryError, LDAPAuthError

INTERNAL_DETAIL = "Internal Server Error"


class Category(str, enum.Enum):
    """Request-facing error categories."""

    UNAUTHORIZED = "unauthorized"
    INTERNAL = "internal"


@dataclass(frozen=True)
class ClassifiedError:
    """An authentication failure ready to be turned into a response.

    Attributes:
        category: Unauthorized (401) or internal fault (500).
        detail: Safe, human-readable reason shown to the client.
        reason: Name of the failure in the error taxonomy.
        result_code: LDAP result code, when the directory returned one.
        cause: The original exception, for hooks and logs only.
    """

    category: Category
    detail: str
    reason: str
    result_code: int | None = None
    cause: BaseException | None = None

    @property
    def status_code(self) -> int:
        return 401 if self.category is Category.UNAUTHORIZED else 500


class ErrorClassifier:
    """Maps authentication failures to ``ClassifiedError``.

    Args:
        result_codes: LDAP result code table used to describe directory
            errors. Defaults to ldap3's table.
    """

    def __init__(self, result_codes: Mapping[int, str] | None = None) -> None:
        self._result_codes = result_codes if result_codes is not None else RESULT_CODES

    def classify(self, error: BaseException) -> ClassifiedError:
        """Classify any exception raised during an authentication attempt."""
        reason = type(error).__name__

        if isinstance(error, DirectoryError) and error.result_code is not None:
            return self.classify_result_code(error.result_code, reason=reason, cause=error)

        if isinstance(error, LDAPAuthError) and error.rejection:
            return ClassifiedError(Category.UNAUTHORIZED, error.message, reason, cause=error)

        # Directory faults without a result code and unexpected exceptions
        return ClassifiedError(Category.INTERNAL, INTERNAL_DETAIL, reason, cause=error)

    def classify_result_code(
        self,
        code: int,
        *,
        reason: str = "DirectoryError",
        cause: BaseException | None = None,
    ) -> ClassifiedError:
        """Classify a bare LDAP result code.

        Known non-zero codes are authentication rejections described by the
        code table. Zero (success) and unknown codes are internal faults.
        """
        description = self._result_codes.get(code)
        if code != 0 and description is not None:
            return ClassifiedError(Category.UNAUTHORIZED, description, reason, result_code=code, cause=cause)
        return ClassifiedError(Category.INTERNAL, INTERNAL_DETAIL, reason, result_code=code, cause=cause)
