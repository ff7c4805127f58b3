"""Default outcome callbacks and skip predicates."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from typing import Union

from starlette.requests import Request
from starlette.responses import Response

from starlette_ldapauth.classifier import ClassifiedError

SuccessCallback = Callable[[Request], Union[Response, None, Awaitable[Union[Response, None]]]]
ErrorCallback = Callable[
    [Request, ClassifiedError],
    Union[Response, ClassifiedError, None, Awaitable[Union[Response, ClassifiedError, None]]],
]
SkipPredicate = Callable[[Request], bool]


def continue_pipeline(request: Request) -> None:
    """Default success callback: hand the request to the wrapped app."""
    return None


def skip_paths(paths: Iterable[str] = (), prefixes: Iterable[str] = ()) -> SkipPredicate:
    """Build a skip predicate for exact paths and path prefixes.

    Args:
        paths: Exact request paths that bypass authentication.
        prefixes: Any path starting with one of these bypasses authentication.
    """
    exact = frozenset(paths)
    starts = tuple(prefixes)

    def _skip(request: Request) -> bool:
        path = request.url.path
        if path in exact:
            return True
        return bool(starts) and path.startswith(starts)

    return _skip
