"""Request authorization for the upload service.

Credential acquisition lives outside this package; an authorizer only turns a
request descriptor into an authorized one.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol, Union

from gcs_resumable_upload.exceptions import AuthorizationError
from gcs_resumable_upload.models import RequestDescriptor

logger = logging.getLogger(__name__)

HeadersProvider = Callable[[], Union[dict[str, str], Awaitable[dict[str, str]]]]


class Authorizer(Protocol):
    """Authorizes outgoing requests."""

    async def authorize(self, request: RequestDescriptor) -> RequestDescriptor:
        """Return an authorized copy of ``request``.

        Raises:
            AuthorizationError: If credentials cannot be obtained.
        """
        ...


class NoAuthAuthorizer:
    """Passes requests through unchanged, e.g. for pre-signed session uris."""

    async def authorize(self, request: RequestDescriptor) -> RequestDescriptor:
        """Return ``request`` as is."""
        return request


class HeaderAuthorizer:
    """Merges headers from a credential provider into each request.

    The provider is typically ``auth.get_headers`` of a credential object. It
    may be a coroutine function; blocking providers run in the default
    executor so token refreshes never stall the event loop.
    """

    def __init__(self, get_headers: HeadersProvider) -> None:
        """Initialize the authorizer.

        Args:
            get_headers: Callable returning e.g. ``{"Authorization": "Bearer ..."}``.
        """
        self._get_headers = get_headers

    async def _fetch_headers(self) -> dict[str, str]:
        if inspect.iscoroutinefunction(self._get_headers):
            return await self._get_headers()
        loop = asyncio.get_running_loop()
        headers = await loop.run_in_executor(None, self._get_headers)
        if inspect.isawaitable(headers):
            headers = await headers
        return headers

    async def authorize(self, request: RequestDescriptor) -> RequestDescriptor:
        """Return ``request`` with the provider's headers merged in.

        Raises:
            AuthorizationError: If the provider fails.
        """
        try:
            headers = await self._fetch_headers()
        except AuthorizationError:
            raise
        except Exception as exc:
            logger.error(
                "Failed to authorize %s %s: %s", request.method, request.uri, exc
            )
            raise AuthorizationError(f"Failed to authorize request: {exc}") from exc
        return request.with_headers(dict(headers))


def bearer_token(token: str) -> HeaderAuthorizer:
    """Build an authorizer sending a fixed bearer token."""
    return HeaderAuthorizer(lambda: {"Authorization": f"Bearer {token}"})
