"""Per-upload event emitter for consumer notifications."""

import asyncio
import logging
from typing import Any

from pyee.asyncio import AsyncIOEventEmitter

logger = logging.getLogger(__name__)


class UploadEmitter(AsyncIOEventEmitter):
    """Event emitter owned by a single upload.

    Handlers may be plain functions or coroutine functions; coroutine handlers
    are scheduled on the upload's event loop.
    """

    # Controller -> consumer, once per response of any wire operation
    RESPONSE = "response"
    # (UploadResponse)

    # Controller -> consumer, after each forwarded slice of the request body
    PROGRESS = "progress"
    # (bytes_written:int, offset:int)

    # Controller -> consumer, when a retryable status is absorbed
    RETRY = "retry"
    # (status:int, retry_count:int, delay_seconds:float)

    # Controller -> consumer, when content mismatch forces a new session
    RESTART = "restart"
    # (old_uri:str | None)

    # Controller -> consumer, terminal success
    COMPLETE = "complete"
    # (UploadResult)

    # Controller -> consumer, terminal failure
    ERROR = "error"
    # (UploadError)

    def __init__(self, *, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Initialize the event emitter.

        Args:
            loop: The event loop to use for async event handlers.
        """
        super().__init__(loop=loop)

    def emit(self, event: str, *args: Any, **kwargs: Any) -> bool:
        """Emit an event with logging.

        An ERROR event without listeners is dropped rather than raised; the
        terminal error always reaches the consumer through ``Upload.end``.

        Args:
            event: The event name to emit.
            *args: Positional arguments to pass to handlers.
            **kwargs: Keyword arguments to pass to handlers.

        Returns:
            True if the event had listeners, False otherwise.
        """
        formatted_args = []
        for arg in args:
            if isinstance(arg, bytes) and len(arg) > 20:
                formatted_args.append(f"<{len(arg)} bytes>")
            else:
                r = repr(arg)
                if len(r) > 100:
                    formatted_args.append(f"{r[:100]}...")
                else:
                    formatted_args.append(r)
        logger.debug("EVENT %s: %s", event, ", ".join(formatted_args))
        if event == self.ERROR and not self.listeners(event):
            return False
        return super().emit(event, *args, **kwargs)
