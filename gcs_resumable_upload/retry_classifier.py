"""Classification of upload service responses into retry actions.

Every response the session controller receives goes through :func:`classify`.
Retries of both kinds draw on one cumulative budget per session: a 404 and a
5xx each consume a retry, and nothing short of a new ``UploadSession`` gives
the budget back.
"""

import random
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from gcs_resumable_upload.const import NOT_FOUND_STATUS_CODE, RETRY_LIMIT
from gcs_resumable_upload.models import Operation

RETRY_LIMIT_MESSAGE = "Retry limit exceeded"
UPLOAD_FAILED_MESSAGE = "Upload failed"


class RetryAction(str, Enum):
    """What the controller should do with a response."""

    CONTINUE = "continue"
    RETRY_IMMEDIATE = "retry_immediate"
    RETRY_BACKOFF = "retry_backoff"
    FATAL = "fatal"


@dataclass(frozen=True)
class RetryDecision:
    """Result of classifying a single response."""

    action: RetryAction
    message: str | None = None

    @property
    def is_retry(self) -> bool:
        """Whether the decision consumes a retry from the session budget."""
        return self.action in (RetryAction.RETRY_IMMEDIATE, RetryAction.RETRY_BACKOFF)


def _within_budget(retry_count: int, retry_limit: int) -> bool:
    # the retry_limit-th retryable failure is fatal
    return retry_count + 1 < retry_limit


def classify(
    status: int,
    retry_count: int,
    operation: Operation,
    retry_limit: int = RETRY_LIMIT,
) -> RetryDecision:
    """Map a response status to the action the controller takes.

    Args:
        status: HTTP status code of the response.
        retry_count: Retries already consumed by the session.
        operation: Which wire operation the response answers.
        retry_limit: Size of the shared retry budget.

    Returns:
        The retry decision. FATAL decisions carry the terminal error message.
    """
    if status == NOT_FOUND_STATUS_CODE:
        if _within_budget(retry_count, retry_limit):
            return RetryDecision(RetryAction.RETRY_IMMEDIATE)
        return RetryDecision(RetryAction.FATAL, RETRY_LIMIT_MESSAGE)

    if 500 <= status <= 599:
        if _within_budget(retry_count, retry_limit):
            return RetryDecision(RetryAction.RETRY_BACKOFF)
        return RetryDecision(RetryAction.FATAL, RETRY_LIMIT_MESSAGE)

    if 200 <= status <= 299:
        return RetryDecision(RetryAction.CONTINUE)

    # initiation and offset query callers inspect the payload themselves
    if operation == Operation.CHUNK_UPLOAD:
        return RetryDecision(RetryAction.FATAL, UPLOAD_FAILED_MESSAGE)
    return RetryDecision(RetryAction.CONTINUE)


def backoff_delay(
    retry_count: int, rand: Callable[[], float] = random.random
) -> float:
    """Return the backoff delay in seconds before retrying.

    The delay is ``2**retry_count`` seconds plus up to one second of jitter,
    so the n-th delay falls in ``[2**n, 2**n + 1)``.

    Args:
        retry_count: Retries consumed before the failure being retried.
        rand: Source of uniform values in ``[0, 1)``.
    """
    return 2**retry_count + rand()
