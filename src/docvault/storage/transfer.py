"""
Bounded-concurrency transfer primitives.

Provides:
- RetryingOperation: retries a single remote call on transient failures
- BoundedTransferExecutor: runs upload/delete tasks with a concurrency ceiling
- Upload and delete helpers built on the two primitives
"""

import io
import logging
import mimetypes
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Callable, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from docvault.core.exceptions import ObjectNotFoundError, ObjectStoreError
from docvault.storage.base import ObjectStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Throttling and backend unavailability.
TRANSIENT_STATUS_CODES = frozenset({429, 502, 503})

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_SLEEP_SECONDS = 10.0
DEFAULT_DELETE_CONCURRENCY = 8


def is_transient_error(error: BaseException) -> bool:
    """Return True if ``error`` is a store failure that is worth retrying."""
    return isinstance(error, ObjectStoreError) and error.status in TRANSIENT_STATUS_CODES


def content_type(object_name: str) -> str:
    """Guess the content type of an object from its name."""
    guessed, encoding = mimetypes.guess_type(object_name)
    if encoding == "gzip":
        return "application/gzip"
    return guessed or "application/octet-stream"


class RetryingOperation:
    """
    Retry policy for a single remote call.

    Only errors classified as transient are retried, with a fixed sleep
    between attempts. Non-transient errors and the last transient error
    propagate unchanged.
    """

    def __init__(
        self,
        *,
        is_transient: Callable[[BaseException], bool] = is_transient_error,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep_seconds: float = DEFAULT_RETRY_SLEEP_SECONDS,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.is_transient = is_transient
        self.max_attempts = max_attempts
        self.sleep_seconds = sleep_seconds

    def run(self, fn: Callable[[], T], description: str | None = None) -> T:
        """
        Call ``fn`` until it succeeds or fails permanently.

        Args:
            fn: Zero-argument callable performing the remote call
            description: Label used in retry log messages

        Returns:
            The value returned by ``fn``
        """
        label = description or getattr(fn, "__name__", "operation")

        def log_retry(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome else None
            logger.info(
                f"{label}: attempt {state.attempt_number}/{self.max_attempts} "
                f"failed ({error}), retrying in {self.sleep_seconds}s"
            )

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.sleep_seconds),
            retry=retry_if_exception(self.is_transient),
            before_sleep=log_retry,
            reraise=True,
        )
        return retrying(fn)


@dataclass
class TransferFailure:
    """A failed transfer task."""

    label: str
    error: BaseException


@dataclass
class TransferResult:
    """Aggregate outcome of a batch of transfer tasks."""

    succeeded: int = 0
    failed: int = 0
    results: list[Any] = field(default_factory=list)
    failures: list[TransferFailure] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        """Whether every task succeeded."""
        return self.failed == 0

    def raise_first_error(self) -> None:
        """Re-raise the first task failure, if any."""
        if self.failures:
            raise self.failures[0].error


class BoundedTransferExecutor:
    """
    Runs transfer tasks with at most ``concurrency`` in flight.

    Tasks are isolated from each other: a failing task does not cancel its
    siblings. ``wait_and_close`` drains every submitted task before
    returning, and so does leaving the ``with`` block, even when the block
    exits with an exception.
    """

    def __init__(self, concurrency: int, name: str = "transfer"):
        """
        Initialize the executor.

        Args:
            concurrency: Maximum number of tasks running at once
            name: Thread name prefix for the worker pool
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._concurrency = concurrency
        self._pool = ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix=name)
        self._tasks: list[tuple[str, Future]] = []
        self._started = time.monotonic()
        self._closed = False

    @property
    def concurrency(self) -> int:
        """Concurrency ceiling."""
        return self._concurrency

    def submit(self, fn: Callable[[], Any], label: str | None = None) -> Future:
        """Schedule ``fn`` to run once a slot is free."""
        if self._closed:
            raise RuntimeError("Executor is closed")
        future = self._pool.submit(fn)
        self._tasks.append((label or f"task-{len(self._tasks) + 1}", future))
        return future

    def wait_and_close(self) -> TransferResult:
        """Wait for all tasks, release the pool and report the outcomes."""
        self._close()
        result = TransferResult()
        for label, future in self._tasks:
            error = future.exception()
            if error is None:
                result.succeeded += 1
                result.results.append(future.result())
            else:
                result.failed += 1
                result.failures.append(TransferFailure(label=label, error=error))
        result.elapsed_seconds = time.monotonic() - self._started
        return result

    def _close(self) -> None:
        if not self._closed:
            self._closed = True
            wait([future for _, future in self._tasks])
            self._pool.shutdown(wait=True)

    def __enter__(self) -> "BoundedTransferExecutor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._close()


def run_bounded(
    tasks: list[tuple[str, Callable[[], Any]]], concurrency: int
) -> TransferResult:
    """Run labelled tasks with a concurrency ceiling and collect every outcome."""
    with BoundedTransferExecutor(concurrency) as executor:
        for label, fn in tasks:
            executor.submit(fn, label=label)
        return executor.wait_and_close()


def upload_with_retry(
    store: ObjectStore,
    object_name: str,
    length: int,
    open_stream: Callable[[], BinaryIO],
    retrying: RetryingOperation | None = None,
) -> None:
    """
    Upload content from ``open_stream`` to ``object_name``.

    The stream factory is called once per attempt so that every retry
    starts reading from the beginning.
    """
    retrying = retrying or RetryingOperation()

    def upload() -> None:
        with open_stream() as stream:
            store.write(
                object_name,
                stream,
                length=length,
                content_type=content_type(object_name),
            )

    retrying.run(upload, description=f"Upload to {object_name}")


def upload_bytes_with_retry(
    store: ObjectStore,
    object_name: str,
    data: bytes,
    retrying: RetryingOperation | None = None,
) -> None:
    """Upload ``data`` to ``object_name``."""
    upload_with_retry(
        store, object_name, len(data), lambda: io.BytesIO(data), retrying=retrying
    )


def delete_object(
    store: ObjectStore,
    object_name: str,
    retrying: RetryingOperation | None = None,
) -> bool:
    """
    Delete a single object.

    Returns:
        True if the object was deleted by this call, False if it did not
        exist at the time of the call
    """
    retrying = retrying or RetryingOperation()

    def delete() -> bool:
        try:
            store.delete(object_name)
            return True
        except ObjectNotFoundError:
            return False

    return retrying.run(delete, description=f"Delete {object_name}")


def delete_folder_recursively(
    store: ObjectStore,
    folder: str,
    concurrency: int | None = None,
    retrying: RetryingOperation | None = None,
) -> int:
    """
    Delete every object below ``folder``, walking all of its subfolders.

    Individual delete failures are logged and left for a later pass.

    Args:
        store: Object store holding the folder
        folder: Folder prefix, must end with ``/``
        concurrency: Number of deletes in flight (default: 8)
        retrying: Retry policy for each delete

    Returns:
        Number of objects deleted
    """
    if not folder.endswith("/"):
        raise ValueError(f'Folder path must end with `/`: "{folder}"')

    with BoundedTransferExecutor(
        concurrency or DEFAULT_DELETE_CONCURRENCY, name="delete"
    ) as executor:
        folders = [folder]
        while folders:
            current = folders.pop()
            for info in store.list(current):
                if info.is_directory:
                    folders.append(info.name)
                else:
                    name = info.name
                    executor.submit(
                        lambda name=name: delete_object(store, name, retrying=retrying),
                        label=name,
                    )
        result = executor.wait_and_close()

    for failure in result.failures:
        logger.warning(
            f"Unable to delete {failure.label}: {failure.error}",
            exc_info=failure.error,
        )
    return sum(1 for deleted in result.results if deleted)
