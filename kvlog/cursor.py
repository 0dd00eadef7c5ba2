import logging
from typing import Callable, Iterable, Iterator, Optional, TypeVar

from kvlog.deadline import Deadline, check_deadline

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Cursor(Iterator[T]):
    """
    Closable forward-only iterator over a backend result set.

    Wraps any iterable of rows, optionally mapping each row through
    `transform`. The deadline is checked before every row is fetched.
    Once exhausted, failed or closed, the underlying iterator is released
    and further `next()` calls raise StopIteration.
    """

    def __init__(
        self,
        rows: Iterable,
        transform: Optional[Callable[..., T]] = None,
        deadline: Optional[Deadline] = None,
    ):
        self._rows = iter(rows)
        self._transform = transform
        self._deadline = deadline
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __iter__(self) -> "Cursor[T]":
        return self

    def __next__(self) -> T:
        if self._closed:
            raise StopIteration
        try:
            check_deadline(self._deadline)
            row = next(self._rows)
            return self._transform(row) if self._transform else row
        except BaseException:
            self.close()
            raise

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Generator-backed result sets (QuerySet.iterator) release their
        # database cursor on close().
        close = getattr(self._rows, "close", None)
        if close is not None:
            close()
        logger.debug("Cursor closed")

    def __enter__(self) -> "Cursor[T]":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
