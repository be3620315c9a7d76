"""Thread-safe cancellation token for the search fan-out."""

import threading


class CancelToken:
    """Cancellation flag shared by the workers of one job."""

    __slots__ = ("_event",)

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()
