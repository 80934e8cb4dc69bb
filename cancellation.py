import threading

from errors import ImportCancelled


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and an import."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise ImportCancelled("Import cancelled by caller")
