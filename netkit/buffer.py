"""Double-buffered element loading on a background thread."""
from __future__ import annotations

import itertools
import threading
from typing import Any, Iterator, Optional, Protocol


class ElementFactory(Protocol):
    """What a :class:`ThreadBuffer` needs from the source of its elements."""

    def set_param(self, name: str, val: str) -> None: ...

    def init(self) -> bool: ...

    def load_next(self) -> Any:
        """Return the next element, or None when the data is exhausted."""

    def before_first(self) -> None: ...

    def destroy(self) -> None: ...


class ThreadBuffer:
    """Producer/consumer double buffer.

    A loader thread fills one buffer from the factory while the consumer
    reads the other one; the two swap when the consumer runs off the end.
    """

    def __init__(self, factory: ElementFactory, buffer_size: int = 30) -> None:
        self.factory = factory
        self.buffer_size = buffer_size
        self._init_end = False
        self._thread: Optional[threading.Thread] = None
        self._buffers: list[list[Any]] = [[], []]
        self._ends = [buffer_size, buffer_size]
        # the loader fills slot ``_current``, the consumer reads the other one
        self._current = 1
        self._index = 0
        self._destroy_signal = False
        self._error: Optional[BaseException] = None
        self._loading_need = threading.Semaphore(0)
        self._loading_end = threading.Semaphore(0)

    def set_param(self, name: str, val: str) -> None:
        """Set a parameter; it is passed on to the factory as well."""
        if name == "buffer_size":
            self.buffer_size = int(val)
        self.factory.set_param(name, val)

    def init(self) -> bool:
        """Initialise the factory and start loading; False if the factory refuses."""
        if not self.factory.init():
            return False
        self._init_end = True
        self._start_loader()
        return True

    def before_first(self) -> None:
        """Rewind to the first element."""
        self._wait_loaded()
        self._current = 1
        self.factory.before_first()
        self._ends = [self.buffer_size, self.buffer_size]
        self._loading_need.release()
        self._wait_loaded()
        self._current = 0
        self._loading_need.release()
        self._index = 0

    def next(self) -> Any:
        """Return the next element, or None at the end of the data."""
        if self._index == self.buffer_size:
            self._switch_buffer()
            self._index = 0
        slot = 1 - self._current
        if self._index >= self._ends[slot]:
            return None
        item = self._buffers[slot][self._index]
        self._index += 1
        return item

    def destroy(self) -> None:
        """Stop the loader thread, drop the buffers and destroy the factory."""
        self._destroy_signal = True
        self._loading_need.release()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        self._buffers = [[], []]
        self.factory.destroy()
        self._init_end = False

    def __iter__(self) -> Iterator[Any]:
        return iter(self.next, None)

    def _run_loader(self) -> None:
        while not self._destroy_signal:
            self._loading_need.acquire()
            if self._destroy_signal:
                break
            slot = self._current
            try:
                items = list(
                    itertools.islice(iter(self.factory.load_next, None), self.buffer_size)
                )
            except BaseException as exc:  # handed to the consumer thread
                self._error = exc
                items = []
            self._buffers[slot] = items
            if len(items) < self.buffer_size:
                self._ends[slot] = len(items)
            self._loading_end.release()

    def _wait_loaded(self) -> None:
        self._loading_end.acquire()
        if self._error is not None:
            error, self._error = self._error, None
            raise error

    def _start_loader(self) -> None:
        self._destroy_signal = False
        self._current = 1
        self._loading_need = threading.Semaphore(1)
        self._loading_end = threading.Semaphore(0)
        self._ends = [self.buffer_size, self.buffer_size]
        self._thread = threading.Thread(target=self._run_loader, daemon=True)
        self._thread.start()
        self._wait_loaded()
        self._current = 0
        self._loading_need.release()
        self._index = 0

    def _switch_buffer(self) -> None:
        self._wait_loaded()
        self._current = 1 - self._current
        self._loading_need.release()