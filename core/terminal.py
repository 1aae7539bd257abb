"""
Terminal capability used by the macro engine
Only write/input/screen observation is required; rendering lives elsewhere
"""

from __future__ import annotations
from typing import Callable, List, Optional, BinaryIO
from abc import ABC, abstractmethod
import sys
import threading


class Subscription:
    """Handle returned by a subscribe call; unsubscribe() is idempotent"""

    def __init__(self, cancel: Callable[[], None]):
        self._cancel = cancel
        self._active = True
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self):
        with self._lock:
            if not self._active:
                return
            self._active = False
        self._cancel()


class CallbackList:
    """Thread-safe list of listeners that hands out Subscription handles"""

    def __init__(self):
        self._callbacks: List[Callable] = []
        self._lock = threading.Lock()

    def add(self, callback: Callable) -> Subscription:
        with self._lock:
            self._callbacks.append(callback)
        return Subscription(lambda: self._remove(callback))

    def _remove(self, callback: Callable):
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def emit(self, *args):
        with self._lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            callback(*args)

    def __len__(self) -> int:
        with self._lock:
            return len(self._callbacks)


class ITerminal(ABC):
    """Abstract terminal (swappable implementation)"""

    @abstractmethod
    def write(self, data: bytes):
        """Send bytes to the terminal session"""
        pass

    @abstractmethod
    def on_input(self, callback: Callable[[bytes], None]) -> Subscription:
        """Subscribe to raw input events typed by the user"""
        pass

    @abstractmethod
    def on_screen_change(self, callback: Callable[[], None]) -> Subscription:
        """Subscribe to screen-change notifications"""
        pass

    @abstractmethod
    def current_line(self) -> str:
        """Text of the line under the cursor"""
        pass


class StreamTerminal(ITerminal):
    """
    Terminal backed by a binary stream (stdout by default).

    Tracks the last line written so triggers can be tried from the command
    line; every write is a screen change.
    """

    def __init__(self, stream: Optional[BinaryIO] = None, encoding: str = "utf-8"):
        self._stream = stream if stream is not None else sys.stdout.buffer
        self._encoding = encoding
        self._line = ""
        self._lock = threading.Lock()
        self._input_listeners = CallbackList()
        self._screen_listeners = CallbackList()

    def write(self, data: bytes):
        with self._lock:
            self._stream.write(data)
            self._stream.flush()
            self._track_line(data.decode(self._encoding, errors="replace"))
        self._screen_listeners.emit()

    def _track_line(self, text: str):
        for ch in text:
            if ch in "\r\n":
                self._line = ""
            elif ch == "\x7f" or ch == "\b":
                self._line = self._line[:-1]
            elif ch >= " ":
                self._line += ch

    def feed_input(self, data: bytes):
        """Deliver bytes as if the user typed them"""
        self._input_listeners.emit(data)

    def on_input(self, callback: Callable[[bytes], None]) -> Subscription:
        return self._input_listeners.add(callback)

    def on_screen_change(self, callback: Callable[[], None]) -> Subscription:
        return self._screen_listeners.add(callback)

    def current_line(self) -> str:
        with self._lock:
            return self._line
