"""
Key-Value Store bridge

Requests travel over a generic message channel to a storage host. Every
request gets its own id and future; the first response carrying that id
resolves it, and a timeout removes it so nothing waits forever.
"""

from __future__ import annotations
from typing import Any, Callable, Dict, Optional
from abc import ABC, abstractmethod
from concurrent.futures import Future, TimeoutError as FutureTimeout
import json
import os
import threading
import uuid

from core.errors import RequestTimeoutError, StorageClosedError, TransportError
from core.terminal import CallbackList, Subscription
from utils.logger import log, log_error

REQUEST_TYPE = "storage_request"
RESPONSE_TYPE = "storage_response"

# Well-known keys
KEY_USER = "terminal_user"
KEY_PASS = "terminal_pass"
KEY_TRIGGERS = "macro_triggers"
KEY_TOKEN = "github_pat"


# ==================== CHANNEL ====================

class IMessageChannel(ABC):
    """Bidirectional message channel endpoint"""

    @abstractmethod
    def post(self, message: Dict[str, Any]):
        """Send a message to the other endpoint"""
        pass

    @abstractmethod
    def subscribe(self, callback: Callable[[Dict[str, Any]], None]) -> Subscription:
        """Receive messages sent by the other endpoint"""
        pass


class LoopbackChannel(IMessageChannel):
    """In-process channel endpoint; build connected endpoints with pair()"""

    def __init__(self):
        self._listeners = CallbackList()
        self._peer: Optional[LoopbackChannel] = None

    @staticmethod
    def pair():
        a, b = LoopbackChannel(), LoopbackChannel()
        a._peer, b._peer = b, a
        return a, b

    def post(self, message: Dict[str, Any]):
        if self._peer is None:
            raise RuntimeError("Channel endpoint is not connected")
        self._peer._listeners.emit(message)

    def subscribe(self, callback: Callable[[Dict[str, Any]], None]) -> Subscription:
        return self._listeners.add(callback)


# ==================== BRIDGE (page side) ====================

class StorageBridge:
    """Async get/set against the storage host with exact request correlation"""

    def __init__(self, channel: IMessageChannel, timeout: float = 5.0):
        self._channel = channel
        self._timeout = timeout
        self._pending: Dict[str, Future] = {}
        self._lock = threading.Lock()
        self._closed = False
        self._subscription = channel.subscribe(self._on_message)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def get(self, key: str, default: Any = None, timeout: Optional[float] = None) -> Any:
        """Value stored under key, or default when it is unset"""
        value = self._request("get", key, timeout=timeout)
        return default if value is None else value

    def set(self, key: str, value: Any, timeout: Optional[float] = None):
        """Store value under key (last write wins)"""
        self._request("set", key, value=value, timeout=timeout)

    def _request(self, action: str, key: str, value: Any = None, timeout: Optional[float] = None) -> Any:
        request_id = uuid.uuid4().hex
        future: Future = Future()
        with self._lock:
            if self._closed:
                raise StorageClosedError(f"Storage {action} for '{key}' refused: bridge is closed")
            self._pending[request_id] = future

        message = {"type": REQUEST_TYPE, "request_id": request_id, "action": action, "key": key}
        if action == "set":
            message["value"] = value

        try:
            self._channel.post(message)
            result = future.result(timeout=self._timeout if timeout is None else timeout)
        except FutureTimeout:
            log_error(f"[BRIDGE] Timeout on {action} '{key}'")
            raise RequestTimeoutError(
                f"Storage {action} for '{key}' timed out; the storage host may be unavailable"
            ) from None
        finally:
            with self._lock:
                self._pending.pop(request_id, None)

        if isinstance(result, dict) and result.get("error"):
            raise TransportError(f"Storage {action} for '{key}' failed: {result['error']}")
        return result.get("value") if isinstance(result, dict) else None

    def _on_message(self, message: Dict[str, Any]):
        if not isinstance(message, dict) or message.get("type") != RESPONSE_TYPE:
            return
        with self._lock:
            future = self._pending.pop(message.get("request_id"), None)
        if future is None:
            return  # late or foreign response
        if not future.done():
            future.set_result(message)

    def close(self):
        """Fail every pending request and stop listening"""
        self._subscription.unsubscribe()
        with self._lock:
            self._closed = True
            pending = list(self._pending.values())
            self._pending.clear()
        if pending:
            log(f"[BRIDGE] Closing with {len(pending)} pending request(s)")
        for future in pending:
            if not future.done():
                future.set_exception(StorageClosedError("Storage bridge closed before the host answered"))


# ==================== HOST (extension side) ====================

class StorageHost:
    """Serves storage requests from a JSON file"""

    def __init__(self, channel: IMessageChannel, path: str):
        self._channel = channel
        self._path = path
        self._lock = threading.Lock()
        self._data = self._load()
        self._subscription = channel.subscribe(self._on_message)

    def _load(self) -> Dict[str, Any]:
        if not os.path.exists(self._path):
            return {}
        try:
            with open(self._path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            log_error(f"[BRIDGE] Could not read {self._path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self):
        directory = os.path.dirname(self._path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self._path, 'w', encoding='utf-8') as f:
            json.dump(self._data, f, indent=2)

    def _on_message(self, message: Dict[str, Any]):
        if not isinstance(message, dict) or message.get("type") != REQUEST_TYPE:
            return

        response = {"type": RESPONSE_TYPE, "request_id": message.get("request_id")}
        action = message.get("action")
        key = message.get("key")

        try:
            with self._lock:
                if action == "get":
                    response["value"] = self._data.get(key)
                elif action == "set":
                    self._data[key] = message.get("value")
                    self._save()
                    response["value"] = message.get("value")
                else:
                    response["error"] = f"unknown action {action!r}"
        except OSError as e:
            log_error(f"[BRIDGE] Could not write {self._path}: {e}")
            response["error"] = str(e)

        if action == "set" and "error" not in response:
            log(f"[BRIDGE] Stored '{key}'")
        self._channel.post(response)

    def close(self):
        self._subscription.unsubscribe()
