"""
Key-value storage bridge: correlation, timeouts, persistence
"""

import json
import threading

import pytest

from core.errors import RequestTimeoutError, StorageClosedError
from core.storage import (
    IMessageChannel, LoopbackChannel, StorageBridge, StorageHost,
    REQUEST_TYPE, RESPONSE_TYPE
)
from core.terminal import CallbackList


class ManualChannel(IMessageChannel):
    """Collects posted requests; the test answers them in any order"""

    def __init__(self):
        self.posted = []
        self.arrived = threading.Event()
        self._listeners = CallbackList()

    def post(self, message):
        self.posted.append(message)
        self.arrived.set()

    def subscribe(self, callback):
        return self._listeners.add(callback)

    def respond(self, request, value):
        self._listeners.emit({"type": RESPONSE_TYPE, "request_id": request["request_id"], "value": value})


class TestStorageBridge:

    def test_get_and_set_round_trip(self, storage):
        assert storage.get("terminal_user") is None
        assert storage.get("terminal_user", "") == ""
        storage.set("terminal_user", "bob")
        assert storage.get("terminal_user") == "bob"
        storage.set("macro_triggers", {"login:": "Login"})
        assert storage.get("macro_triggers") == {"login:": "Login"}
        assert storage.pending_count == 0

    def test_host_persists_to_file(self, tmp_path):
        path = tmp_path / "data" / "storage.json"
        page_end, host_end = LoopbackChannel.pair()
        StorageHost(host_end, str(path))
        StorageBridge(page_end).set("k", [1, 2])

        assert json.loads(path.read_text()) == {"k": [1, 2]}

        # a new host reads it back
        page_end, host_end = LoopbackChannel.pair()
        StorageHost(host_end, str(path))
        assert StorageBridge(page_end).get("k") == [1, 2]

    def test_out_of_order_responses_are_not_crossed(self):
        channel = ManualChannel()
        bridge = StorageBridge(channel, timeout=2.0)
        results = {}

        def fetch(key):
            results[key] = bridge.get(key)

        t1 = threading.Thread(target=fetch, args=("a",))
        t1.start()
        assert channel.arrived.wait(2.0)
        channel.arrived.clear()
        t2 = threading.Thread(target=fetch, args=("b",))
        t2.start()
        assert channel.arrived.wait(2.0)

        req_a, req_b = channel.posted
        assert req_a["type"] == REQUEST_TYPE and req_a["key"] == "a"
        assert req_a["request_id"] != req_b["request_id"]

        channel.respond(req_b, "value-b")
        channel.respond(req_a, "value-a")
        t1.join(2.0)
        t2.join(2.0)

        assert results == {"a": "value-a", "b": "value-b"}

    def test_duplicate_response_is_ignored(self):
        channel = ManualChannel()
        bridge = StorageBridge(channel, timeout=2.0)
        result = []
        thread = threading.Thread(target=lambda: result.append(bridge.get("k")))
        thread.start()
        assert channel.arrived.wait(2.0)

        request = channel.posted[0]
        channel.respond(request, "first")
        channel.respond(request, "second")
        thread.join(2.0)

        assert result == ["first"]

    def test_timeout_cleans_up_pending(self):
        channel = ManualChannel()
        bridge = StorageBridge(channel, timeout=0.05)

        with pytest.raises(RequestTimeoutError) as exc_info:
            bridge.get("slow")

        assert exc_info.value.kind == "timeout"
        assert bridge.pending_count == 0
        # late response is dropped silently
        channel.respond(channel.posted[0], "late")
        assert bridge.pending_count == 0

    def test_foreign_messages_ignored(self, storage):
        storage._on_message({"type": "something_else"})
        storage._on_message("not a dict")
        storage._on_message({"type": RESPONSE_TYPE, "request_id": "unknown"})
        assert storage.pending_count == 0

    def test_close_fails_pending_requests(self):
        channel = ManualChannel()
        bridge = StorageBridge(channel, timeout=5.0)
        errors = []

        def fetch():
            try:
                bridge.get("k")
            except StorageClosedError as e:
                errors.append(e)

        thread = threading.Thread(target=fetch)
        thread.start()
        assert channel.arrived.wait(2.0)

        bridge.close()
        thread.join(2.0)

        assert len(errors) == 1
        assert errors[0].kind == "transport"
        assert bridge.pending_count == 0

    def test_requests_after_close_are_refused(self):
        channel = ManualChannel()
        bridge = StorageBridge(channel)
        bridge.close()
        with pytest.raises(StorageClosedError):
            bridge.set("k", "v")
        assert channel.posted == []
