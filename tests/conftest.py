"""
Shared fixtures: in-memory contents backend, fake terminal, manual timers
"""

import base64
import hashlib
import itertools
from urllib.parse import unquote

import pytest

from core.storage import LoopbackChannel, StorageBridge, StorageHost
from core.terminal import CallbackList, ITerminal
from core.transport import TransportResponse
from core.macro import RemoteMacroStore


REPO = "owner/macros-repo"
PREFIX = f"repos/{REPO}/contents"


class FakeContentsBackend:
    """Contents API with compare-and-swap on per-file sha"""

    def __init__(self, token="secret-token", login="alice"):
        self.token = token
        self.login = login
        self.files = {}  # path -> (text, sha)
        self.calls = []
        self._counter = itertools.count(1)

    @property
    def has_token(self):
        return bool(self.token)

    def _sha(self, text):
        return hashlib.sha1(f"{next(self._counter)}:{text}".encode()).hexdigest()

    def put_file(self, path, text):
        sha = self._sha(text)
        self.files[path] = (text, sha)
        return sha

    def request(self, method, path, body=None):
        self.calls.append((method, path, body))

        if path == "user":
            if self.token != "secret-token":
                return TransportResponse(401, {"message": "Bad credentials"})
            return TransportResponse(200, {"login": self.login})

        assert path.startswith(PREFIX), path
        path = unquote(path[len(PREFIX):].split("?")[0]).strip("/")

        if method == "GET":
            return self._get(path)
        if method == "PUT":
            return self._put(path, body)
        if method == "DELETE":
            return self._delete(path, body)
        return TransportResponse(405, {"message": "Method not allowed"})

    def _get(self, path):
        if path in self.files:
            text, sha = self.files[path]
            encoded = base64.b64encode(text.encode()).decode()
            return TransportResponse(200, {
                "type": "file",
                "name": path.rsplit("/", 1)[-1],
                "path": path,
                "sha": sha,
                "encoding": "base64",
                # wrapped like real contents responses
                "content": "\n".join(encoded[i:i + 60] for i in range(0, len(encoded), 60)),
            })
        children = [p for p in self.files if p.startswith(path + "/")]
        if not children:
            return TransportResponse(404, {"message": "Not Found"})
        listing = []
        seen_dirs = set()
        for p in sorted(children):
            rest = p[len(path) + 1:]
            if "/" in rest:
                d = rest.split("/", 1)[0]
                if d not in seen_dirs:
                    seen_dirs.add(d)
                    listing.append({"name": d, "type": "dir", "path": f"{path}/{d}", "sha": "d" * 40})
                continue
            listing.append({
                "name": rest, "type": "file", "path": p, "sha": self.files[p][1],
                "download_url": f"https://example.invalid/{p}",
            })
        return TransportResponse(200, listing)

    def _put(self, path, body):
        text = base64.b64decode(body["content"]).decode()
        sha = body.get("sha")
        if path in self.files:
            if sha is None:
                return TransportResponse(422, {"message": "\"sha\" wasn't supplied."})
            if sha != self.files[path][1]:
                return TransportResponse(409, {"message": f"{path} does not match {sha}"})
            status = 200
        else:
            if sha is not None:
                return TransportResponse(409, {"message": "file does not exist"})
            status = 201
        new_sha = self.put_file(path, text)
        return TransportResponse(status, {"content": {"name": path.rsplit("/", 1)[-1], "path": path, "sha": new_sha}})

    def _delete(self, path, body):
        if path not in self.files:
            return TransportResponse(404, {"message": "Not Found"})
        if body.get("sha") != self.files[path][1]:
            return TransportResponse(409, {"message": f"{path} does not match {body.get('sha')}"})
        del self.files[path]
        return TransportResponse(200, {"content": None})


class FakeTerminal(ITerminal):
    """Records written bytes; the visible line is set by the test"""

    def __init__(self):
        self.written = []
        self.line = ""
        self.fail_on_write = None  # index of the write that raises
        self._inputs = CallbackList()
        self._screen = CallbackList()

    def write(self, data):
        if self.fail_on_write is not None and len(self.written) == self.fail_on_write:
            raise IOError("terminal disconnected")
        self.written.append(data)

    def type(self, data):
        self._inputs.emit(data)

    def show(self, line):
        self.line = line
        self._screen.emit()

    def on_input(self, callback):
        return self._inputs.add(callback)

    def on_screen_change(self, callback):
        return self._screen.add(callback)

    def current_line(self):
        return self.line

    @property
    def output(self):
        return b"".join(self.written)

    @property
    def screen_listeners(self):
        return len(self._screen)


class ManualTimer:
    """Cooldown timer fired explicitly by the test"""

    instances = []

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.started = False
        self.cancelled = False
        ManualTimer.instances.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function()


def sync_dispatch(job):
    job()


@pytest.fixture
def backend():
    return FakeContentsBackend()


@pytest.fixture
def store(backend):
    return RemoteMacroStore(backend, repo=REPO, macros_root="macros")


@pytest.fixture
def terminal():
    return FakeTerminal()


@pytest.fixture
def manual_timers():
    ManualTimer.instances = []
    yield ManualTimer
    ManualTimer.instances = []


@pytest.fixture
def storage(tmp_path):
    page_end, host_end = LoopbackChannel.pair()
    host = StorageHost(host_end, str(tmp_path / "storage.json"))
    bridge = StorageBridge(page_end, timeout=1.0)
    yield bridge
    bridge.close()
    host.close()
