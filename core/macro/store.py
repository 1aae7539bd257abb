"""
Remote Macro Store - macros kept as text files in a versioned contents backend

Writes use optimistic concurrency: every update/delete presents the
revision the caller last saw, and the backend rejects stale revisions.
"""

from __future__ import annotations
from typing import Callable, Dict, Mapping, Optional, Set, Union
from dataclasses import dataclass
from types import MappingProxyType
from urllib.parse import quote
import base64
import binascii
import threading

from core.errors import (
    ConflictError, ForbiddenError, MalformedResponseError, NotFoundError,
    TransportError, UnauthenticatedError, InvalidMacroNameError
)
from core.transport import TransportResponse
from utils.logger import log, log_warning

from .script import Macro, MacroScript

MACRO_SUFFIX = ".txt"


@dataclass(frozen=True)
class IndexEntry:
    """Cached view of one remote macro; content is loaded lazily"""
    revision: str
    content: Optional[MacroScript] = None


def validate_name(name: str) -> str:
    """Return the name if it can be used as a file name in the macros folder"""
    if not isinstance(name, str) or not name.strip():
        raise InvalidMacroNameError("Macro name must not be empty")
    if name != name.strip():
        raise InvalidMacroNameError(f"Macro name {name!r} has leading or trailing whitespace")
    if name in (".", "..") or any(ch in name for ch in "/\\") or any(ord(ch) < 32 for ch in name):
        raise InvalidMacroNameError(f"Macro name {name!r} is not path-safe")
    return name


class RemoteMacroStore:
    """
    Named macro collection synchronized with a contents API.

    Args:
        transport: Object with request(method, path, body) -> TransportResponse
                   and a has_token property
        repo: "owner/name" of the repository holding the macros ("" for a bare contents root)
        macros_root: Folder inside the repository
        branch: Optional branch for reads and writes
        can_write: Predicate on the authenticated identity gating save/delete
    """

    def __init__(self, transport, repo: str = "", macros_root: str = "macros",
                 branch: Optional[str] = None,
                 can_write: Optional[Callable[[str], bool]] = None):
        self._transport = transport
        self._repo = repo.strip("/")
        self._root = macros_root.strip("/")
        self._branch = branch
        self._can_write = can_write

        self._identity: Optional[str] = None
        self._index: Mapping[str, IndexEntry] = MappingProxyType({})
        self._lock = threading.Lock()

    # ==================== PROPERTIES ====================

    @property
    def identity(self) -> Optional[str]:
        return self._identity

    @property
    def index(self) -> Mapping[str, IndexEntry]:
        """Read-only snapshot of the cached index"""
        return self._index

    def names(self):
        return sorted(self._index)

    def revision_of(self, name: str) -> Optional[str]:
        entry = self._index.get(name)
        return entry.revision if entry else None

    # ==================== PATHS ====================

    def _contents_path(self, path: str, with_ref: bool = True) -> str:
        prefix = f"repos/{self._repo}/contents" if self._repo else "contents"
        target = f"{prefix}/{quote(path)}" if path else prefix
        if self._branch and with_ref:
            target += f"?ref={quote(self._branch)}"
        return target

    def _macro_path(self, name: str) -> str:
        name = validate_name(name)
        return f"{self._root}/{name}{MACRO_SUFFIX}" if self._root else f"{name}{MACRO_SUFFIX}"

    # ==================== AUTH ====================

    def authenticate(self) -> str:
        """Resolve the identity behind the transport token"""
        if not self._transport.has_token:
            raise UnauthenticatedError("No access token configured; macro writes are disabled")

        resp = self._transport.request("GET", "user")
        if resp.status == 401:
            self._identity = None
            raise UnauthenticatedError("Access token was rejected", status=401, body=resp.data)
        self._raise_for_status(resp, "Authentication")

        if not isinstance(resp.data, dict) or not resp.data.get("login"):
            raise MalformedResponseError("User response has no login field", status=resp.status, body=resp.data)

        self._identity = str(resp.data["login"])
        log(f"[STORE] Authenticated as \"{self._identity}\"")
        return self._identity

    def _check_write(self, action: str):
        if not self._transport.has_token:
            raise UnauthenticatedError(f"Cannot {action}: no access token configured")
        if self._can_write is None:
            return
        identity = self._identity or self.authenticate()
        if not self._can_write(identity):
            raise ForbiddenError(f"\"{identity}\" is not allowed to {action}")

    # ==================== READS ====================

    def list(self) -> Set[str]:
        """Fetch the listing and atomically replace the cached index"""
        resp = self._transport.request("GET", self._contents_path(self._root))

        if resp.status == 404:
            log(f"[STORE] Macro folder '{self._root}' not found, treating as empty")
            self._replace_index({})
            return set()
        self._raise_for_status(resp, "Listing macros")

        if not isinstance(resp.data, list):
            raise MalformedResponseError(
                f"Expected a directory listing for '{self._root}'", status=resp.status, body=resp.data
            )

        previous = self._index
        entries: Dict[str, IndexEntry] = {}
        for item in resp.data:
            if not isinstance(item, dict) or "name" not in item or "sha" not in item:
                raise MalformedResponseError("Directory entry without name/sha", status=resp.status, body=item)
            if item.get("type", "file") != "file" or not item["name"].endswith(MACRO_SUFFIX):
                continue
            name = item["name"][:-len(MACRO_SUFFIX)]
            if not name:
                continue
            sha = str(item["sha"])
            old = previous.get(name)
            # Keep already loaded content while the revision is unchanged
            content = old.content if old is not None and old.revision == sha else None
            entries[name] = IndexEntry(revision=sha, content=content)

        self._replace_index(entries)
        log(f"[STORE] Listed {len(entries)} macro(s)")
        return set(entries)

    def refresh(self) -> Set[str]:
        return self.list()

    def fetch(self, name: str) -> Macro:
        """Load one macro with its current revision"""
        resp = self._transport.request("GET", self._contents_path(self._macro_path(name)))

        if resp.status == 404:
            self._drop_entry(name)
            raise NotFoundError(f"Macro \"{name}\" not found", status=404)
        self._raise_for_status(resp, f"Fetching macro \"{name}\"")

        data = resp.data
        if not isinstance(data, dict) or data.get("type", "file") != "file" or "sha" not in data:
            raise MalformedResponseError(f"Unexpected metadata for macro \"{name}\"", status=resp.status, body=data)

        text = self._decode_content(name, data)
        macro = Macro(name=name, content=MacroScript.parse(text), revision=str(data["sha"]))
        self._put_entry(name, IndexEntry(macro.revision, macro.content))
        return macro

    def resolve(self, name: str) -> MacroScript:
        """Script for name from the cache, fetching it on a miss"""
        entry = self._index.get(name)
        if entry is not None and entry.content is not None:
            return entry.content
        return self.fetch(name).content

    @staticmethod
    def _decode_content(name: str, data: dict) -> str:
        encoding = data.get("encoding", "base64")
        content = data.get("content")
        if content is None:
            raise MalformedResponseError(f"Macro \"{name}\" response has no content")
        if encoding != "base64":
            raise MalformedResponseError(f"Macro \"{name}\" uses unsupported encoding {encoding!r}")
        try:
            return base64.b64decode(content).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise MalformedResponseError(f"Macro \"{name}\" content is not valid base64 text: {e}") from e

    # ==================== WRITES ====================

    def save(self, name: str, content: Union[MacroScript, str],
             expected_revision: Optional[str] = None) -> str:
        """
        Create or update a macro.

        expected_revision must be None for a new macro and the last seen
        revision for an existing one; the backend rejects anything else.

        Returns:
            The new revision
        """
        path = self._macro_path(name)
        self._check_write("save macros")

        text = content.serialize() if isinstance(content, MacroScript) else content
        body = {
            "message": f"{'Update' if expected_revision else 'Create'} macro {name}",
            "content": base64.b64encode(text.encode("utf-8")).decode("ascii"),
        }
        if expected_revision:
            body["sha"] = expected_revision
        if self._branch:
            body["branch"] = self._branch

        resp = self._transport.request("PUT", self._contents_path(path, with_ref=False), body)
        if resp.status in (409, 422):
            log_warning(f"[STORE] Save of \"{name}\" rejected: revision {expected_revision or '<new>'} is stale")
            raise ConflictError(
                f"Macro \"{name}\" was changed elsewhere; reload it before saving",
                status=resp.status, body=resp.data
            )
        self._raise_for_status(resp, f"Saving macro \"{name}\"")

        data = resp.data
        sha = None
        if isinstance(data, dict) and isinstance(data.get("content"), dict):
            sha = data["content"].get("sha")
        if not sha:
            raise MalformedResponseError(f"Save of macro \"{name}\" returned no revision", status=resp.status, body=data)

        self._put_entry(name, IndexEntry(str(sha), MacroScript.parse(text)))
        log(f"[STORE] Saved \"{name}\" (revision {str(sha)[:7]})")
        return str(sha)

    def delete(self, name: str, expected_revision: str):
        """Remove a macro; requires its current revision"""
        path = self._macro_path(name)
        if not expected_revision:
            raise ConflictError(f"Deleting macro \"{name}\" requires its current revision")
        self._check_write("delete macros")

        body = {"message": f"Delete macro {name}", "sha": expected_revision}
        if self._branch:
            body["branch"] = self._branch

        resp = self._transport.request("DELETE", self._contents_path(path, with_ref=False), body)
        if resp.status == 404:
            self._drop_entry(name)
            raise NotFoundError(f"Macro \"{name}\" not found", status=404)
        if resp.status in (409, 422):
            log_warning(f"[STORE] Delete of \"{name}\" rejected: revision {expected_revision} is stale")
            raise ConflictError(
                f"Macro \"{name}\" was changed elsewhere; reload it before deleting",
                status=resp.status, body=resp.data
            )
        self._raise_for_status(resp, f"Deleting macro \"{name}\"")

        self._drop_entry(name)
        log(f"[STORE] Deleted \"{name}\"")

    # ==================== INDEX ====================

    def _replace_index(self, entries: Dict[str, IndexEntry]):
        with self._lock:
            self._index = MappingProxyType(dict(entries))

    def _put_entry(self, name: str, entry: IndexEntry):
        with self._lock:
            updated = dict(self._index)
            updated[name] = entry
            self._index = MappingProxyType(updated)

    def _drop_entry(self, name: str):
        with self._lock:
            if name not in self._index:
                return
            updated = dict(self._index)
            del updated[name]
            self._index = MappingProxyType(updated)

    # ==================== ERRORS ====================

    @staticmethod
    def _raise_for_status(resp: TransportResponse, what: str):
        if resp.ok:
            return
        if resp.status == 401:
            raise UnauthenticatedError(f"{what} failed: not authenticated", status=401, body=resp.data)
        if resp.status == 403:
            raise ForbiddenError(f"{what} failed: access denied", status=403, body=resp.data)
        if resp.status == 404:
            raise NotFoundError(f"{what} failed: not found", status=404, body=resp.data)
        if resp.status in (409, 422):
            raise ConflictError(f"{what} failed: conflict", status=resp.status, body=resp.data)
        raise TransportError(f"{what} failed", status=resp.status, body=resp.data)

