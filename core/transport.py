from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import urljoin

import requests

from core.errors import RequestTimeoutError, TransportError
from utils.logger import log


@dataclass
class TransportResponse:
    status: int
    data: Any = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class HttpTransport:
    """Request/response access to a contents-style REST backend."""

    def __init__(
        self,
        base_url: str = "https://api.github.com",
        *,
        token: str | None = None,
        timeout_s: float = 15.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") + "/"
        self.token = token
        self.timeout_s = timeout_s
        self._session = session or requests.Session()

    @property
    def has_token(self) -> bool:
        return bool(self.token)

    def _headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {
            "Accept": "application/vnd.github.v3+json",
            "Content-Type": "application/json",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def request(self, method: str, path: str, body: Any | None = None) -> TransportResponse:
        url = urljoin(self.base_url, path.lstrip("/"))
        try:
            resp = self._session.request(
                method=method,
                url=url,
                headers=self._headers(),
                data=json.dumps(body) if body is not None else None,
                timeout=self.timeout_s,
            )
        except requests.Timeout as exc:
            raise RequestTimeoutError(f"{method} {path} timed out after {self.timeout_s:g}s") from exc
        except requests.RequestException as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc

        log(f"[TRANSPORT] {method} {path} -> {resp.status_code}")
        data: Optional[Any] = None
        if resp.content:
            try:
                data = resp.json()
            except ValueError:
                data = resp.text
        return TransportResponse(status=resp.status_code, data=data, headers=dict(resp.headers))

    def close(self) -> None:
        self._session.close()
