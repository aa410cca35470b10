"""JSON-over-HTTP client for the Tera answer server.

Only the standard library is used so the CLI works without the server extras.
"""

from __future__ import annotations

import json
import os
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any


DEFAULT_URL = os.environ.get("TERA_URL", "http://127.0.0.1:8788")


@dataclass(frozen=True)
class HttpError(RuntimeError):
    message: str
    url: str | None = None
    status_code: int | None = None
    detail: str | None = None

    def __str__(self) -> str:
        parts = [self.message]
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        if self.detail:
            parts.append(f"detail={self.detail}")
        if self.url:
            parts.append(f"url={self.url}")
        return " ".join(parts)


def _join_url(base_url: str, path: str) -> str:
    # urljoin drops the last path segment of a base without a trailing slash.
    return urllib.parse.urljoin(base_url.rstrip("/") + "/", path.lstrip("/"))


def _error_detail(raw: bytes) -> str | None:
    """Pull FastAPI's `{"detail": ...}` out of an error body, else return the text."""
    text = raw.decode("utf-8", errors="replace").strip()
    if not text:
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return text
    if isinstance(data, dict) and "detail" in data:
        detail = data["detail"]
        return detail if isinstance(detail, str) else json.dumps(detail, ensure_ascii=False)
    return text


class TeraClient:
    def __init__(self, *, base_url: str = DEFAULT_URL, timeout_s: float = 600.0):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = float(timeout_s)

    def url(self, path: str) -> str:
        return _join_url(self.base_url, path)

    def request_json(
        self,
        method: str,
        path: str,
        *,
        payload: Any | None = None,
        timeout_s: float | None = None,
    ) -> Any:
        url = self.url(path)
        headers = {"Accept": "application/json"}
        data = None
        if payload is not None:
            data = json.dumps(payload, ensure_ascii=False).encode("utf-8")
            headers["Content-Type"] = "application/json"
        req = urllib.request.Request(url, data=data, headers=headers, method=method.upper())

        try:
            with urllib.request.urlopen(req, timeout=timeout_s or self.timeout_s) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as exc:
            raise HttpError("HTTP error", url=url, status_code=exc.code, detail=_error_detail(exc.read())) from exc
        except urllib.error.URLError as exc:
            raise HttpError(f"Failed to reach server ({exc.reason})", url=url) from exc
        except socket.timeout as exc:
            raise HttpError("Request timed out", url=url) from exc

        try:
            return json.loads(raw.decode("utf-8"))
        except ValueError as exc:
            raise HttpError("Invalid JSON response", url=url, detail=_error_detail(raw)) from exc

    def health(self) -> dict[str, Any]:
        result = self.request_json("GET", "/health", timeout_s=min(self.timeout_s, 5.0))
        if not isinstance(result, dict):
            raise HttpError("Invalid /health response", url=self.url("/health"))
        return result

    def list_models(self) -> list[dict[str, Any]]:
        result = self.request_json("GET", "/v1/models")
        if not isinstance(result, dict) or not isinstance(result.get("data"), list):
            raise HttpError("Invalid /v1/models response", url=self.url("/v1/models"))
        return [item for item in result["data"] if isinstance(item, dict)]

    def answer(
        self,
        query: str,
        context: list[dict[str, Any]],
        *,
        generation: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """POST /v1/answer. An empty `context` yields the server's fixed no-content answer."""
        payload: dict[str, Any] = {"query": query, "context": context}
        if generation:
            payload["generation"] = generation
        result = self.request_json("POST", "/v1/answer", payload=payload)
        if not isinstance(result, dict) or not isinstance(result.get("answer"), str):
            raise HttpError("Invalid /v1/answer response", url=self.url("/v1/answer"))
        return result
