"""Minimal synchronous Python client for a riptide server (urllib, JSON envelopes)."""
from __future__ import annotations

import json
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Iterator

from riptide.errors import RiptideError, RpcError


class TransportError(RiptideError):
    """The response was not a riptide envelope (proxy page, network failure...)."""

    def __init__(self, message: str, http_status: int = 0, raw_body: str = "") -> None:
        super().__init__(message)
        self.http_status = http_status
        self.raw_body = raw_body


def _query_string(request: dict[str, Any] | None) -> str:
    """Sorted query parameters; lists repeat the key, objects are JSON, None is skipped."""
    pairs: list[tuple[str, str]] = []
    for key in sorted(request or {}):
        value = request[key]  # type: ignore[index]
        items = value if isinstance(value, list) else [value]
        for item in items:
            if item is None:
                continue
            if isinstance(item, bool):
                item = "true" if item else "false"
            elif isinstance(item, (dict, list, tuple)):
                item = json.dumps(item, separators=(",", ":"))
            pairs.append((key, str(item)))
    return urllib.parse.urlencode(pairs)


def parse_envelope(raw: bytes, http_status: int) -> Any:
    """Return the envelope's result, or raise its error as RpcError."""
    text = raw.decode("utf-8", errors="replace")
    try:
        envelope = json.loads(text)
    except ValueError:
        raise TransportError("failed to parse response", http_status, text[:1000]) from None
    if not isinstance(envelope, dict) or ("result" not in envelope and "error" not in envelope):
        raise TransportError("invalid response format: missing result or error field", http_status, text[:1000])
    error = envelope.get("error")
    if error:
        raise RpcError.from_dict(error if isinstance(error, dict) else {"message": str(error)})
    return envelope.get("result")


class Client:
    """Calls `Service.Method` keys against a base URL."""

    def __init__(self, base_url: str, *, headers: dict[str, str] | None = None, timeout: float = 10.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers = dict(headers or {})
        self.timeout = timeout

    def _url(self, key: str) -> str:
        service, _, method = key.partition(".")
        if not service or not method:
            raise ValueError(f"method key must look like Service.Method, got {key!r}")
        return f"{self.base_url}/{service}/{method}"

    def _open(self, request: urllib.request.Request, timeout: float | None) -> tuple[int, bytes]:
        try:
            with urllib.request.urlopen(request, timeout=timeout) as resp:
                return resp.status, resp.read()
        except urllib.error.HTTPError as exc:
            return exc.code, exc.read()
        except (urllib.error.URLError, OSError) as exc:
            raise TransportError(str(exc)) from exc

    def call(self, key: str, request: dict[str, Any] | None = None, *, http_method: str = "POST") -> Any:
        """Invoke a unary method; GET sends query parameters, POST sends JSON."""
        url = self._url(key)
        headers = dict(self.headers)
        body: bytes | None = None
        if http_method.upper() == "GET":
            query = _query_string(request)
            if query:
                url = f"{url}?{query}"
        else:
            headers["Content-Type"] = "application/json"
            body = json.dumps(request if request is not None else {}).encode("utf-8")
        req = urllib.request.Request(url, data=body, headers=headers, method=http_method.upper())
        status, raw = self._open(req, self.timeout)
        return parse_envelope(raw, status)

    def query(self, key: str, request: dict[str, Any] | None = None) -> Any:
        return self.call(key, request, http_method="GET")

    def watch(self, key: str) -> Iterator[Any]:
        """Follow a live value: its current value, then every update."""
        return self.stream(key, http_method="GET")

    def stream(
        self,
        key: str,
        request: dict[str, Any] | None = None,
        *,
        http_method: str = "POST",
        last_event_id: str = "",
    ) -> Iterator[Any]:
        """Yield results from an SSE method until the server closes the stream."""
        url = self._url(key)
        headers = dict(self.headers, Accept="text/event-stream")
        if last_event_id:
            headers["Last-Event-ID"] = last_event_id
        body: bytes | None = None
        if http_method.upper() == "GET":
            query = _query_string(request)
            if query:
                url = f"{url}?{query}"
        else:
            headers["Content-Type"] = "application/json"
            body = json.dumps(request if request is not None else {}).encode("utf-8")
        req = urllib.request.Request(url, data=body, headers=headers, method=http_method.upper())
        try:
            resp = urllib.request.urlopen(req, timeout=None)
        except urllib.error.HTTPError as exc:
            parse_envelope(exc.read(), exc.code)
            return
        except (urllib.error.URLError, OSError) as exc:
            raise TransportError(str(exc)) from exc
        with resp:
            for raw_line in resp:
                line = raw_line.decode("utf-8").rstrip("\r\n")
                if not line.startswith("data:"):
                    continue
                yield parse_envelope(line[5:].strip().encode("utf-8"), resp.status)
