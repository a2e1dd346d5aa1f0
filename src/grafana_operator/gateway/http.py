"""
urllib transport.

Error statuses come back as HttpResponse so the gateway decides what they mean.
Only transport failures, such as a refused connection, DNS failure, timeout or
a malformed status line, raise RemoteCallFailure.
"""

from __future__ import annotations

from dataclasses import dataclass
from http.client import HTTPException
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from grafana_operator.core.errors import RemoteCallFailure
from grafana_operator.gateway.base import HttpClient, HttpResponse


@dataclass(frozen=True)
class UrllibHttpClient(HttpClient):
    """Default http client using urllib."""

    max_body_bytes: int = 1024 * 1024

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str],
        body: bytes | None,
        timeout: float,
    ) -> HttpResponse:
        req = Request(url, data=body, headers=headers, method=method)
        try:
            return self._send(req, timeout)
        except (URLError, TimeoutError, OSError, HTTPException) as exc:
            raise RemoteCallFailure(f"{method} {url} failed: {exc}") from exc

    def _send(self, req: Request, timeout: float) -> HttpResponse:
        try:
            with urlopen(req, timeout=timeout) as resp:
                return HttpResponse(
                    status=resp.status,
                    reason=str(resp.reason or ""),
                    body=resp.read(self.max_body_bytes),
                    headers={k: v for k, v in resp.headers.items()},
                )
        except HTTPError as exc:
            # reading the error body can still fail mid transfer
            try:
                return HttpResponse(
                    status=exc.code,
                    reason=str(exc.reason or ""),
                    body=exc.read(self.max_body_bytes),
                    headers={k: v for k, v in (exc.headers or {}).items()},
                )
            finally:
                exc.close()
