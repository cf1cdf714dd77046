

# app/providers/http.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from app.payouts.errors import DispatchError

logger = logging.getLogger("remodoc.http")


@dataclass
class HttpResponse:
    status_code: int
    json: Optional[dict[str, Any]]
    text: str


class HttpClient:
    """
    Thin httpx wrapper with a bounded timeout.
    Transport failures and non-2xx answers surface as DispatchError.
    """

    def __init__(self, timeout_s: float = 20.0, *, transport: httpx.BaseTransport | None = None):
        self._client = httpx.Client(timeout=timeout_s, follow_redirects=True, transport=transport)

    def post(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
        form: dict[str, Any] | None = None,
        auth: tuple[str, str] | None = None,
    ) -> HttpResponse:
        return self._send("POST", url, headers=headers, json_body=json_body, form=form, auth=auth)

    def get(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        auth: tuple[str, str] | None = None,
    ) -> HttpResponse:
        return self._send("GET", url, headers=headers, auth=auth)

    def _send(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
        form: dict[str, Any] | None = None,
        auth: tuple[str, str] | None = None,
    ) -> HttpResponse:
        try:
            r = self._client.request(method, url, headers=headers, json=json_body, data=form, auth=auth)
        except httpx.TimeoutException as exc:
            logger.warning("provider_http_timeout method=%s url=%s error=%s", method, url, type(exc).__name__)
            raise DispatchError(f"{method} {url} timed out", reason="DISPATCH_TIMEOUT")
        except httpx.HTTPError as exc:
            logger.warning("provider_http_error method=%s url=%s error=%s", method, url, type(exc).__name__)
            raise DispatchError(f"{method} {url} failed: {type(exc).__name__}", reason="DISPATCH_UNREACHABLE")

        wrapped = self._wrap(r)
        if r.status_code >= 400:
            logger.warning("provider_http_rejected method=%s url=%s status=%s", method, url, r.status_code)
            raise DispatchError(
                f"{method} {url} returned {r.status_code}: {wrapped.text[:200]}",
                reason="DISPATCH_AUTH_FAILED" if r.status_code in (401, 403) else "DISPATCH_REJECTED",
                http_status=r.status_code,
            )
        return wrapped

    @staticmethod
    def _wrap(r: httpx.Response) -> HttpResponse:
        try:
            payload = r.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            payload = None
        return HttpResponse(status_code=r.status_code, json=payload, text=r.text)
