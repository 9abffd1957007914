# fundrelease/providers/http.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from services.redaction import redact_dict, redact_text


logger = logging.getLogger("fundrelease.processor_http")


@dataclass
class HttpResponse:
    status_code: int
    json: Optional[dict[str, Any]]
    text: str


class HttpClient:
    def __init__(self, timeout_s: float = 20.0, follow_redirects: bool = False):
        self._client = httpx.Client(timeout=timeout_s, follow_redirects=follow_redirects)

    def post(
        self,
        url: str,
        *,
        headers: dict[str, str],
        form: dict[str, Any] | None = None,
    ) -> HttpResponse:
        r = self._client.post(url, headers=headers, data=form)
        if logger.isEnabledFor(logging.DEBUG):
            self._debug_dump("POST", url, headers, form, r)
        return self._wrap(r)

    def get(
        self,
        url: str,
        *,
        headers: dict[str, str],
        params: dict[str, Any] | None = None,
    ) -> HttpResponse:
        r = self._client.get(url, headers=headers, params=params)
        if logger.isEnabledFor(logging.DEBUG):
            self._debug_dump("GET", url, headers, params, r)
        return self._wrap(r)

    def close(self) -> None:
        self._client.close()

    @staticmethod
    def _wrap(r: httpx.Response) -> HttpResponse:
        try:
            payload = r.json()
        except ValueError:
            payload = None
        return HttpResponse(status_code=r.status_code, json=payload, text=r.text)

    @staticmethod
    def _debug_dump(method: str, url: str, headers: dict[str, str], body: Any, r: httpx.Response) -> None:
        logger.debug(
            "%s %s headers=%s body=%s -> status=%s text=%s",
            method,
            url,
            redact_dict(dict(headers or {})),
            redact_dict(dict(body or {})),
            r.status_code,
            redact_text(r.text[:300]),
        )


def is_retryable_http(code: int) -> bool:
    # Retry transient / throttling / gateway issues
    return code in (408, 425, 429, 500, 502, 503, 504)
