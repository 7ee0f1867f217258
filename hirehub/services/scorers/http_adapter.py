# hirehub/services/scorers/http_adapter.py
"""
Async HTTP scorer: POSTs the prompt to an external generation endpoint.

Request:  {"model": "<id>", "prompt": "<text>"}
Response: JSON with a "text" (or "output") field, or a plain-text body.

Retrying is the grader's job; this adapter makes exactly one request and lets
httpx.HTTPStatusError propagate so the status code can be classified.
"""

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class HttpScorer:
    name = "http"

    def __init__(self, url: str, api_key: Optional[str] = None, timeout: float = 60.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        if not url:
            # raise early if adapter selected but missing config
            raise RuntimeError("SCORER_HTTP_URL unset for http scorer")
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def score(self, prompt: str, model: str) -> str:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.post(self.url, json={"model": model, "prompt": prompt}, headers=headers)
            resp.raise_for_status()
        if "application/json" in resp.headers.get("content-type", ""):
            data = resp.json()
            if isinstance(data, dict):
                for key in ("text", "output", "content"):
                    if isinstance(data.get(key), str):
                        return data[key]
        return resp.text


def build(settings=None, **kwargs) -> HttpScorer:
    if settings is not None:
        kwargs.setdefault("url", settings.SCORER_HTTP_URL)
        kwargs.setdefault("api_key", settings.SCORER_API_KEY)
        kwargs.setdefault("timeout", settings.SCORER_TIMEOUT_SEC)
    return HttpScorer(**kwargs)
