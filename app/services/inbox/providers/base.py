from __future__ import annotations

import time

import httpx


def _retry_delay(response: httpx.Response) -> float:
    retry_after = response.headers.get("Retry-After")
    if not retry_after:
        return 1.0
    try:
        return max(0.0, float(retry_after))
    except ValueError:
        return 1.0


class ProviderClient:
    """Shared httpx plumbing; a client may be injected for tests or pooling."""

    def __init__(self, timeout: float = 15.0, client: httpx.Client | None = None):
        self.timeout = timeout
        self._client = client

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        if self._client is not None:
            return self._client.request(method, url, **kwargs)
        with httpx.Client(timeout=self.timeout) as client:
            return client.request(method, url, **kwargs)

    def _get(self, url: str, **kwargs) -> httpx.Response:
        return self._request("GET", url, **kwargs)

    def _post(self, url: str, **kwargs) -> httpx.Response:
        return self._request("POST", url, **kwargs)

    def _post_with_retry(self, url: str, max_retries: int = 1, **kwargs) -> httpx.Response:
        """POST, retrying rate-limit and server errors after ``Retry-After``."""
        retries = 0
        while True:
            response = self._post(url, **kwargs)
            if response.status_code == 429 or response.status_code >= 500:
                if retries >= max_retries:
                    return response
                time.sleep(_retry_delay(response))
                retries += 1
                continue
            return response


def safe_json(response: httpx.Response):
    try:
        return response.json()
    except ValueError:
        return None
