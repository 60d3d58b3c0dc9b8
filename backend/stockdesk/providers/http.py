from __future__ import annotations

from typing import Any

import httpx

from stockdesk.config.settings import settings
from stockdesk.errors import MalformedPayloadError, ProviderError, RateLimitedError


async def get_json(provider: str, url: str, params: dict[str, str]) -> Any:
    timeout = settings.providers.request_timeout_seconds
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(url, params=params)
            response.raise_for_status()
            return response.json()
    except httpx.HTTPStatusError as exc:
        if exc.response.status_code == 429:
            raise RateLimitedError(provider, "rate limit exceeded") from exc
        raise ProviderError(provider, f"HTTP {exc.response.status_code}") from exc
    except httpx.RequestError as exc:
        raise ProviderError(provider, f"request failed: {exc.__class__.__name__}") from exc
    except ValueError as exc:
        raise MalformedPayloadError(provider, "response is not valid JSON") from exc
