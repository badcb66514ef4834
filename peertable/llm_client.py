from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse, urlunparse
import requests

from .config import SUPPORTED_PROVIDERS


class LLMClient:
    """Chat-completions transport for OpenAI-compatible providers.

    ``complete`` returns the raw reply text. JSON extraction is left to the
    caller because replies may wrap the object in commentary. Each call makes
    one request and lets transport errors propagate.
    """

    def __init__(
        self,
        provider: str,
        model: str,
        api_key: str,
        base_url: str,
        timeout: int = 30,
        post_fn: Optional[Callable[..., Any]] = None,
    ) -> None:
        self.provider = provider
        self.model = model
        self.api_key = api_key
        self.base_url = _normalize_base_url(base_url)
        self.timeout = timeout
        self._post = post_fn or requests.post

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.0,
    ) -> str:
        provider = self.provider.lower().strip()
        if provider not in SUPPORTED_PROVIDERS:
            raise ValueError(f"Unsupported provider: {self.provider}")
        url = f"{self.base_url}/v1/chat/completions"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model,
            "temperature": temperature,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        resp = self._post(url, headers=headers, json=payload, timeout=self.timeout)
        resp.raise_for_status()
        data = resp.json()
        return data["choices"][0]["message"]["content"] or ""


def _normalize_base_url(base_url: str) -> str:
    """Accept root URL, /v1 URL, or full chat completions endpoint and normalize."""
    raw = (base_url or "").strip()
    if not raw:
        return ""

    parsed = urlparse(raw)
    if not parsed.scheme or not parsed.netloc:
        return raw.rstrip("/")

    path = parsed.path.rstrip("/")
    lowered = path.lower()
    chat_suffix = "/chat/completions"
    v1_suffix = "/v1"

    if lowered.endswith(chat_suffix):
        path = path[: -len(chat_suffix)]
        lowered = path.lower()
    if lowered.endswith(v1_suffix):
        path = path[: -len(v1_suffix)]

    normalized = parsed._replace(path=path, params="", query="", fragment="")
    return urlunparse(normalized).rstrip("/")
