from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

import requests

from .config import LlmConfig
from .errors import LlmError, MalformedResponse, RateLimited

# (messages, temperature, max_tokens) -> reply text
CompleteFn = Callable[[List[Dict[str, str]], float, int], str]


def _retry_after(resp: requests.Response) -> Optional[float]:
    v = resp.headers.get("Retry-After") or resp.headers.get("retry-after-ms")
    if not v:
        return None
    try:
        secs = float(v)
    except ValueError:
        return None
    if "Retry-After" not in resp.headers:
        secs = secs / 1000.0
    return secs


class AzureOpenAIClient:
    """Chat-completions call against an Azure OpenAI deployment, JSON reply mode."""

    def __init__(self, cfg: LlmConfig, session: Optional[requests.Session] = None):
        if not cfg.endpoint or not cfg.api_key:
            raise LlmError("Azure OpenAI endpoint and key are required (AZURE_OPENAI_ENDPOINT, AZURE_OPENAI_KEY)")
        self.cfg = cfg
        self.session = session or requests.Session()

    @property
    def url(self) -> str:
        return (
            f"{self.cfg.endpoint}/openai/deployments/{self.cfg.deployment}"
            f"/chat/completions?api-version={self.cfg.api_version}"
        )

    def __call__(self, messages: List[Dict[str, str]], temperature: float, max_tokens: int) -> str:
        return self.complete(messages, temperature, max_tokens)

    def complete(self, messages: List[Dict[str, str]], temperature: float, max_tokens: int) -> str:
        body: Dict[str, Any] = {
            "messages": messages,
            "response_format": {"type": "json_object"},
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        headers = {"Content-Type": "application/json", "api-key": self.cfg.api_key}
        try:
            resp = self.session.post(self.url, json=body, headers=headers, timeout=self.cfg.timeout_sec)
        except requests.RequestException as e:
            raise LlmError(f"request to {self.cfg.deployment} failed: {e}") from e

        if resp.status_code == 429:
            raise RateLimited(f"HTTP 429 from {self.cfg.deployment}", retry_after=_retry_after(resp))
        if resp.status_code >= 400:
            raise LlmError(f"HTTP {resp.status_code} from {self.cfg.deployment}: {resp.text[:300]}", status_code=resp.status_code)

        try:
            data = resp.json()
            choice = data["choices"][0]
            content = choice["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise MalformedResponse(f"unexpected completion payload: {e}", resp.text) from e

        if choice.get("finish_reason") == "length":
            logging.warning("Completion hit max_tokens (%d); reply may be truncated", max_tokens)
        usage = data.get("usage") or {}
        if usage:
            logging.info(
                "Token usage: prompt=%s completion=%s total=%s",
                usage.get("prompt_tokens"), usage.get("completion_tokens"), usage.get("total_tokens"),
            )
        return content or ""
