from __future__ import annotations

import json
import logging
import re

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from feedcurator.models.errors import OracleFailure

logger = logging.getLogger(__name__)

API_URL = "https://openrouter.ai/api/v1/chat/completions"

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def extract_json(content: str) -> dict | None:
    """Parse a model reply as a JSON object, tolerating a markdown code fence."""
    text = content.strip()
    match = _FENCE_PATTERN.match(text)
    if match:
        text = match.group(1)
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            return None
        try:
            data = json.loads(text[start : end + 1])
        except json.JSONDecodeError:
            return None
    return data if isinstance(data, dict) else None


class OpenRouterClient:
    """Minimal chat-completions client that expects JSON object replies."""

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout: int = 60,
        temperature: float = 0.2,
        max_tokens: int = 2000,
    ) -> None:
        self._api_key = api_key
        self.model = model
        self._timeout = timeout
        self._temperature = temperature
        self._max_tokens = max_tokens

    def with_model(self, model: str) -> "OpenRouterClient":
        if model == self.model:
            return self
        return OpenRouterClient(
            self._api_key, model, self._timeout, self._temperature, self._max_tokens
        )

    def complete_json(self, system: str, user: str) -> dict | None:
        try:
            content = self._post(system, user)
        except requests.RequestException as exc:
            raise OracleFailure(f"OpenRouter request failed ({self.model}): {exc}") from exc

        data = extract_json(content)
        if data is None:
            logger.warning("Model %s returned a reply that is not a JSON object", self.model)
            logger.debug("Unparsable reply: %s", content[:500])
        return data

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=4, max=10),
        retry=retry_if_exception_type(requests.RequestException),
        reraise=True,
    )
    def _post(self, system: str, user: str) -> str:
        response = requests.post(
            API_URL,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            json={
                "model": self.model,
                "messages": [
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                "temperature": self._temperature,
                "max_tokens": self._max_tokens,
                "response_format": {"type": "json_object"},
            },
            timeout=self._timeout,
        )
        response.raise_for_status()
        try:
            return response.json()["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise OracleFailure(f"Unexpected OpenRouter response shape: {exc}") from exc
