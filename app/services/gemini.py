"""Integration helpers for the Gemini generative language API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class GeminiError(RuntimeError):
    """Raised when the Gemini API rejects a request or returns no text."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class GeminiClient:
    """Client bound to a single API key.

    Instances are never mutated after construction; a new key means a new
    client.
    """

    def __init__(self, api_key: str, http_client: httpx.AsyncClient):
        if not api_key:
            raise ValueError("Gemini API key is required when initialising GeminiClient")
        self._api_key = api_key
        self._client = http_client

    @property
    def api_key(self) -> str:
        return self._api_key

    async def generate_content(
        self,
        model: str,
        prompt: str,
        *,
        temperature: float,
        max_output_tokens: int,
    ) -> str:
        """Return the text produced by ``model`` for ``prompt``."""

        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_output_tokens,
            },
        }
        response = await self._client.post(
            f"/models/{model}:generateContent",
            json=payload,
            headers=self._headers(),
        )
        if response.status_code >= 400:
            logger.debug("Gemini %s returned HTTP %s", model, response.status_code)
            raise GeminiError(
                self._error_message(response), status_code=response.status_code
            )

        data = response.json()
        candidates = data.get("candidates") or []
        if not candidates:
            feedback = data.get("promptFeedback") or {}
            reason = feedback.get("blockReason") or "no candidates"
            raise GeminiError(f"Model returned no candidates ({reason})")
        content = candidates[0].get("content") or {}
        parts = content.get("parts") or []
        text = "".join(
            part["text"]
            for part in parts
            if isinstance(part, dict) and isinstance(part.get("text"), str)
        )
        if not text.strip():
            finish = candidates[0].get("finishReason") or "unknown"
            raise GeminiError(f"Model response missing text (finish reason: {finish})")
        return text

    async def list_models(self) -> list[str]:
        """Return the model names visible to the configured key."""

        names: list[str] = []
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {"pageSize": 100}
            if page_token:
                params["pageToken"] = page_token
            response = await self._client.get(
                "/models", params=params, headers=self._headers()
            )
            if response.status_code >= 400:
                raise GeminiError(
                    self._error_message(response), status_code=response.status_code
                )
            data = response.json()
            for model in data.get("models") or []:
                name = model.get("name") if isinstance(model, dict) else None
                if isinstance(name, str):
                    names.append(name.removeprefix("models/"))
            page_token = data.get("nextPageToken")
            if not page_token:
                return names

    def _headers(self) -> dict[str, str]:
        return {
            "x-goog-api-key": self._api_key,
            "Content-Type": "application/json",
        }

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return f"HTTP {response.status_code}: {response.text}"
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict) and error.get("message"):
            return f"HTTP {response.status_code}: {error['message']}"
        return f"HTTP {response.status_code}: {response.text}"
