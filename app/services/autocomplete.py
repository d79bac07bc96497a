"""Metadata autocompletion through an ordered cascade of Gemini models."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Sequence

import httpx
from pydantic import ValidationError

from ..media_types import MediaType, get_definition
from ..models import ResolvedMetadata
from ..utils import parse_json_object
from .credentials import ClientManager
from .gemini import GeminiClient, GeminiError

logger = logging.getLogger(__name__)

AUTOCOMPLETE_PROMPT_TEMPLATE = """Busca información sobre "{query}" que es un/una {noun}.

Responde ÚNICAMENTE con un objeto JSON válido (sin markdown, sin ```), con esta estructura exacta:
{{
  "title": "título oficial exacto",
  "year": 2024,
  "creator": "director/desarrollador/autor/artista principal",
  "genre": "género principal",
  "synopsis": "sinopsis breve en español, máximo 3 frases"{extended_block}
}}

Si no encuentras información exacta, usa null en los campos desconocidos. No omitas ninguna clave."""

EXTENDED_FIELD_HINTS: dict[str, str] = {
    "platform": '"platform": "plataformas principales"',
    "developer": '"developer": "estudio desarrollador"',
    "publisher": '"publisher": "editorial o distribuidora"',
    "duration_min": '"duration_min": 120',
    "pages": '"pages": 350',
    "episodes": '"episodes": 24',
    "seasons": '"seasons": 2',
    "isbn": '"isbn": "ISBN-13"',
}

COVER_SEARCH_PROMPT_TEMPLATE = (
    'Para buscar la portada/carátula de "{title}" ({media_type}, {year}), '
    "sugiere el mejor término de búsqueda en inglés. "
    "Responde SOLO con el término, sin explicaciones."
)


class AutocompleteError(RuntimeError):
    """Base class for errors surfaced by the resolver."""


class ConfigurationError(AutocompleteError):
    """No usable Gemini client is configured."""


@dataclass(frozen=True)
class AttemptSuccess:
    model: str
    metadata: ResolvedMetadata


@dataclass(frozen=True)
class AttemptFailure:
    """One candidate model failed; absorbed by the cascade."""

    model: str
    reason: str
    error: BaseException


AttemptResult = AttemptSuccess | AttemptFailure


class ExhaustedCascadeError(AutocompleteError):
    """Every candidate model failed."""

    def __init__(self, attempts: Sequence[AttemptFailure]):
        self.attempts = tuple(attempts)
        last = self.attempts[-1] if self.attempts else None
        self.model = last.model if last else None
        self.last_error = last.error if last else None
        if last is None:
            message = "All AI models failed"
        else:
            message = f"All AI models failed. Last error ({last.model}): {last.reason}"
        super().__init__(message)


def build_autocomplete_prompt(query: str, media_type: MediaType | str) -> str:
    """Return the Spanish prompt asking for a single metadata JSON object."""

    definition = get_definition(media_type)
    hints = [EXTENDED_FIELD_HINTS[field] for field in definition.extended_fields]
    extended_block = "".join(f",\n  {hint}" for hint in hints)
    return AUTOCOMPLETE_PROMPT_TEMPLATE.format(
        query=query.replace('"', "'"),
        noun=definition.prompt_noun,
        extended_block=extended_block,
    )


def fallback_cover_search(title: str, media_type: MediaType | str, year: int | None) -> str:
    type_value = MediaType(media_type).value
    return " ".join(part for part in (title, str(year or ""), type_value, "cover") if part)


class AutocompleteResolver:
    """Turns a free-text query into ``ResolvedMetadata``.

    Models are tried strictly in the configured order and the first response
    that parses into the metadata schema wins. A failing model is not retried
    within the same call.
    """

    def __init__(
        self,
        client_manager: ClientManager,
        models: Sequence[str],
        *,
        temperature: float = 0.3,
        max_output_tokens: int = 500,
        timeout: float | None = 20.0,
    ):
        cascade = tuple(model for model in models if model)
        if not cascade:
            raise ValueError("At least one model is required for autocompletion")
        self._manager = client_manager
        self._models = cascade
        self._temperature = temperature
        self._max_output_tokens = max_output_tokens
        self._timeout = timeout

    @property
    def models(self) -> tuple[str, ...]:
        return self._models

    def is_configured(self) -> bool:
        return self._manager.is_ready()

    async def resolve(self, query: str, media_type: MediaType | str) -> ResolvedMetadata:
        """Return metadata for ``query`` or raise an ``AutocompleteError``."""

        client = self._manager.client
        if client is None:
            raise ConfigurationError("Gemini API key not configured")

        prompt = build_autocomplete_prompt(query, media_type)
        failures: list[AttemptFailure] = []
        for model in self._models:
            result = await self._attempt(client, model, prompt)
            if isinstance(result, AttemptSuccess):
                logger.info("Autocomplete succeeded with %s", model)
                return result.metadata
            logger.warning("Model %s failed: %s", model, result.reason)
            failures.append(result)

        logger.warning("All %d autocomplete models failed", len(failures))
        raise ExhaustedCascadeError(failures)

    async def suggest_cover_search(
        self, title: str, media_type: MediaType | str, year: int | None = None
    ) -> str:
        """Ask the preferred model for an English cover search term."""

        fallback = fallback_cover_search(title, media_type, year)
        client = self._manager.client
        if client is None:
            return fallback
        prompt = COVER_SEARCH_PROMPT_TEMPLATE.format(
            title=title,
            media_type=MediaType(media_type).value,
            year=year or "año desconocido",
        )
        try:
            text = await self._generate(
                client, self._models[0], prompt, temperature=0.1, max_output_tokens=50
            )
        except (GeminiError, httpx.HTTPError, asyncio.TimeoutError, ValueError) as exc:
            logger.warning("Cover search suggestion failed: %s", exc)
            return fallback
        suggestion = text.strip().strip('"').strip()
        return suggestion or fallback

    async def _attempt(
        self, client: GeminiClient, model: str, prompt: str
    ) -> AttemptResult:
        logger.info("Trying model: %s", model)
        try:
            text = await self._generate(
                client,
                model,
                prompt,
                temperature=self._temperature,
                max_output_tokens=self._max_output_tokens,
            )
        except asyncio.TimeoutError as exc:
            return AttemptFailure(model, f"timed out after {self._timeout}s", exc)
        except (GeminiError, httpx.HTTPError, ValueError) as exc:
            return AttemptFailure(model, str(exc) or type(exc).__name__, exc)

        try:
            payload = parse_json_object(text)
            metadata = ResolvedMetadata.model_validate(payload)
        except ValidationError as exc:
            reason = f"response does not match metadata schema ({exc.error_count()} errors)"
            return AttemptFailure(model, reason, exc)
        except ValueError as exc:
            return AttemptFailure(model, str(exc), exc)
        return AttemptSuccess(model, metadata)

    async def _generate(
        self,
        client: GeminiClient,
        model: str,
        prompt: str,
        *,
        temperature: float,
        max_output_tokens: int,
    ) -> str:
        request = client.generate_content(
            model,
            prompt,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
        )
        if self._timeout is None:
            return await request
        return await asyncio.wait_for(request, timeout=self._timeout)
