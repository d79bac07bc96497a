"""Behaviour of the model cascade resolver."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from app.media_types import MediaType
from app.services.autocomplete import (
    AutocompleteResolver,
    ConfigurationError,
    ExhaustedCascadeError,
    build_autocomplete_prompt,
)
from app.services.credentials import API_KEY_ENV_VAR, ClientManager
from app.services.gemini import GeminiError

from fakes import MemorySettingsStore, build_manager

MODELS = ("model-a", "model-b", "model-c")
DUNE = {
    "title": "Dune",
    "year": 1965,
    "creator": "Frank Herbert",
    "genre": "Science Fiction",
    "synopsis": "...",
}


def _ready_resolver(outcomes, models=MODELS, **kwargs):
    manager, built = build_manager(env={API_KEY_ENV_VAR: "key"}, outcomes=outcomes)
    return AutocompleteResolver(manager, models, **kwargs), manager, built


def test_unconfigured_resolver_fails_without_calls() -> None:
    manager, built = build_manager(store=MemorySettingsStore(None))
    resolver = AutocompleteResolver(manager, MODELS)

    with pytest.raises(ConfigurationError):
        asyncio.run(resolver.resolve("Dune", MediaType.BOOK))
    assert built == []


def test_fenced_response_from_first_model_wins() -> None:
    fenced = "```json\n" + json.dumps(DUNE) + "\n```"
    resolver, _, built = _ready_resolver({"model-a": fenced, "model-b": json.dumps(DUNE)})

    metadata = asyncio.run(resolver.resolve("Dune", MediaType.BOOK))

    assert metadata.year == 1965
    assert isinstance(metadata.year, int)
    assert metadata.model_dump(include=set(DUNE)) == DUNE
    assert built[0].calls == ["model-a"]


def test_malformed_first_response_falls_through_to_second() -> None:
    resolver, _, built = _ready_resolver(
        {
            "model-a": "Dune is a 1965 novel by Frank Herbert.",
            "model-b": json.dumps(DUNE),
        }
    )

    metadata = asyncio.run(resolver.resolve("Dune", "book"))

    assert metadata.title == "Dune"
    assert built[0].calls == ["model-a", "model-b"]


def test_service_errors_advance_the_cascade() -> None:
    resolver, _, built = _ready_resolver(
        {
            "model-a": GeminiError("HTTP 429: quota exceeded", status_code=429),
            "model-b": httpx.ConnectError("connection refused"),
            "model-c": json.dumps(DUNE),
        }
    )

    metadata = asyncio.run(resolver.resolve("Dune", MediaType.BOOK))

    assert metadata.creator == "Frank Herbert"
    assert built[0].calls == list(MODELS)


def test_schema_mismatch_is_an_attempt_failure() -> None:
    missing_keys = json.dumps({"title": "Dune"})
    string_year = json.dumps({**DUNE, "year": "1965"})
    resolver, _, built = _ready_resolver(
        {"model-a": missing_keys, "model-b": string_year, "model-c": json.dumps(DUNE)}
    )

    metadata = asyncio.run(resolver.resolve("Dune", MediaType.BOOK))

    assert metadata.year == 1965
    assert built[0].calls == list(MODELS)


def test_explicit_nulls_are_accepted() -> None:
    payload = {"title": "xyz", "year": None, "creator": None, "genre": None, "synopsis": None}
    resolver, _, _ = _ready_resolver({"model-a": json.dumps(payload)})

    metadata = asyncio.run(resolver.resolve("xyz", MediaType.MUSIC))

    assert metadata.year is None
    assert metadata.creator is None


def test_extended_fields_are_kept() -> None:
    payload = {**DUNE, "pages": 412, "isbn": "9780441013593", "unknown": "dropped"}
    resolver, _, _ = _ready_resolver({"model-a": json.dumps(payload)})

    metadata = asyncio.run(resolver.resolve("Dune", MediaType.BOOK))

    assert metadata.pages == 412
    assert metadata.isbn == "9780441013593"
    assert not hasattr(metadata, "unknown")


def test_wrongly_typed_extended_fields_do_not_fail_the_attempt() -> None:
    book = {**DUNE, "isbn": 9780441013593}
    game = {
        "title": "Celeste",
        "year": 2018,
        "creator": "Maddy Thorson",
        "genre": "Platformer",
        "synopsis": "...",
        "platform": ["PC", "Switch"],
    }
    book_resolver, _, book_built = _ready_resolver({"model-a": json.dumps(book)})
    game_resolver, _, game_built = _ready_resolver({"model-a": json.dumps(game)})

    dune = asyncio.run(book_resolver.resolve("Dune", MediaType.BOOK))
    celeste = asyncio.run(game_resolver.resolve("Celeste", MediaType.GAME))

    assert dune.isbn == "9780441013593"
    assert celeste.platform == "PC, Switch"
    assert book_built[0].calls == ["model-a"]
    assert game_built[0].calls == ["model-a"]


def test_exhausted_cascade_reports_last_failure() -> None:
    resolver, _, built = _ready_resolver(
        {
            "model-a": "",
            "model-b": "not json",
            "model-c": GeminiError("HTTP 404: model retired", status_code=404),
        }
    )

    with pytest.raises(ExhaustedCascadeError) as excinfo:
        asyncio.run(resolver.resolve("xyzzy123", MediaType.GAME))

    error = excinfo.value
    assert error.model == "model-c"
    assert isinstance(error.last_error, GeminiError)
    assert "model-c" in str(error)
    assert "model retired" in str(error)
    assert [attempt.model for attempt in error.attempts] == list(MODELS)
    assert built[0].calls == list(MODELS)


def test_timeout_is_treated_as_candidate_failure() -> None:
    async def stall() -> str:
        await asyncio.sleep(5)
        return json.dumps(DUNE)

    resolver, _, built = _ready_resolver(
        {"model-a": stall, "model-b": json.dumps(DUNE)}, timeout=0.05
    )

    metadata = asyncio.run(resolver.resolve("Dune", MediaType.BOOK))

    assert metadata.title == "Dune"
    assert built[0].calls == ["model-a", "model-b"]


def test_reconfiguration_mid_cascade_does_not_affect_running_resolution() -> None:
    manager, built = build_manager(env={API_KEY_ENV_VAR: "old-key"})
    resolver = AutocompleteResolver(manager, ("model-a", "model-b"))

    async def reconfigure_then_fail() -> str:
        manager.configure("new-key")
        raise GeminiError("HTTP 500: flaky")

    old_client = manager.client
    assert old_client is not None
    old_client.outcomes.update({"model-a": reconfigure_then_fail, "model-b": json.dumps(DUNE)})

    metadata = asyncio.run(resolver.resolve("Dune", MediaType.BOOK))

    assert metadata.title == "Dune"
    assert old_client.calls == ["model-a", "model-b"]
    new_client = built[-1]
    assert new_client.api_key == "new-key"
    assert new_client.calls == []

    new_client.outcomes["model-a"] = json.dumps(DUNE)
    asyncio.run(resolver.resolve("Dune", MediaType.BOOK))
    assert new_client.calls == ["model-a"]
    assert old_client.calls == ["model-a", "model-b"]


def test_cascade_order_is_frozen_at_construction() -> None:
    models = ["model-a", "model-b"]
    resolver, _, _ = _ready_resolver({}, models=models)
    models.append("model-c")

    assert resolver.models == ("model-a", "model-b")


def test_resolver_requires_models() -> None:
    manager, _ = build_manager()

    with pytest.raises(ValueError):
        AutocompleteResolver(manager, [])


def test_prompt_embeds_query_and_localized_noun() -> None:
    prompt = build_autocomplete_prompt("Dune", MediaType.BOOK)

    assert '"Dune"' in prompt
    assert "libro" in prompt
    assert '"synopsis"' in prompt
    assert '"pages"' in prompt
    assert "null" in prompt


def test_prompt_without_extended_fields() -> None:
    prompt = build_autocomplete_prompt("Kind of Blue", MediaType.MUSIC)

    assert "álbum de música" in prompt
    assert '"platform"' not in prompt


def test_suggest_cover_search_uses_first_model() -> None:
    resolver, _, built = _ready_resolver({"model-a": '"Dune 1965 book cover"\n'})

    term = asyncio.run(resolver.suggest_cover_search("Dune", MediaType.BOOK, 1965))

    assert term == "Dune 1965 book cover"
    assert built[0].calls == ["model-a"]


def test_suggest_cover_search_falls_back() -> None:
    resolver, _, _ = _ready_resolver({"model-a": GeminiError("HTTP 500: boom")})

    term = asyncio.run(resolver.suggest_cover_search("Dune", MediaType.BOOK, None))

    assert term == "Dune book cover"

    manager, _ = build_manager()
    unconfigured = AutocompleteResolver(manager, MODELS)
    assert asyncio.run(unconfigured.suggest_cover_search("Dune", "book", 1965)) == "Dune 1965 book cover"


@pytest.mark.anyio
async def test_resolve_through_gemini_rest_api() -> None:
    """End to end through the real client with a mocked transport."""

    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(request.url.path)
        assert request.headers["x-goog-api-key"] == "rest-key"
        if request.url.path.endswith("model-a:generateContent"):
            return httpx.Response(429, json={"error": {"message": "Resource exhausted"}})
        body = json.loads(request.content)
        assert body["generationConfig"] == {"temperature": 0.3, "maxOutputTokens": 500}
        text = "```json\n" + json.dumps(DUNE) + "\n```"
        return httpx.Response(
            200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]}
        )

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(
        transport=transport, base_url="https://gemini.example.com/v1beta"
    ) as http_client:
        manager = ClientManager(http_client, None, environ={API_KEY_ENV_VAR: "rest-key"})
        resolver = AutocompleteResolver(manager, ("model-a", "model-b"))
        metadata = await resolver.resolve("Dune", MediaType.BOOK)

    assert metadata.year == 1965
    assert requested == [
        "/v1beta/models/model-a:generateContent",
        "/v1beta/models/model-b:generateContent",
    ]
