"""Configuration settings behaviour tests."""

from __future__ import annotations

from app.config import DEFAULT_AI_MODELS, Settings


def test_ai_models_parsed_from_comma_separated_string() -> None:
    """The cascade keeps the declared order and drops blanks."""

    settings = Settings(_env_file=None, AI_MODELS="model-b, ,model-a,model-b")

    assert settings.ai_models == ("model-b", "model-a")


def test_ai_models_accept_iterables() -> None:
    settings = Settings(_env_file=None, AI_MODELS=["only-model"])

    assert settings.ai_models == ("only-model",)


def test_ai_models_blank_defaults() -> None:
    """A blank cascade falls back to the default model list."""

    settings = Settings(_env_file=None, AI_MODELS="")

    assert settings.ai_models == DEFAULT_AI_MODELS


def test_ai_models_read_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("AI_MODELS", "first,second")

    settings = Settings(_env_file=None)

    assert settings.ai_models == ("first", "second")


def test_blank_api_key_treated_as_missing() -> None:
    settings = Settings(_env_file=None, GEMINI_API_KEY="   ")

    assert settings.gemini_api_key is None


def test_defaults() -> None:
    settings = Settings(_env_file=None)

    assert settings.ai_temperature == 0.3
    assert settings.ai_max_output_tokens == 500
    assert settings.ai_persist_api_key is True
