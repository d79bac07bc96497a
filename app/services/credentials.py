"""Ownership of the process-wide Gemini client handle."""

from __future__ import annotations

import logging
import os
from typing import Callable, Mapping, MutableMapping

import httpx

from ..settings_store import SettingsStore
from .gemini import GeminiClient

logger = logging.getLogger(__name__)

API_KEY_ENV_VAR = "GEMINI_API_KEY"

ClientFactory = Callable[[str, httpx.AsyncClient], GeminiClient]


def discover_key(
    env: Mapping[str, str], settings_store: SettingsStore | None
) -> str | None:
    """Return the first usable API key: environment first, then the store."""

    value = (env.get(API_KEY_ENV_VAR) or "").strip()
    if value:
        return value
    if settings_store is None:
        return None
    stored = settings_store.read_key()
    if stored and stored.strip():
        return stored.strip()
    return None


class ClientManager:
    """Builds, replaces and exposes the Gemini client.

    The current client is a single reference that is swapped as a whole on
    reconfiguration. Callers capture ``client`` once per operation and keep
    using that handle even if a new key arrives meanwhile.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        settings_store: SettingsStore | None = None,
        *,
        environ: MutableMapping[str, str] | None = None,
        persist: bool = True,
        client_factory: ClientFactory = GeminiClient,
    ):
        self._http_client = http_client
        self._store = settings_store
        self._environ = os.environ if environ is None else environ
        self._persist = persist
        self._factory = client_factory
        self._client: GeminiClient | None = None
        self._discovered = False

    @property
    def client(self) -> GeminiClient | None:
        """Return the current handle, discovering a key on first access."""

        if not self._discovered:
            self._discover()
        return self._client

    def is_ready(self) -> bool:
        """Return whether a usable client exists. Never touches the network."""

        return self.client is not None

    def configure(self, api_key: str) -> None:
        """Replace the client with one built from ``api_key``.

        The key is persisted before the swap so a storage failure leaves the
        previous client in place.
        """

        cleaned = (api_key or "").strip()
        if not cleaned:
            raise ValueError("API key must not be blank")

        replacement = self._factory(cleaned, self._http_client)
        if self._persist and self._store is not None:
            self._store.write_key(cleaned)
        self._environ[API_KEY_ENV_VAR] = cleaned
        self._client = replacement
        self._discovered = True
        logger.info("Gemini client reconfigured")

    def _discover(self) -> None:
        self._discovered = True
        api_key = discover_key(self._environ, self._store)
        if api_key is None:
            logger.info("No Gemini API key found; autocomplete disabled")
            return
        self._client = self._factory(api_key, self._http_client)
        logger.info("Gemini client initialised")
