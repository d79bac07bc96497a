"""Best-effort cover image lookup for catalog items."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote, quote_plus

import httpx

from ..media_types import MediaType, get_definition
from ..utils import parse_year

logger = logging.getLogger(__name__)

TMDB_POSTER_BASE_URL = "https://image.tmdb.org/t/p/w500"
OPENLIBRARY_COVER_BASE_URL = "https://covers.openlibrary.org/b"
PLACEHOLDER_BASE_URL = "https://via.placeholder.com/300x450"

OPENLIBRARY_TYPES = {MediaType.BOOK, MediaType.MANGA}
TMDB_TYPES = {MediaType.MOVIE, MediaType.SERIES, MediaType.ANIME}


@dataclass(slots=True)
class CoverSources:
    """Base URLs for the cover providers."""

    openlibrary_url: str = "https://openlibrary.org"
    tmdb_url: str = "https://api.themoviedb.org/3"
    tmdb_api_key: str | None = None


def placeholder_cover_url(media_type: MediaType | str) -> str:
    """Return a coloured placeholder image for ``media_type``."""

    try:
        definition = get_definition(media_type)
    except ValueError:
        return f"{PLACEHOLDER_BASE_URL}/718096/ffffff?text={quote('📋')}"
    icon = quote(definition.placeholder_icon)
    return f"{PLACEHOLDER_BASE_URL}/{definition.placeholder_color}/ffffff?text={icon}"


def image_search_url(search_term: str) -> str:
    """Return an image search URL the user can open to pick a cover by hand."""

    return f"https://duckduckgo.com/?q={quote_plus(search_term)}&iax=images&ia=images"


def duckduckgo_search_url(title: str, media_type: MediaType | str) -> str:
    type_value = media_type.value if isinstance(media_type, MediaType) else str(media_type)
    return image_search_url(f"{title} {type_value} cover poster")


class CoverFinder:
    """Looks up cover URLs from Open Library and TMDB."""

    def __init__(self, http_client: httpx.AsyncClient, sources: CoverSources | None = None):
        self._client = http_client
        self._sources = sources or CoverSources()

    async def find_cover_url(
        self,
        title: str,
        media_type: MediaType | str,
        year: int | None = None,
        creator: str | None = None,
    ) -> str:
        """Return the best cover URL, or a placeholder when nothing is found."""

        media_type = MediaType(media_type)
        normalized_title = (title or "").strip()
        cover_url: str | None = None
        if normalized_title:
            try:
                if media_type in OPENLIBRARY_TYPES:
                    cover_url = await self._search_openlibrary(normalized_title, creator)
                elif media_type in TMDB_TYPES:
                    cover_url = await self._search_tmdb(normalized_title, media_type, year)
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning(
                    "Cover lookup failed for %s (%s): %s",
                    normalized_title,
                    media_type.value,
                    exc,
                )
                cover_url = None
        return cover_url or placeholder_cover_url(media_type)

    async def _search_openlibrary(self, title: str, author: str | None) -> str | None:
        query = f"{title} {author}" if author else title
        response = await self._client.get(
            f"{self._sources.openlibrary_url.rstrip('/')}/search.json",
            params={"q": query, "limit": 1},
        )
        response.raise_for_status()
        docs = response.json().get("docs") or []
        if not docs or not isinstance(docs[0], dict):
            return None
        book = docs[0]
        if book.get("cover_i"):
            return f"{OPENLIBRARY_COVER_BASE_URL}/id/{book['cover_i']}-L.jpg"
        isbns = book.get("isbn") or []
        if isbns:
            return f"{OPENLIBRARY_COVER_BASE_URL}/isbn/{isbns[0]}-L.jpg"
        return None

    async def _search_tmdb(
        self, title: str, media_type: MediaType, year: int | None
    ) -> str | None:
        if not self._sources.tmdb_api_key:
            return None
        is_movie = media_type is MediaType.MOVIE
        endpoint = "/search/movie" if is_movie else "/search/tv"
        params: dict[str, Any] = {
            "query": title,
            "include_adult": "false",
            "language": "es-ES",
            "page": 1,
            "api_key": self._sources.tmdb_api_key,
        }
        if year:
            params["year" if is_movie else "first_air_date_year"] = year

        response = await self._client.get(
            f"{self._sources.tmdb_url.rstrip('/')}{endpoint}", params=params
        )
        response.raise_for_status()
        results = [entry for entry in response.json().get("results") or [] if isinstance(entry, dict)]
        best = self._select_tmdb_match(title, year, results, is_movie)
        if best is None or not best.get("poster_path"):
            return None
        return f"{TMDB_POSTER_BASE_URL}{best['poster_path']}"

    @staticmethod
    def _select_tmdb_match(
        title: str, year: int | None, results: list[dict[str, Any]], is_movie: bool
    ) -> dict[str, Any] | None:
        date_key = "release_date" if is_movie else "first_air_date"
        normalized = title.casefold()
        best: dict[str, Any] | None = None
        for candidate in results:
            name = candidate.get("title") or candidate.get("name")
            if not name:
                continue
            candidate_year = parse_year(candidate.get(date_key))
            if name.casefold() == normalized and (year is None or candidate_year == year):
                return candidate
            if best is None:
                best = candidate
            elif year is not None and candidate_year == year:
                best = candidate
        return best
