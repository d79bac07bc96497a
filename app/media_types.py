"""Media type definitions shared by the catalog and the autocomplete prompt."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class MediaType(str, Enum):
    """Tag classifying a catalog item."""

    MOVIE = "movie"
    SERIES = "series"
    GAME = "game"
    BOOK = "book"
    ANIME = "anime"
    MANGA = "manga"
    MUSIC = "music"
    PODCAST = "podcast"


@dataclass(frozen=True)
class MediaTypeDefinition:
    """Describes how a media type is phrased and which extra fields apply."""

    media_type: MediaType
    prompt_noun: str
    placeholder_color: str
    placeholder_icon: str
    extended_fields: tuple[str, ...] = ()


MEDIA_TYPE_DEFINITIONS: tuple[MediaTypeDefinition, ...] = (
    MediaTypeDefinition(
        media_type=MediaType.MOVIE,
        prompt_noun="película",
        placeholder_color="4a5568",
        placeholder_icon="🎬",
        extended_fields=("duration_min",),
    ),
    MediaTypeDefinition(
        media_type=MediaType.SERIES,
        prompt_noun="serie de televisión",
        placeholder_color="5a67d8",
        placeholder_icon="📺",
        extended_fields=("seasons", "episodes", "duration_min"),
    ),
    MediaTypeDefinition(
        media_type=MediaType.GAME,
        prompt_noun="videojuego",
        placeholder_color="48bb78",
        placeholder_icon="🎮",
        extended_fields=("platform", "developer", "publisher"),
    ),
    MediaTypeDefinition(
        media_type=MediaType.BOOK,
        prompt_noun="libro",
        placeholder_color="ed8936",
        placeholder_icon="📚",
        extended_fields=("pages", "isbn", "publisher"),
    ),
    MediaTypeDefinition(
        media_type=MediaType.ANIME,
        prompt_noun="anime",
        placeholder_color="ed64a6",
        placeholder_icon="🎌",
        extended_fields=("episodes", "seasons"),
    ),
    MediaTypeDefinition(
        media_type=MediaType.MANGA,
        prompt_noun="manga",
        placeholder_color="f56565",
        placeholder_icon="📖",
        extended_fields=("publisher",),
    ),
    MediaTypeDefinition(
        media_type=MediaType.MUSIC,
        prompt_noun="álbum de música",
        placeholder_color="9f7aea",
        placeholder_icon="🎵",
    ),
    MediaTypeDefinition(
        media_type=MediaType.PODCAST,
        prompt_noun="podcast",
        placeholder_color="38b2ac",
        placeholder_icon="🎙️",
        extended_fields=("episodes",),
    ),
)

_DEFINITIONS_BY_TYPE = {
    definition.media_type: definition for definition in MEDIA_TYPE_DEFINITIONS
}


def get_definition(media_type: MediaType | str) -> MediaTypeDefinition:
    """Return the definition for ``media_type``.

    Raises ``ValueError`` for tags outside the fixed set.
    """

    return _DEFINITIONS_BY_TYPE[MediaType(media_type)]
