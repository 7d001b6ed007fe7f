from collections.abc import Iterable, Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

BLANK_FIELD_MESSAGE = 'Key "role" or "content" must be non-empty and not-null'

EXPECTED_BODY_HINT = (
    'Check the request format has correct keys: {"access_token": "...", '
    '"messages": [{"role": "user", "content": "romance, thriller"}]}'
)

Genre = Literal[
    "fantasy",
    "science fiction",
    "mystery",
    "romance",
    "historical fiction",
    "thriller",
    "horror",
    "biography",
    "self help",
    "history",
    "science",
    "non fiction",
    "young adult",
    "graphic novels",
]


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: str
    content: str

    @field_validator("role", "content")
    @classmethod
    def _non_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError(BLANK_FIELD_MESSAGE)
        return value


class RecommendationInput(BaseModel):
    access_token: str
    messages: list[Message]


class BookRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)

    title: str = Field(alias="book_name")
    author: str = Field(alias="author_name")
    genre_tags: list[str]
    description: str
    page_count: int = Field(alias="pages")
    isbn: str
    first_publication_date: str = Field(alias="first_date_of_publication")


class GenreBooks(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)

    genre: Genre
    books: list[BookRecord] = Field(alias="list")


class BookRecommendations(BaseModel):
    """Structured book list returned by the completion provider, grouped by genre."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    data: list[GenreBooks]


def validation_reasons(errors: Iterable[Mapping[str, Any]]) -> list[str]:
    """Flatten pydantic error dicts into ``location: message`` strings."""
    reasons: list[str] = []
    for error in errors:
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        message = str(error.get("msg", "invalid value"))
        message = message.removeprefix("Value error, ")
        reasons.append(f"{location}: {message}" if location else message)
    return reasons


def is_malformed_body(errors: Iterable[Mapping[str, Any]]) -> bool:
    return any(error.get("type") in {"json_invalid", "model_attributes_type"} for error in errors)
