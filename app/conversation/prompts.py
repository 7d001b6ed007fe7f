"""Fixed system instruction and structured-output schema for book recommendations."""

from types import MappingProxyType
from typing import Any, get_args

from app.models.recommendations import Genre

SYSTEM_INSTRUCTION = (
    "You are a book recommending expert with knowledge about all books and "
    "specialization in recommending them.\n"
    "When provided with genres, you will give book recommendations for each genre "
    "separately, including: Book name, Author name, Genre tags, Book description, "
    "no of pages, ISBN, First publication date.\n"
    "For example, if the user says Fiction, Non-fiction, History, provide the list of "
    "fictional books followed by non-fictional and then historical books.\n"
    "User preferences, such as liked or disliked books and personal ratings (1-5), "
    "will influence future recommendations.\n"
    "For three or fewer genres, provide 1 book per genre.\n"
    "Ensure new recommendations are unique by checking previous suggestions."
)

GENRES: tuple[str, ...] = get_args(Genre)

BOOK_FIELDS = (
    "book_name",
    "author_name",
    "genre_tags",
    "description",
    "pages",
    "isbn",
    "first_date_of_publication",
)

_BOOK_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": "Book details containing different attributes",
    "properties": {
        "book_name": {"type": "string", "description": "Title of the book"},
        "author_name": {"type": "string", "description": "Author of the book"},
        "genre_tags": {
            "type": "array",
            "description": "Different genres to which this book can belong",
            "items": {"type": "string"},
        },
        "description": {
            "type": "string",
            "description": "A 1 line description for the book",
        },
        "pages": {"type": "integer", "description": "Number of the pages in book"},
        "isbn": {"type": "string", "description": "Unique isbn of the book"},
        "first_date_of_publication": {
            "type": "string",
            "description": "First date on which book was published",
        },
    },
    "additionalProperties": False,
    "required": list(BOOK_FIELDS),
}

RECOMMENDATION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "data": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "genre": {
                        "type": "string",
                        "description": "Genre associated to a book list",
                        "enum": list(GENRES),
                    },
                    "list": {
                        "type": "array",
                        "description": "List of books for particular genre",
                        "items": _BOOK_SCHEMA,
                    },
                },
                "additionalProperties": False,
                "required": ["genre", "list"],
            },
        }
    },
    "additionalProperties": False,
    "required": ["data"],
}

RESPONSE_FORMAT: MappingProxyType[str, Any] = MappingProxyType(
    {
        "type": "json_schema",
        "json_schema": {
            "name": "book_recommendation",
            "description": "List of generated book recommendation details seperated genre wise",
            "schema": RECOMMENDATION_SCHEMA,
            "strict": True,
        },
    }
)
