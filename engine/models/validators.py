"""
engine/models/validators.py -- Structural and reference validators.

Two concerns live here:

    - Structural validation of the offline store blob.  Before a blob read
      from disk is trusted it must pass a JSON Schema check (required fields
      present, arrays are arrays).  Pydantic parsing happens afterwards.
    - Lenient relationship-target resolution.  A relationship should point at
      a character in the same book, but nothing enforces it; rendering code
      drops unresolved targets silently, and ``find_dangling_relationships``
      reports them for diagnostics.

Usage::

    from engine.models.validators import validate_app_data

    issues = validate_app_data(raw_blob)
    if not issues:
        data = AppData.model_validate(raw_blob)
"""

from __future__ import annotations

import logging
from typing import Any

import jsonschema

from engine.models.book import Book, Character, CharacterRelationship

logger = logging.getLogger(__name__)

_NON_EMPTY = {"type": "string", "minLength": 1}

APP_DATA_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["books"],
    "properties": {
        "books": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "metadata", "characters", "chapters"],
                "properties": {
                    "id": _NON_EMPTY,
                    "metadata": {
                        "type": "object",
                        "required": ["title"],
                        "properties": {"title": {"type": "string"}},
                    },
                    "characters": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "required": ["id", "name", "type"],
                            "properties": {
                                "id": _NON_EMPTY,
                                "name": {"type": "string"},
                                "type": _NON_EMPTY,
                            },
                        },
                    },
                    "chapters": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "required": ["id", "title", "content"],
                            "properties": {
                                "id": _NON_EMPTY,
                                "title": {"type": "string"},
                                "content": {"type": "string"},
                            },
                        },
                    },
                },
            },
        },
    },
}

_VALIDATOR = jsonschema.Draft7Validator(APP_DATA_SCHEMA)


# ------------------------------------------------------------------
# Structural validation
# ------------------------------------------------------------------

def validate_app_data(data: Any) -> list[str]:
    """Return human-readable problems with an offline store blob.

    An empty list means the blob is structurally sound.
    """
    return [_humanize_error(err) for err in sorted(_VALIDATOR.iter_errors(data), key=str)]


def is_valid_app_data(data: Any) -> bool:
    return _VALIDATOR.is_valid(data)


def _humanize_error(error: jsonschema.ValidationError) -> str:
    path = "/".join(str(p) for p in error.absolute_path) or "(root)"
    return f"{path}: {error.message}"


# ------------------------------------------------------------------
# Relationship targets
# ------------------------------------------------------------------

def resolve_relationships(character: Character, book: Book) -> list[CharacterRelationship]:
    """Return the character's relationships whose target exists in *book*."""
    known = {c.id for c in book.characters}
    return [rel for rel in character.relationships if rel.target_character_id in known]


def find_dangling_relationships(book: Book) -> list[str]:
    """Describe every relationship whose target is not a character of *book*."""
    known = {c.id for c in book.characters}
    issues: list[str] = []
    for character in book.characters:
        for rel in character.relationships:
            if rel.target_character_id not in known:
                issues.append(
                    f"'{character.name}' has a {rel.relationship_type or 'relationship'} "
                    f"pointing at '{rel.target_character_id}', but no character "
                    f"with that ID exists."
                )
    return issues
