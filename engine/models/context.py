"""
engine/models/context.py -- Change snapshots and impact records.

A ``ChangeSnapshot`` captures an entity's state immediately before an edit
is committed, the change payload, the dependents found at that moment and,
once analysed, the advisory ``Impact`` list.  Impacts never mutate
anything; they are notes for the author.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import Field

from engine.models.book import AuthorioModel
from engine.utils import generate_id, now_ms


class EntityType(str, Enum):
    CHARACTER = "character"
    CHAPTER = "chapter"
    PLOT = "plot"
    RELATIONSHIP = "relationship"


class ImpactLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Impact(AuthorioModel):
    """Advisory note that a change may need attention elsewhere.

    ``entity_id`` is empty when the impact targets every entity of
    ``target_type`` rather than one specific entity.
    """

    target_type: EntityType
    entity_id: str = ""
    severity: ImpactLevel
    description: str
    suggested_actions: list[str] = Field(default_factory=list)


class ChangeSnapshot(AuthorioModel):
    id: str = Field(default_factory=lambda: generate_id("snapshot"))
    timestamp: int = Field(default_factory=now_ms)
    entity_type: EntityType
    entity_id: str
    previous_state: dict[str, Any] = Field(default_factory=dict)
    changes: Optional[dict[str, Any]] = None
    dependencies: list[str] = Field(default_factory=list)
    impact: list[Impact] = Field(default_factory=list)
    analysed: bool = False
