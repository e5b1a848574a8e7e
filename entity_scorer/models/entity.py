"""
Entity and candidate models.

An entity is an opaque id plus an entity-type tag.  Its signal values live
outside this package (see ``signals/``); only the identity is modelled here.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class Entity(BaseModel):
    """Immutable identity of a scored thing (customer, content item, donor…)."""

    model_config = ConfigDict(frozen=True)

    entity_id:   str
    entity_type: str

    @field_validator("entity_id", "entity_type")
    @classmethod
    def non_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("entity_id and entity_type must not be empty.")
        return v.strip()


class Candidate(BaseModel):
    """An entity offered to the ranker.

    Attributes:
        entity_id:   Candidate id; also the final tie-break key.
        entity_type: Optional type tag, checked against the profile's.
        created_at:  Creation time; newer candidates win score ties.
    """

    model_config = ConfigDict(frozen=True)

    entity_id:   str
    entity_type: Optional[str] = None
    created_at:  Optional[datetime] = None

    @field_validator("entity_id")
    @classmethod
    def non_empty_id(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("entity_id must not be empty.")
        return v.strip()


class SignalRecord(BaseModel):
    """One imported signal observation (a row of a signals CSV).

    Attributes:
        entity_id:   Entity the fact belongs to.
        entity_type: Type tag; creates the entity if it does not exist yet.
        signal_name: Signal name.
        value:       Raw numeric value.
        observed_at: When the fact was observed (``None`` = import time).
        created_at:  Entity creation time, applied on first insert only.
    """

    model_config = ConfigDict(frozen=True)

    entity_id:   str
    entity_type: str
    signal_name: str
    value:       float
    observed_at: Optional[datetime] = None
    created_at:  Optional[datetime] = None

    @field_validator("entity_id", "entity_type", "signal_name")
    @classmethod
    def non_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("entity_id, entity_type and signal_name must not be empty.")
        return v.strip()

    @property
    def entity(self) -> Entity:
        return Entity(entity_id=self.entity_id, entity_type=self.entity_type)
