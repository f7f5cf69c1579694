"""Typed values passed between pipeline stages."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


@dataclass
class LeadRecord:
    """A lead row: primary key plus every other column as an attribute."""
    id: str
    attributes: dict[str, Any] = field(default_factory=dict)

    def get(self, name: str) -> Any:
        return self.attributes.get(name)


@dataclass
class CandidateMatch:
    """Nearest-neighbor hit; smaller distance means more similar."""
    student_id: str
    text: str
    distance: float


@dataclass
class MatchRecord:
    """A persisted (lead, student) match."""
    lead_id: str
    student_id: str
    reason: str


class RankedMatch(BaseModel):
    """A student chosen by the re-ranking model, with a bilingual reason."""
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    matched_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("mongoId", "matchedId", "matched_id"),
        serialization_alias="matchedId",
    )
    reason: str = Field(min_length=1)


class RerankResponse(BaseModel):
    """Structured output expected from the re-ranking model."""
    top_matches: list[RankedMatch] = Field(
        validation_alias=AliasChoices("topMatches", "top_matches"),
    )
