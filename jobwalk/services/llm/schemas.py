from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

PHASES = {"Underground", "Rough-In", "Top-Out", "Trim", "Final", "Other"}
SEVERITIES = {"low", "medium", "high", "critical"}


def _as_optional_str(v: Any) -> Any:
    if v is None:
        return None
    if isinstance(v, (int, float)):
        return str(v)
    if isinstance(v, str):
        return v.strip() or None
    return v


class ActionItemOut(BaseModel):
    description: str = Field(min_length=1, max_length=500)
    assignee: Optional[str] = None
    priority: str = "normal"
    due: Optional[str] = None

    @field_validator("priority", mode="before")
    @classmethod
    def _priority(cls, v: Any) -> str:
        p = str(v or "normal").strip().lower()
        return p if p in {"low", "normal", "high", "critical"} else "normal"

    @field_validator("due", "assignee", mode="before")
    @classmethod
    def _opt(cls, v: Any) -> Any:
        return _as_optional_str(v)


class FixtureChanges(BaseModel):
    mentioned_count: Optional[int] = None
    details: List[str] = Field(default_factory=list)


class SessionSummary(BaseModel):
    model_config = ConfigDict(extra="allow")

    builder_name: Optional[str] = None
    subdivision: Optional[str] = None
    lot_number: Optional[str] = None
    address: Optional[str] = None
    phase: Optional[str] = None

    key_decisions: List[str] = Field(default_factory=list)
    action_items: List[ActionItemOut] = Field(default_factory=list)
    fixture_changes: Optional[FixtureChanges] = None
    flags: List[str] = Field(default_factory=list)
    notes: Optional[str] = None

    @field_validator("builder_name", "subdivision", "lot_number", "address", "notes", mode="before")
    @classmethod
    def _opt(cls, v: Any) -> Any:
        return _as_optional_str(v)

    @field_validator("phase", mode="before")
    @classmethod
    def _phase(cls, v: Any) -> Any:
        v = _as_optional_str(v)
        if v is None:
            return None
        return v if v in PHASES else "Other"

    @field_validator("key_decisions", "flags", "action_items", mode="before")
    @classmethod
    def _list(cls, v: Any) -> Any:
        return v or []

    def identifies_job(self) -> bool:
        return any([self.builder_name, self.subdivision, self.lot_number])


class DiscrepancyItem(BaseModel):
    type: str = "other"
    description: str = Field(min_length=1)
    severity: str = "medium"
    plan_says: Optional[str] = None
    conversation_says: Optional[str] = None
    recommendation: Optional[str] = None

    @field_validator("severity", mode="before")
    @classmethod
    def _severity(cls, v: Any) -> str:
        s = str(v or "medium").strip().lower()
        return s if s in SEVERITIES else "medium"


class DiscrepancyReport(BaseModel):
    has_discrepancies: bool = False
    items: List[DiscrepancyItem] = Field(default_factory=list)
    recommendation: Optional[str] = None
    match_score: Optional[float] = None

    @field_validator("items", mode="before")
    @classmethod
    def _items(cls, v: Any) -> Any:
        return v or []

    def has_urgent(self) -> bool:
        return any(i.severity in {"high", "critical"} for i in self.items)


class PlanFixture(BaseModel):
    type: str
    count: Optional[int] = None
    locations: List[str] = Field(default_factory=list)


class PlanAnalysis(BaseModel):
    model_config = ConfigDict(extra="allow")

    fixtures: List[PlanFixture] = Field(default_factory=list)
    rooms: List[Any] = Field(default_factory=list)
    notes: Optional[str] = None

    @field_validator("fixtures", "rooms", mode="before")
    @classmethod
    def _list(cls, v: Any) -> Any:
        return v or []
