"""NormalizedProfile model, the versioned input to every matching stage."""

from datetime import datetime
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator

from src.core.schemas import MIN_PROFILE_VERSION, Platform, RemotePreference, SeniorityLevel

ProfileContractType = Literal["freelance", "contract", "full_time", "part_time", "any"]


class NormalizedSkill(BaseModel):
    canonical_name: str = Field(min_length=1, max_length=50)
    display_name: str = Field(min_length=1, max_length=100)
    level: int = Field(ge=1, le=5)
    years: float | None = Field(default=None, ge=0)


class NormalizedExperience(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    company: str | None = Field(default=None, max_length=200)
    duration_months: int | None = Field(default=None, ge=0)
    is_current: bool = False
    highlights: list[str] = Field(default_factory=list)


class HourlyRate(BaseModel):
    min: float | None = Field(default=None, ge=0)
    max: float | None = Field(default=None, ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)


class FixedBudget(BaseModel):
    min: float | None = Field(default=None, ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)


class NormalizedPreferences(BaseModel):
    platforms: list[Platform] = Field(default_factory=list)
    hourly_rate: HourlyRate = Field(default_factory=HourlyRate)
    fixed_budget: FixedBudget = Field(default_factory=FixedBudget)
    tightness: int = Field(default=3, ge=1, le=5)
    remote_preference: RemotePreference = "flexible"
    contract_type: ProfileContractType = "any"


class NormalizedProfile(BaseModel):
    """Deterministic, LLM-free view of a user's profile at one profile_version."""

    user_id: str = Field(min_length=1)
    team_id: str = Field(min_length=1)
    profile_version: int = Field(ge=MIN_PROFILE_VERSION)
    display_name: str | None = Field(default=None, max_length=200)
    headline: str | None = None
    about: str | None = None
    timezone: str = "UTC"
    total_experience_months: int = Field(default=0, ge=0)
    inferred_seniority: SeniorityLevel = "mid"
    primary_skills: list[NormalizedSkill] = Field(default_factory=list, max_length=10)
    secondary_skills: list[NormalizedSkill] = Field(default_factory=list)
    skill_keywords: list[str] = Field(default_factory=list)
    experiences: list[NormalizedExperience] = Field(default_factory=list)
    title_keywords: list[str] = Field(default_factory=list)
    preferences: NormalizedPreferences = Field(default_factory=NormalizedPreferences)
    normalized_at: datetime = Field(default_factory=datetime.now)

    @field_validator("inferred_seniority", mode="before")
    @classmethod
    def seniority_lowercase(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.lower().strip()
        return v

    @property
    def all_skills(self) -> list[NormalizedSkill]:
        return [*self.primary_skills, *self.secondary_skills]

    @classmethod
    def from_yaml(cls, path: str | Path) -> "NormalizedProfile":
        """Load profile from a YAML file."""
        path = Path(path)
        if not path.exists():
            msg = f"Profile file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)

    def to_yaml(self, path: str | Path) -> None:
        """Write profile to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(mode="json")
        path.write_text(yaml.dump(data, default_flow_style=False, sort_keys=False))
