"""Core data models for the job-matching pipeline.

Versioned artifacts (SearchSpec, ProfileEmbedding, JobScore) are frozen:
a refresh creates a new artifact under the new profile_version instead of
mutating the old one.
"""

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

MIN_PROFILE_VERSION = 1
MAX_PROFILE_VERSION = 1_000_000

Platform = Literal["upwork", "linkedin"]
SeniorityLevel = Literal["entry", "junior", "mid", "senior", "lead", "principal"]
RemotePreference = Literal["remote_only", "hybrid", "onsite", "flexible"]
ContractType = Literal["freelance", "contract", "full_time", "part_time"]
EnrichedSeniority = Literal["junior", "mid", "senior"]

StaleDataType = Literal["search_spec", "embedding", "score"]
RecomputeItemType = Literal[
    "normalized_profile", "search_spec", "profile_embedding", "job_scores"
]
QueueStatus = Literal["pending", "processing", "completed", "failed"]
RunStatus = Literal["queued", "running", "succeeded", "failed"]
AgentType = Literal["job_search", "job_enrichment", "search_spec"]
RunTrigger = Literal["manual", "scheduled", "recompute"]
ChangeType = Literal[
    "skill_added",
    "skill_removed",
    "skill_updated",
    "experience_added",
    "experience_removed",
    "experience_updated",
    "education_added",
    "education_removed",
    "education_updated",
    "preferences_updated",
    "profile_info_updated",
    "bulk_update",
]

TERMINAL_RUN_STATUSES: frozenset[str] = frozenset({"succeeded", "failed"})


# ---------------------------------------------------------------------------
# Versioning
# ---------------------------------------------------------------------------


class StalenessVerdict(BaseModel):
    """Result of comparing an artifact's version to the current profile version."""

    model_config = ConfigDict(frozen=True)

    is_stale: bool
    data_version: int
    current_version: int
    version_gap: int = Field(ge=0)
    reason: str | None = None


class VersionValidation(BaseModel):
    """Outcome of validate_version_update: valid, or the reason it is not."""

    model_config = ConfigDict(frozen=True)

    valid: bool
    error: str | None = None


class StaleItem(BaseModel):
    """A versioned artifact that is behind the user's current profile version."""

    model_config = ConfigDict(frozen=True)

    id: str
    data_type: StaleDataType
    profile_version: int = Field(ge=MIN_PROFILE_VERSION)
    version_gap: int = Field(gt=0)
    created_at: datetime
    job_id: str | None = None


class ProfileVersionChange(BaseModel):
    """Audit row written on every version bump."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    team_id: str
    user_id: str
    from_version: int = Field(ge=MIN_PROFILE_VERSION)
    to_version: int = Field(ge=MIN_PROFILE_VERSION)
    change_type: ChangeType
    change_details: dict[str, Any] | None = None
    changed_at: datetime = Field(default_factory=datetime.now)


# ---------------------------------------------------------------------------
# Search spec
# ---------------------------------------------------------------------------


class WeightedKeyword(BaseModel):
    model_config = ConfigDict(frozen=True)

    keyword: str = Field(min_length=1, max_length=100)
    weight: int = Field(ge=1, le=10)


class LocationPreference(BaseModel):
    model_config = ConfigDict(frozen=True)

    country_code: str | None = Field(default=None, min_length=2, max_length=2)
    city: str | None = Field(default=None, max_length=100)
    region: str | None = Field(default=None, max_length=100)


class SearchSpecFields(BaseModel):
    """Search parameters shared by the generator output and the stored spec."""

    model_config = ConfigDict(frozen=True)

    title_keywords: list[WeightedKeyword] = Field(min_length=1, max_length=10)
    skill_keywords: list[WeightedKeyword] = Field(min_length=1, max_length=20)
    negative_keywords: list[Annotated[str, Field(min_length=1, max_length=100)]] = Field(
        default_factory=list, max_length=10
    )
    locations: list[LocationPreference] = Field(default_factory=list, max_length=5)
    seniority_levels: list[SeniorityLevel] = Field(default_factory=list, max_length=6)
    remote_preference: RemotePreference
    contract_types: list[ContractType] = Field(min_length=1, max_length=4)
    hourly_min: float | None = Field(default=None, ge=0)
    hourly_max: float | None = Field(default=None, ge=0)
    fixed_budget_min: float | None = Field(default=None, ge=0)


class SearchSpec(SearchSpecFields):
    """A generated search specification, identified by (user_id, profile_version)."""

    user_id: str
    team_id: str
    profile_version: int = Field(ge=MIN_PROFILE_VERSION, le=MAX_PROFILE_VERSION)
    platforms: list[Platform] = Field(default_factory=list)
    max_results_per_platform: int = Field(default=100, ge=1)
    generated_at: datetime = Field(default_factory=datetime.now)


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


class RawJob(BaseModel):
    """A scraped job posting as received from a source.

    Stored once and never modified. Unknown source fields are kept so that
    later normalizers can use them.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    platform: Platform
    platform_job_id: str = Field(min_length=1)
    title: str
    description: str = ""
    url: str | None = None
    company_name: str | None = None
    skills: list[str] = Field(default_factory=list)
    budget_type: Literal["hourly", "fixed", "unknown"] = "unknown"
    hourly_min: float | None = None
    hourly_max: float | None = None
    fixed_budget_min: float | None = None
    fixed_budget_max: float | None = None
    client_rating: float | None = None
    client_hires: int | None = None
    client_payment_verified: bool | None = None

    @property
    def job_id(self) -> str:
        """Stable id used across enrichment and ranking."""
        return f"{self.platform}:{self.platform_job_id}"


class EnrichedJob(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    ai_seniority: EnrichedSeniority
    ai_summary: str
    description_md: str


class ScoreBreakdown(BaseModel):
    """The five 0-100 sub-scores behind a match score."""

    model_config = ConfigDict(frozen=True)

    skill_match: float = Field(ge=0.0, le=100.0)
    budget_fit: float = Field(ge=0.0, le=100.0)
    client_quality: float = Field(ge=0.0, le=100.0)
    scope_fit: float = Field(ge=0.0, le=100.0)
    win_probability: float = Field(ge=0.0, le=100.0)


class RankedJob(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    score: float = Field(ge=0.0, le=100.0)
    breakdown: ScoreBreakdown
    reasoning: str = ""


class JobScore(BaseModel):
    """A persisted ranking, keyed by (job_id, user_id, profile_version, tightness)."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    team_id: str
    user_id: str
    job_id: str
    profile_version: int = Field(ge=MIN_PROFILE_VERSION)
    tightness: int = Field(ge=1, le=5)
    score: float = Field(ge=0.0, le=100.0)
    breakdown: ScoreBreakdown
    reasoning: str = ""
    agent_run_id: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)


class ProfileEmbedding(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int | None = None
    team_id: str
    user_id: str
    profile_version: int = Field(ge=MIN_PROFILE_VERSION)
    model: str
    embedding: list[float]
    created_at: datetime = Field(default_factory=datetime.now)


# ---------------------------------------------------------------------------
# Queue and runs
# ---------------------------------------------------------------------------


class RecomputeQueueItem(BaseModel):
    """A unit of pending recomputation work triggered by staleness."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    team_id: str
    user_id: str
    item_type: RecomputeItemType
    item_id: str | None = None
    triggered_by_version: int = Field(ge=MIN_PROFILE_VERSION)
    priority: int = Field(default=5, ge=1, le=10)
    status: QueueStatus = "pending"
    error: str | None = None
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=3, ge=1)
    created_at: datetime = Field(default_factory=datetime.now)
    started_at: datetime | None = None
    completed_at: datetime | None = None


class AgentRun(BaseModel):
    """One tracked asynchronous orchestration invocation."""

    model_config = ConfigDict(frozen=True)

    id: str
    team_id: str
    user_id: str | None = None
    agent_type: AgentType
    trigger: RunTrigger = "manual"
    status: RunStatus = "queued"
    inputs: dict[str, Any] = Field(default_factory=dict)
    outputs: dict[str, Any] | None = None
    error_text: str | None = None
    trigger_run_id: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES
