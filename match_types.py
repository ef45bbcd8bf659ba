"""
Data contracts for the mentor/mentee matching engine.

Profiles and the matching model are inputs; MatchScore, MatchingResult and
MatchingOutput are what a run produces. Everything serializes to plain JSON.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# Seniority scale, lowest first.
SENIORITY_SCALE: List[str] = ["S1", "S2", "M1", "M2", "D1", "D2", "VP", "SVP", "LT"]
SENIORITY_RANK: Dict[str, int] = {band: i for i, band in enumerate(SENIORITY_SCALE)}

# Human timezone labels used by the signup forms, as UTC offsets in hours.
TIMEZONE_LABELS: Dict[str, float] = {
    "central europe (cet)": 1,
    "uk / ireland (gmt)": 0,
    "us – pacific time (pst)": -8,
    "us - pacific time (pst)": -8,
    "us – central time (cst)": -6,
    "us - central time (cst)": -6,
    "us – eastern time (est)": -5,
    "us - eastern time (est)": -5,
    "australia (aest)": 10,
}

# Positive criteria, in the order they appear in a score breakdown.
CRITERIA = ["topics", "semantic", "industry", "seniority", "timezone", "language"]

CRITERION_NAMES = {
    "topics": "Topics Match",
    "semantic": "Goals Alignment",
    "industry": "Industry Match",
    "seniority": "Seniority Fit",
    "timezone": "Timezone Compatibility",
    "language": "Language Match",
    "capacity_penalty": "Capacity Penalty",
    "rules": "Rule Adjustments",
}

TOPK = 3


class ModelStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class MatchingMode(str, Enum):
    BATCH = "batch"
    TOP3_PER_MENTEE = "top3_per_mentee"


class RuleType(str, Enum):
    MUST_HAVE = "must_have"
    EXCLUSION = "exclusion"
    BONUS = "bonus"
    PENALTY = "penalty"


class RuleOperator(str, Enum):
    EQ = "="
    NE = "!="
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IN = "in"
    NOT_IN = "not_in"


class RuleActionType(str, Enum):
    EXCLUDE = "exclude"
    REQUIRE = "require"
    POINTS = "points"
    FLAG_APPROVAL = "flag_approval"


class AssignmentStatus(str, Enum):
    UNASSIGNED = "unassigned"
    PROPOSED = "proposed"
    APPROVED = "approved"


# =============================================================================
# PROFILES
# =============================================================================

class _Profile(BaseModel):
    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    id: str
    name: Optional[str] = None
    role: Optional[str] = None
    seniority_band: Optional[str] = None
    timezone: Optional[Union[float, str]] = None
    languages: List[str] = Field(default_factory=list)
    industry: Optional[str] = None
    department: Optional[str] = None
    motivation: Optional[str] = None
    # Free-form attributes that rules may reference (e.g. "mentor.office").
    attributes: Dict[str, Union[str, float, bool, List[str]]] = Field(default_factory=dict)


class MentorProfile(_Profile):
    topics_offered: List[str] = Field(default_factory=list)
    bio_text: Optional[str] = None
    mentoring_style: Optional[str] = None
    capacity_remaining: int = 0


class MenteeProfile(_Profile):
    topics_sought: List[str] = Field(default_factory=list)
    goals_text: Optional[str] = None


# =============================================================================
# MATCHING MODEL
# =============================================================================

class MatchingWeights(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    topics: float = Field(40, ge=0)
    industry: float = Field(15, ge=0)
    seniority: float = Field(10, ge=0)
    semantic: float = Field(20, ge=0)
    timezone: float = Field(5, ge=0)
    language: float = Field(5, ge=0)
    capacity_penalty: float = Field(10, ge=0)


class MatchingFilters(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    min_language_overlap: int = Field(1, ge=0)
    max_timezone_difference: float = Field(3, ge=0)
    require_available_capacity: bool = True


class RuleCondition(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    field: str = Field(min_length=1)
    operator: RuleOperator
    value: Union[float, str, List[Union[float, str]]]


class RuleAction(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    type: RuleActionType
    value: Optional[float] = None
    reason: Optional[str] = None


class MatchingRule(BaseModel):
    id: str
    name: str = ""
    rule_type: RuleType
    condition: RuleCondition
    action: RuleAction
    priority: int = 0
    is_active: bool = True


class MatchingModel(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    id: str
    name: str = "Default"
    version: int = Field(1, ge=1)
    description: Optional[str] = None
    status: ModelStatus = ModelStatus.DRAFT
    weights: MatchingWeights = Field(default_factory=MatchingWeights)
    filters: MatchingFilters = Field(default_factory=MatchingFilters)
    rules: List[MatchingRule] = Field(default_factory=list)
    # Assignments scoring below this are still made but flagged for review.
    approval_threshold: float = Field(40, ge=0, le=100)


# =============================================================================
# SCORING OUTPUT
# =============================================================================

class MatchingFeatures(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    topics_overlap: float = Field(0.0, ge=0.0, le=1.0)
    semantic_similarity: float = Field(0.0, ge=0.0, le=1.0)
    industry_overlap: float = Field(0.0, ge=0.0, le=1.0)
    role_seniority_fit: float = Field(0.0, ge=0.0, le=1.0)
    tz_overlap_bonus: float = Field(0.0, ge=0.0, le=1.0)
    language_bonus: float = Field(0.0, ge=0.0, le=1.0)
    capacity_penalty: float = Field(0.0, ge=0.0, le=1.0)


class ScoreBreakdown(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    criterion: str
    criterion_name: str
    raw_score: float
    max_possible: float
    weight: float
    weighted_score: float


class ConstraintViolation(BaseModel):
    rule_id: str
    rule_name: str
    severity: str  # warning/error
    description: str


class MatchLogistics(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    timezone_mentee: Optional[Union[float, str]] = None
    timezone_mentor: Optional[Union[float, str]] = None
    languages_shared: List[str] = Field(default_factory=list)
    capacity_remaining: Optional[int] = None


class MatchScore(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    total_score: float = Field(ge=0.0, le=100.0)
    features: MatchingFeatures
    score_breakdown: List[ScoreBreakdown] = Field(default_factory=list)
    reasons: List[str] = Field(default_factory=list)
    risks: List[str] = Field(default_factory=list)
    logistics: MatchLogistics = Field(default_factory=MatchLogistics)
    icebreaker: Optional[str] = None
    constraint_violations: List[ConstraintViolation] = Field(default_factory=list)
    is_eligible: bool = True
    needs_approval: bool = False
    approval_reason: Optional[str] = None
    is_embedding_based: bool = False


class Recommendation(BaseModel):
    mentor_id: str
    mentor_name: Optional[str] = None
    score: MatchScore


class ProposedAssignment(BaseModel):
    mentor_id: Optional[str] = None
    mentor_name: Optional[str] = None
    comment: str = ""
    status: AssignmentStatus = AssignmentStatus.UNASSIGNED


class MatchingResult(BaseModel):
    mentee_id: str
    mentee_name: Optional[str] = None
    recommendations: List[Recommendation] = Field(default_factory=list)
    proposed_assignment: Optional[ProposedAssignment] = None


class MatchingStats(BaseModel):
    mentees_total: int = 0
    mentors_total: int = 0
    pairs_evaluated: int = 0
    after_filters: int = 0
    assigned: int = 0
    needs_approval: int = 0


class MatchingOutput(BaseModel):
    mode: MatchingMode
    stats: MatchingStats
    results: List[MatchingResult] = Field(default_factory=list)
    model: MatchingModel
    timestamp: datetime


# =============================================================================
# COHORT / HISTORY / MANUAL REVIEW
# =============================================================================

class MatchingHistoryEntry(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    id: str
    timestamp: datetime
    mode: MatchingMode
    stats: MatchingStats
    model_id: str
    model_version: int
    launched: bool = False
    matches_count: int = 0
    average_score: float = 0.0


class ManualMatch(BaseModel):
    mentee_id: str
    mentee_name: Optional[str] = None
    mentor_id: str
    mentor_name: Optional[str] = None
    confidence: int = Field(3, ge=1, le=5)
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class ManualMatchingOutput(BaseModel):
    matches: List[ManualMatch] = Field(default_factory=list)
    finalized: bool = False


class Cohort(BaseModel):
    id: str
    name: str = ""
    mentees: List[MenteeProfile] = Field(default_factory=list)
    mentors: List[MentorProfile] = Field(default_factory=list)
    matches: Optional[MatchingOutput] = None
    matching_history: List[MatchingHistoryEntry] = Field(default_factory=list)
    manual_matches: Optional[ManualMatchingOutput] = None
