"""Interview models — question plans, readiness, and turn responses."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from intake_kernel.models.checkpoint import CheckpointAction, QuestionOption


class QuestionPlan(BaseModel):
    """The next prompt the funnel wants to ask, plus the branch that chose it."""

    key: str                                # Decision key addressed, e.g. "primary_outcome"
    prompt: str
    options: List[QuestionOption] = Field(default_factory=list)
    branch: str
    posture: str = ""
    move: str = ""


class BucketStatus(str, Enum):
    RESOLVED = "resolved"
    MISSING = "missing"
    IN_PROGRESS = "in_progress"


class ReadinessBucket(BaseModel):
    key: str
    label: str
    status: BucketStatus
    detail: str = ""


class GateIssue(BaseModel):
    """One machine-readable reason the commit gate is closed."""

    code: str
    message: str
    decision_key: Optional[str] = None


class ReadinessReport(BaseModel):
    buckets: List[ReadinessBucket]
    score: int
    core_ready: bool
    quality_ready: bool
    can_commit: bool
    blockers: List[GateIssue] = Field(default_factory=list)
    rich_evidence_turns: int = 0
    user_turns: int = 0
    quality_boost_available: bool = False
    next_focus: Optional[str] = None


class CheckpointResponse(BaseModel):
    checkpoint_id: Optional[str] = None
    action: CheckpointAction
    correction_text: Optional[str] = None


class TurnRequest(BaseModel):
    """Exactly what a client may send to advance the interview."""

    user_message: Optional[str] = None
    selected_option_id: Optional[str] = None
    none_fit_text: Optional[str] = None
    checkpoint_response: Optional[CheckpointResponse] = None
    artifact_ref: Optional[str] = None
    artifact_type: str = "website"
    force_refresh: bool = False


class UnresolvedItem(BaseModel):
    decision_key: str
    claim: str
    trust_label: str
    reason: str


class TurnResponse(BaseModel):
    user_turn_id: str
    assistant_turn_id: str
    prompt: str
    options: List[QuestionOption] = Field(default_factory=list)
    plan_key: str
    branch: str
    posture: str
    move: str
    unresolved: List[UnresolvedItem] = Field(default_factory=list)
    readiness: ReadinessReport
    can_commit: bool
    artifact_status: Optional[str] = None
    ingestion_degraded: bool = False
    checkpoint_id: Optional[str] = None
