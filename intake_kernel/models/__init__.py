"""Intake Kernel data models."""

from intake_kernel.models.artifact import (
    ArtifactIngestRun,
    ArtifactInput,
    ArtifactPage,
    ArtifactSummary,
    FetchOutcome,
    IngestResult,
    IngestState,
    VerificationState,
)
from intake_kernel.models.checkpoint import (
    Checkpoint,
    CheckpointAction,
    CheckpointStatus,
    QuestionOption,
)
from intake_kernel.models.contract import (
    CommitResult,
    ContractDoc,
    ContractStatus,
    ContractVersion,
    IssueSeverity,
    ProvenanceLink,
    ProvenanceSourceType,
    Requirement,
    RoleStrength,
    ValidationIssue,
)
from intake_kernel.models.decision import DecisionItem, LockState, TrustLabel
from intake_kernel.models.interview import (
    BucketStatus,
    CheckpointResponse,
    GateIssue,
    QuestionPlan,
    ReadinessBucket,
    ReadinessReport,
    TurnRequest,
    TurnResponse,
    UnresolvedItem,
)
from intake_kernel.models.turn import Actor, Project, Turn

__all__ = [
    "Actor",
    "ArtifactIngestRun",
    "ArtifactInput",
    "ArtifactPage",
    "ArtifactSummary",
    "BucketStatus",
    "Checkpoint",
    "CheckpointAction",
    "CheckpointResponse",
    "CheckpointStatus",
    "CommitResult",
    "ContractDoc",
    "ContractStatus",
    "ContractVersion",
    "DecisionItem",
    "FetchOutcome",
    "GateIssue",
    "IngestResult",
    "IngestState",
    "IssueSeverity",
    "LockState",
    "Project",
    "ProvenanceLink",
    "ProvenanceSourceType",
    "QuestionOption",
    "QuestionPlan",
    "ReadinessBucket",
    "ReadinessReport",
    "Requirement",
    "RoleStrength",
    "Turn",
    "TurnRequest",
    "TurnResponse",
    "TrustLabel",
    "UnresolvedItem",
    "ValidationIssue",
    "VerificationState",
]
