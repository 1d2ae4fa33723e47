"""Contract models — the committed ten-document requirements packet."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from intake_kernel.models.decision import TrustLabel


class ProvenanceSourceType(str, Enum):
    INTAKE_TURN = "INTAKE_TURN"
    DECISION_ITEM = "DECISION_ITEM"
    ARTIFACT_PAGE = "ARTIFACT_PAGE"
    ARTIFACT_SUMMARY = "ARTIFACT_SUMMARY"
    ROLE_FALLBACK = "ROLE_FALLBACK"


_REF_PREFIXES = {
    "turn": ProvenanceSourceType.INTAKE_TURN,
    "decision": ProvenanceSourceType.DECISION_ITEM,
    "artifact_page": ProvenanceSourceType.ARTIFACT_PAGE,
    "artifact_summary": ProvenanceSourceType.ARTIFACT_SUMMARY,
}


class ProvenanceLink(BaseModel):
    ref: str                                  # e.g. "turn:turn_ab12cd34ef56"
    source_type: ProvenanceSourceType
    source_id: Optional[str] = None

    @classmethod
    def from_ref(cls, ref: str) -> "ProvenanceLink":
        prefix, _, source_id = ref.partition(":")
        source_type = _REF_PREFIXES.get(prefix.strip().lower())
        if source_type is None or not source_id.strip():
            return cls(ref=ref, source_type=ProvenanceSourceType.ROLE_FALLBACK)
        return cls(ref=ref, source_type=source_type, source_id=source_id.strip())


class Requirement(BaseModel):
    """One claim inside a role document."""

    claim: str
    trust_label: str = TrustLabel.UNKNOWN.value   # Kept as str so bad labels reach validation
    provenance_refs: List[str] = Field(default_factory=list)


class ContractDoc(BaseModel):
    role_id: int
    title: str = ""
    body: str = ""
    claims: List[Requirement] = Field(default_factory=list)


class ContractStatus(str, Enum):
    COMMITTED = "committed"


class ContractVersion(BaseModel):
    """Immutable once created. Fingerprint makes commit idempotent."""

    id: str
    project_id: str
    cycle_no: int
    version_number: int
    input_fingerprint: str
    status: ContractStatus = ContractStatus.COMMITTED
    mode: str = "fast"
    engine_version: str
    created_at: datetime


class IssueSeverity(str, Enum):
    BLOCK = "block"
    WARN = "warn"


class ValidationIssue(BaseModel):
    severity: IssueSeverity
    code: str
    message: str
    role_id: Optional[int] = None


class RoleStrength(BaseModel):
    """Per-role entry of a doc-strength snapshot."""

    role_id: int
    word_count: int
    claim_count: int
    provenance_coverage: float
    unknown_claims: int
    weak: bool = False
    strengthened: bool = False


class CommitResult(BaseModel):
    version: ContractVersion
    documents: List[ContractDoc]
    reused_existing_version: bool = False
    warnings: List[ValidationIssue] = Field(default_factory=list)
    strength: List[RoleStrength] = Field(default_factory=list)
