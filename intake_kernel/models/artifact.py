"""Artifact models — referenced external sources and their ingestion history."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class IngestState(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"      # Body was truncated at the byte cap
    COMPLETE = "complete"
    FAILED = "failed"


class VerificationState(str, Enum):
    UNVERIFIED = "unverified"
    USER_CONFIRMED = "user_confirmed"
    USER_CORRECTED = "user_corrected"


class ArtifactInput(BaseModel):
    """One distinct (project, cycle, type, reference) source."""

    id: str
    project_id: str
    cycle_no: int
    type: str = "website"
    reference: str
    canonical_url: Optional[str] = None
    ingest_state: IngestState = IngestState.PENDING
    verification_state: VerificationState = VerificationState.UNVERIFIED
    summary_text: Optional[str] = None
    summary_version: int = 0
    ingest_run_id: Optional[str] = None
    error_code: Optional[str] = None
    updated_at: datetime


class FetchOutcome(BaseModel):
    """Result of a single fetch attempt, redirects included."""

    ok: bool
    final_url: Optional[str] = None
    http_status: Optional[int] = None
    content_type: Optional[str] = None
    body: str = ""
    bytes_read: int = 0
    redirect_count: int = 0
    truncated: bool = False
    error_code: Optional[str] = None
    error_detail: Optional[str] = None
    redirect_location: Optional[str] = None


class ArtifactIngestRun(BaseModel):
    """One fetch attempt. Unique on idempotency_key."""

    id: str
    artifact_input_id: str
    idempotency_key: str
    canonical_url: str
    final_url: Optional[str] = None
    outcome: IngestState
    http_status: Optional[int] = None
    content_type: Optional[str] = None
    bytes_read: int = 0
    redirect_count: int = 0
    truncated: bool = False
    error_code: Optional[str] = None
    summary_id: Optional[str] = None
    page_ids: List[str] = Field(default_factory=list)
    created_at: datetime


class ArtifactPage(BaseModel):
    id: str
    artifact_input_id: str
    url: str
    content_hash: str
    extracted_text: str
    created_at: datetime


class ArtifactSummary(BaseModel):
    """Append-only. A new understanding is a new version, never an edit."""

    id: str
    artifact_input_id: str
    version: int
    summary_text: str
    confidence: float = Field(ge=0.0, le=1.0, default=0.5)
    source_page_ids: List[str] = Field(default_factory=list)
    generated_by: str = "deterministic"    # "llm" | "deterministic"
    created_at: datetime


class IngestResult(BaseModel):
    """What a single ingest() call hands back to the turn engine."""

    state: IngestState
    summary_text: Optional[str] = None
    provenance_refs: List[str] = Field(default_factory=list)
    ingest_run_id: Optional[str] = None
    summary_version: int = 0
    error_code: Optional[str] = None
    status_message: str = ""
    reused: bool = False
