"""Checkpoint — a confirmation gate over machine-derived understanding."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class CheckpointStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    SKIPPED = "skipped"


class CheckpointAction(str, Enum):
    CONFIRM = "confirm"
    REJECT = "reject"
    PARTIAL = "partial"
    SKIP = "skip"


class QuestionOption(BaseModel):
    id: str
    label: str


class Checkpoint(BaseModel):
    """
    Created once per checkpoint_key and resolved exactly once.

    pending -> confirmed | rejected | skipped (all terminal)
    """

    id: str
    project_id: str
    cycle_no: int
    checkpoint_key: str
    artifact_input_id: str
    status: CheckpointStatus = CheckpointStatus.PENDING
    prompt: str
    options: List[QuestionOption] = Field(default_factory=list)
    resolved_by_turn_id: Optional[str] = None
    resolution_action: Optional[CheckpointAction] = None
    correction_text: Optional[str] = None
    created_at: datetime
    resolved_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.status == CheckpointStatus.PENDING
