"""Decision Item — one trust-labeled claim about the product."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class TrustLabel(str, Enum):
    USER_SAID = "USER_SAID"    # Explicitly stated or selected by the user
    ASSUMED = "ASSUMED"        # Inferred by the system
    UNKNOWN = "UNKNOWN"        # Still unresolved


class LockState(str, Enum):
    OPEN = "open"
    LOCKED = "locked"


class DecisionItem(BaseModel):
    """
    Ledger row keyed by (project_id, cycle_no, decision_key).

    A second write to the same key replaces claim and evidence. The lock is a
    one-way transition and is only set by a turn that explicitly confirms it.
    """

    id: str
    project_id: str
    cycle_no: int
    decision_key: str
    claim: str
    value: Optional[str] = None              # Normalized option value, e.g. "book"
    trust_label: TrustLabel = TrustLabel.UNKNOWN
    lock_state: LockState = LockState.OPEN
    confirmed_by_turn_id: Optional[str] = None
    evidence_refs: List[str] = Field(default_factory=list)
    has_conflict: bool = False
    conflict_key: Optional[str] = None
    updated_at: datetime

    @property
    def is_explicitly_confirmed(self) -> bool:
        return (
            self.trust_label == TrustLabel.USER_SAID
            and self.lock_state == LockState.LOCKED
            and bool(self.confirmed_by_turn_id)
        )
