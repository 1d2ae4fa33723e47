"""
Decision Ledger — upsert-by-key store of trust-labeled claims.

Behavioral Contract:
- Keyed by (project_id, cycle_no, decision_key); a second write replaces the
  claim and evidence instead of appending history.
- A write that is not itself an explicit confirmation never replaces an
  explicitly confirmed decision (USER_SAID + locked + confirming turn).
- The lock is one-way: once locked, a row stays locked.
- Every row carries at least one evidence ref.
- Conflict flags are recomputed from the latest row per key after every write.
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple

from intake_kernel.models.decision import DecisionItem, LockState, TrustLabel
from intake_kernel.store.store import IntakeStore
from intake_kernel.util import new_id, utc_now

logger = logging.getLogger(__name__)

ConflictRule = Callable[[Dict[str, DecisionItem]], List[Tuple[str, str]]]


def _confirmed_value(latest: Dict[str, DecisionItem], key: str) -> Optional[str]:
    item = latest.get(key)
    if item and item.is_explicitly_confirmed:
        return item.value
    return None


def _payment_outcome_without_monetization(latest: Dict[str, DecisionItem]) -> List[Tuple[str, str]]:
    """Customers are meant to buy, yet the user said nothing is charged."""
    if (
        _confirmed_value(latest, "primary_outcome") == "buy"
        and _confirmed_value(latest, "monetization_path") == "none"
    ):
        return [("monetization_path", "primary_outcome"), ("primary_outcome", "monetization_path")]
    return []


def _payment_capability_without_monetization(latest: Dict[str, DecisionItem]) -> List[Tuple[str, str]]:
    """Payment processing is a launch capability, yet nothing is charged."""
    if (
        _confirmed_value(latest, "launch_capabilities") == "payment_processing"
        and _confirmed_value(latest, "monetization_path") == "none"
    ):
        return [("monetization_path", "launch_capabilities"), ("launch_capabilities", "monetization_path")]
    return []


# Rule registry: each rule reads the latest row per key and returns
# (flagged_key, conflicting_key) pairs. Extend by adding entries.
CONFLICT_RULES: Dict[str, ConflictRule] = {
    "payment_outcome_without_monetization": _payment_outcome_without_monetization,
    "payment_capability_without_monetization": _payment_capability_without_monetization,
}


class DecisionLedger:
    """Ledger operations over the shared intake store."""

    def __init__(self, store: IntakeStore, conflict_rules: Optional[Dict[str, ConflictRule]] = None):
        self.store = store
        self.conflict_rules = conflict_rules if conflict_rules is not None else CONFLICT_RULES

    def latest_by_key(self, project_id: str, cycle_no: int) -> Dict[str, DecisionItem]:
        return {d.decision_key: d for d in self.store.list_decisions(project_id, cycle_no)}

    def upsert(
        self,
        project_id: str,
        cycle_no: int,
        decision_key: str,
        claim: str,
        trust_label: TrustLabel,
        lock_state: LockState = LockState.OPEN,
        confirming_turn_id: Optional[str] = None,
        evidence_refs: Optional[List[str]] = None,
        value: Optional[str] = None,
    ) -> DecisionItem:
        """
        Write the latest claim for a key. Returns the row as stored, which is
        the untouched existing row when the write was suppressed.
        """
        existing = self.store.get_decision(project_id, cycle_no, decision_key)
        confirms = (
            trust_label == TrustLabel.USER_SAID
            and lock_state == LockState.LOCKED
            and bool(confirming_turn_id)
        )

        if existing and existing.is_explicitly_confirmed and not confirms:
            logger.debug(
                "Suppressed %s write to confirmed decision %s", trust_label.value, decision_key
            )
            return existing

        item_id = existing.id if existing else new_id("dec")
        refs = [r for r in (evidence_refs or []) if r and r.strip()]
        if not refs and confirming_turn_id:
            refs = [f"turn:{confirming_turn_id}"]
        if not refs:
            refs = [f"decision:{item_id}"]

        # One-way lock
        if existing and existing.lock_state == LockState.LOCKED:
            lock_state = LockState.LOCKED

        item = DecisionItem(
            id=item_id,
            project_id=project_id,
            cycle_no=cycle_no,
            decision_key=decision_key,
            claim=claim.strip(),
            value=value,
            trust_label=trust_label,
            lock_state=lock_state,
            confirmed_by_turn_id=confirming_turn_id if confirms else (
                existing.confirmed_by_turn_id if existing else None
            ),
            evidence_refs=refs,
            updated_at=utc_now(),
        )
        self.store.save_decision(item)
        self.refresh_conflicts(project_id, cycle_no)
        return self.store.get_decision(project_id, cycle_no, decision_key)

    def refresh_conflicts(self, project_id: str, cycle_no: int) -> Dict[str, str]:
        """Recompute conflict flags for the cycle. Returns {flagged_key: conflict_key}."""
        latest = self.latest_by_key(project_id, cycle_no)
        flagged: Dict[str, str] = {}
        for rule_name, rule in self.conflict_rules.items():
            for key, conflict_key in rule(latest):
                if key not in flagged:
                    flagged[key] = conflict_key
                    logger.info("Conflict rule %s flagged %s against %s", rule_name, key, conflict_key)

        for key, item in latest.items():
            conflict_key = flagged.get(key)
            if item.has_conflict != bool(conflict_key) or item.conflict_key != conflict_key:
                item.has_conflict = bool(conflict_key)
                item.conflict_key = conflict_key
                self.store.save_decision(item)
        return flagged

    def conflicts(self, project_id: str, cycle_no: int) -> List[DecisionItem]:
        return [d for d in self.store.list_decisions(project_id, cycle_no) if d.has_conflict]
