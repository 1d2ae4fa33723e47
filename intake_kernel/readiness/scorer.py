"""
Readiness & Quality Scorer — bucketed completion score and the commit gate.

Pure functions over ledger state, turns, and artifact/checkpoint state.

    core ready    = all four core keys explicitly confirmed
                    AND no ledger entry carries a conflict flag
                    AND no checkpoint is pending
    quality ready = core ready AND (explicit quality_signal confirmation
                    OR >= 3 rich-evidence user turns
                    OR >= 2 rich-evidence turns with >= 6 user turns)
    commit gate   = core ready AND quality ready
"""

import re
from typing import Dict, List, Optional

from intake_kernel.models.artifact import ArtifactInput, IngestState, VerificationState
from intake_kernel.models.checkpoint import Checkpoint
from intake_kernel.models.decision import DecisionItem
from intake_kernel.models.interview import (
    BucketStatus,
    GateIssue,
    ReadinessBucket,
    ReadinessReport,
)
from intake_kernel.models.turn import Actor, Turn

CORE_KEYS = ["business_type", "primary_outcome", "launch_capabilities", "monetization_path"]
QUALITY_KEY = "quality_signal"

CORE_LABELS = {
    "business_type": "Business type",
    "primary_outcome": "Primary outcome",
    "launch_capabilities": "Launch capabilities",
    "monetization_path": "Monetization path",
}

RICH_EVIDENCE_MIN_CHARS = 24
QUALITY_BOOST_TARGET = 5

_URL = re.compile(r"https?://", re.IGNORECASE)
_ECHO_PREFIXES = ("selection:", "artifact verification:")


def is_rich_evidence(text: Optional[str]) -> bool:
    """Long enough to count, and not a selection echo or a bare link."""
    cleaned = (text or "").strip()
    if len(cleaned) < RICH_EVIDENCE_MIN_CHARS:
        return False
    if cleaned.lower().startswith(_ECHO_PREFIXES):
        return False
    return not _URL.search(cleaned)


def count_rich_evidence(turns: List[Turn]) -> int:
    return sum(1 for t in turns if t.actor == Actor.USER and is_rich_evidence(t.raw_text))


def core_confirmed(decisions: Dict[str, DecisionItem]) -> bool:
    return all(decisions.get(k) is not None and decisions[k].is_explicitly_confirmed for k in CORE_KEYS)


def quality_signal_met(decisions: Dict[str, DecisionItem], rich: int, user_turns: int) -> bool:
    explicit = decisions.get(QUALITY_KEY)
    if explicit is not None and explicit.is_explicitly_confirmed:
        return True
    return rich >= 3 or (rich >= 2 and user_turns >= 6)


def _core_bucket(key: str, item: Optional[DecisionItem]) -> ReadinessBucket:
    label = CORE_LABELS[key]
    if item is None:
        return ReadinessBucket(key=key, label=label, status=BucketStatus.MISSING,
                               detail=f"{label} has not been discussed yet.")
    if item.has_conflict:
        return ReadinessBucket(key=key, label=label, status=BucketStatus.IN_PROGRESS,
                               detail=f"{label} contradicts {item.conflict_key}.")
    if item.is_explicitly_confirmed:
        return ReadinessBucket(key=key, label=label, status=BucketStatus.RESOLVED, detail=item.claim)
    return ReadinessBucket(key=key, label=label, status=BucketStatus.IN_PROGRESS,
                           detail=f"{label} is {item.trust_label.value} and not yet confirmed.")


def _website_bucket(artifact: Optional[ArtifactInput], pending: Optional[Checkpoint]) -> ReadinessBucket:
    label = "Website context"
    if artifact is None:
        return ReadinessBucket(key="website_context", label=label, status=BucketStatus.RESOLVED,
                               detail="No website was provided.")
    if pending is not None:
        return ReadinessBucket(key="website_context", label=label, status=BucketStatus.IN_PROGRESS,
                               detail="Waiting for confirmation of the website summary.")
    if artifact.verification_state != VerificationState.UNVERIFIED:
        return ReadinessBucket(key="website_context", label=label, status=BucketStatus.RESOLVED,
                               detail=f"Website understanding {artifact.verification_state.value}.")
    if artifact.ingest_state == IngestState.FAILED:
        return ReadinessBucket(key="website_context", label=label, status=BucketStatus.MISSING,
                               detail=f"Ingestion degraded ({artifact.error_code}).")
    return ReadinessBucket(key="website_context", label=label, status=BucketStatus.IN_PROGRESS,
                           detail="Website ingestion is in progress.")


def score_readiness(
    decisions: Dict[str, DecisionItem],
    turns: List[Turn],
    artifact: Optional[ArtifactInput] = None,
    pending_checkpoint: Optional[Checkpoint] = None,
) -> ReadinessReport:
    user_turns = sum(1 for t in turns if t.actor == Actor.USER)
    rich = count_rich_evidence(turns)
    conflicted = [d for d in decisions.values() if d.has_conflict]

    core_ready = core_confirmed(decisions) and not conflicted and pending_checkpoint is None
    signal = quality_signal_met(decisions, rich, user_turns)
    quality_ready = core_ready and signal

    buckets = [_core_bucket(k, decisions.get(k)) for k in CORE_KEYS]
    buckets.append(_website_bucket(artifact, pending_checkpoint))
    if signal:
        quality_status = BucketStatus.RESOLVED
    elif rich > 0 or QUALITY_KEY in decisions:
        quality_status = BucketStatus.IN_PROGRESS
    else:
        quality_status = BucketStatus.MISSING
    buckets.append(ReadinessBucket(
        key=QUALITY_KEY,
        label="Quality signal",
        status=quality_status,
        detail=f"{rich} rich answer(s) across {user_turns} user turn(s).",
    ))

    blockers: List[GateIssue] = []
    if user_turns == 0:
        blockers.append(GateIssue(code="DISCOVERY_EMPTY", message="No intake answers have been recorded yet."))
    for key in CORE_KEYS:
        item = decisions.get(key)
        if item is None or not item.is_explicitly_confirmed:
            blockers.append(GateIssue(
                code="CORE_DECISION_UNCONFIRMED",
                message=f"{CORE_LABELS[key]} must be explicitly confirmed.",
                decision_key=key,
            ))
        elif not item.evidence_refs:
            blockers.append(GateIssue(
                code="EVIDENCE_MISSING",
                message=f"{CORE_LABELS[key]} has no supporting evidence.",
                decision_key=key,
            ))
    for item in conflicted:
        blockers.append(GateIssue(
            code="CONTRADICTION_UNRESOLVED",
            message=f"{item.decision_key} contradicts {item.conflict_key}.",
            decision_key=item.decision_key,
        ))
    if pending_checkpoint is not None:
        blockers.append(GateIssue(
            code="CHECKPOINT_PENDING",
            message="The website summary is waiting for confirmation.",
        ))
    if not signal:
        blockers.append(GateIssue(
            code="QUALITY_SIGNAL_MISSING",
            message="Add at least one more detailed answer about how the product should work.",
            decision_key=QUALITY_KEY,
        ))

    can_commit = core_ready and quality_ready and not blockers
    resolved = sum(1 for b in buckets if b.status == BucketStatus.RESOLVED)
    next_focus = next((b.key for b in buckets if b.status != BucketStatus.RESOLVED), None)

    return ReadinessReport(
        buckets=buckets,
        score=round(100 * resolved / len(buckets)),
        core_ready=core_ready,
        quality_ready=quality_ready,
        can_commit=can_commit,
        blockers=blockers,
        rich_evidence_turns=rich,
        user_turns=user_turns,
        quality_boost_available=can_commit and rich < QUALITY_BOOST_TARGET,
        next_focus=next_focus,
    )
