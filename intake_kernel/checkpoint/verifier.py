"""
Checkpoint Verifier — gates the interview on explicit confirmation of
machine-derived artifact understanding.

State machine per checkpoint:
    pending -> confirmed | rejected | skipped   (terminal, resolved exactly once)

A checkpoint is identified by hash(canonical_url, ingest_run_id, summary_version):
re-ingesting identical content never spawns a duplicate gate, while a new
summary version always does.
"""

import logging
import re
from typing import List, Optional, Tuple

from intake_kernel.models.artifact import ArtifactInput, IngestState, VerificationState
from intake_kernel.models.checkpoint import (
    Checkpoint,
    CheckpointAction,
    CheckpointStatus,
    QuestionOption,
)
from intake_kernel.store.store import IntakeStore
from intake_kernel.util import new_id, sha256_hex, utc_now

logger = logging.getLogger(__name__)

CHECKPOINT_OPTIONS: List[QuestionOption] = [
    QuestionOption(id="checkpoint:confirm", label="Yes, correct"),
    QuestionOption(id="checkpoint:reject", label="No, incorrect"),
    QuestionOption(id="checkpoint:partial", label="Partially / refine"),
    QuestionOption(id="checkpoint:skip", label="Skip for now"),
]

PENDING_MESSAGE = "Please confirm the website context card to continue."

_OPTION_ACTIONS = {
    "checkpoint:confirm": CheckpointAction.CONFIRM,
    "checkpoint:reject": CheckpointAction.REJECT,
    "checkpoint:partial": CheckpointAction.PARTIAL,
    "checkpoint:skip": CheckpointAction.SKIP,
    "artifact_verify:right": CheckpointAction.CONFIRM,
    "artifact_verify:mostly": CheckpointAction.PARTIAL,
    "artifact_verify:wrong": CheckpointAction.REJECT,
    "artifact_verify:proceed_uncertain": CheckpointAction.SKIP,
}

_FREE_TEXT_PATTERNS: List[Tuple[CheckpointAction, re.Pattern]] = [
    (CheckpointAction.SKIP, re.compile(r"^(skip|not sure|unsure)\b", re.IGNORECASE)),
    (CheckpointAction.REJECT, re.compile(r"^(no|n|wrong|incorrect|not right|that'?s wrong)\b", re.IGNORECASE)),
    (CheckpointAction.PARTIAL, re.compile(r"^(partially|partial|mostly|refine|needs correction)\b", re.IGNORECASE)),
    (CheckpointAction.CONFIRM, re.compile(
        r"^(yes|y|correct|right|that'?s right|looks right|sounds right)\b", re.IGNORECASE
    )),
]


def checkpoint_key(canonical_url: str, ingest_run_id: Optional[str], summary_version: Optional[int]) -> str:
    return sha256_hex({
        "canonical_url": canonical_url,
        "ingest_run_id": ingest_run_id or "none",
        "summary_version": summary_version or 0,
    })


def action_for_option(option_id: Optional[str]) -> Optional[CheckpointAction]:
    return _OPTION_ACTIONS.get((option_id or "").strip().lower())


def classify_free_text(text: Optional[str]) -> Tuple[Optional[CheckpointAction], Optional[str]]:
    """
    Map a free-text answer onto a resolution action by its leading token.
    Returns (action, remainder) where remainder is the text after the token,
    used as correction text for reject/partial.
    """
    cleaned = (text or "").strip()
    for action, pattern in _FREE_TEXT_PATTERNS:
        match = pattern.match(cleaned)
        if match:
            remainder = cleaned[match.end():].lstrip(" ,.:;-!").strip()
            return action, remainder or None
    return None, None


def build_checkpoint_prompt(artifact: ArtifactInput) -> str:
    summary = (artifact.summary_text or "").strip()
    return (
        "Based only on stored extracted website text, here is my current understanding: "
        f"{summary} Is this understanding correct?"
    )


class CheckpointVerifier:
    """Creates and resolves artifact checkpoints."""

    def __init__(self, store: IntakeStore):
        self.store = store

    def ensure_checkpoint(self, artifact: Optional[ArtifactInput]) -> Optional[Checkpoint]:
        """Get-or-create the gate for the artifact's current understanding."""
        if artifact is None:
            return None
        if artifact.verification_state != VerificationState.UNVERIFIED:
            return None
        if artifact.ingest_state not in (IngestState.COMPLETE, IngestState.PARTIAL):
            return None
        if not artifact.summary_text or not artifact.canonical_url:
            return None

        key = checkpoint_key(artifact.canonical_url, artifact.ingest_run_id, artifact.summary_version)
        checkpoint = self.store.insert_checkpoint(Checkpoint(
            id=new_id("ckpt"),
            project_id=artifact.project_id,
            cycle_no=artifact.cycle_no,
            checkpoint_key=key,
            artifact_input_id=artifact.id,
            prompt=build_checkpoint_prompt(artifact),
            options=CHECKPOINT_OPTIONS,
            created_at=utc_now(),
        ))
        return checkpoint

    def resolve(
        self,
        checkpoint: Checkpoint,
        action: CheckpointAction,
        turn_id: str,
        correction_text: Optional[str] = None,
    ) -> Checkpoint:
        """Resolve a pending checkpoint once. Already-resolved checkpoints are returned as-is."""
        if not checkpoint.is_pending:
            logger.debug("Checkpoint %s already %s", checkpoint.id, checkpoint.status.value)
            return checkpoint

        artifact = self.store.get_artifact(checkpoint.artifact_input_id)
        correction = (correction_text or "").strip() or None

        if action == CheckpointAction.CONFIRM:
            checkpoint.status = CheckpointStatus.CONFIRMED
            verification = VerificationState.USER_CONFIRMED
        elif action == CheckpointAction.SKIP:
            checkpoint.status = CheckpointStatus.SKIPPED
            verification = VerificationState.USER_CORRECTED
        else:
            checkpoint.status = CheckpointStatus.REJECTED
            verification = VerificationState.USER_CORRECTED

        checkpoint.resolution_action = action
        checkpoint.resolved_by_turn_id = turn_id
        checkpoint.resolved_at = utc_now()
        if action in (CheckpointAction.REJECT, CheckpointAction.PARTIAL):
            checkpoint.correction_text = correction
        self.store.save_checkpoint(checkpoint)

        if artifact:
            artifact.verification_state = verification
            # A user correction always outranks machine-derived understanding
            if checkpoint.correction_text:
                artifact.summary_text = checkpoint.correction_text
            self.store.save_artifact(artifact)

        self.store.record_audit(checkpoint.project_id, checkpoint.cycle_no, "checkpoint.resolved", {
            "checkpoint_id": checkpoint.id,
            "action": action.value,
            "status": checkpoint.status.value,
            "turn_id": turn_id,
            "corrected": bool(checkpoint.correction_text),
        })
        logger.info("Checkpoint %s resolved: %s", checkpoint.id, checkpoint.status.value)
        return checkpoint
