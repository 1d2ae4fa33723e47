"""
Turn Engine — one interview step, end to end.

Each call to advance() runs the same sequence:
1. RECORD: append the user turn (selections as "selection:<id>")
2. REMEMBER: store a semantic entry when an embedding is available
3. GROUND: set up the referenced artifact and ingest it if needed
4. GATE: resolve a pending checkpoint, then ensure one for new understanding
5. INTERPRET: write the ledger entries the turn implies
6. SCORE: compute readiness and the commit gate
7. PLAN: choose the next question, optionally personalized
8. REPLY: append the assistant turn and record state, snapshot, and audit
"""

import logging
from typing import List, Optional, Tuple

from intake_kernel.checkpoint.verifier import CheckpointVerifier, action_for_option, classify_free_text
from intake_kernel.config import IntakeSettings
from intake_kernel.errors import InputValidationError, NotFoundError
from intake_kernel.funnel.control import personalize_prompt
from intake_kernel.funnel.funnel import plan_next, record_turn_meaning
from intake_kernel.ingestion.engine import ArtifactIngestor
from intake_kernel.ingestion.fetcher import WebFetcher
from intake_kernel.ingestion.urls import extract_first_url
from intake_kernel.ledger.ledger import DecisionLedger
from intake_kernel.llm.provider import LLMProvider, safe_embed
from intake_kernel.models.artifact import ArtifactInput, IngestResult, IngestState
from intake_kernel.models.checkpoint import Checkpoint
from intake_kernel.models.decision import DecisionItem, TrustLabel
from intake_kernel.models.interview import CheckpointResponse, TurnRequest, TurnResponse, UnresolvedItem
from intake_kernel.models.turn import Actor, Turn
from intake_kernel.readiness.scorer import score_readiness
from intake_kernel.store.store import IntakeStore

logger = logging.getLogger(__name__)

SEMANTIC_MIN_CHARS = 12
MARKER_KEYS = {"latest_user_intent"}


def _free_text(request: TurnRequest) -> Optional[str]:
    text = (request.user_message or "").strip() or (request.none_fit_text or "").strip()
    return text or None


def user_turn_text(request: TurnRequest) -> str:
    """The raw text stored for the user's side of the turn."""
    text = _free_text(request)
    if text:
        return text
    if request.selected_option_id and request.selected_option_id.strip():
        return f"selection:{request.selected_option_id.strip()}"
    if request.checkpoint_response is not None:
        response = request.checkpoint_response
        correction = (response.correction_text or "").strip()
        return f"artifact verification: {response.action.value}" + (f" {correction}" if correction else "")
    return (request.artifact_ref or "").strip()


def unresolved_items(decisions: List[DecisionItem]) -> List[UnresolvedItem]:
    """Everything the user has not explicitly confirmed, UNKNOWNs first."""
    items = []
    for d in decisions:
        if d.decision_key in MARKER_KEYS or d.is_explicitly_confirmed:
            continue
        if d.trust_label == TrustLabel.UNKNOWN:
            reason = "unknown"
        elif d.trust_label == TrustLabel.ASSUMED:
            reason = "assumed"
        else:
            reason = "not_confirmed"
        items.append(UnresolvedItem(
            decision_key=d.decision_key,
            claim=d.claim,
            trust_label=d.trust_label.value,
            reason=reason,
        ))
    return sorted(items, key=lambda i: (i.reason != "unknown", i.decision_key))


class TurnEngine:
    """Advances one project cycle by one user turn."""

    def __init__(
        self,
        store: IntakeStore,
        llm: LLMProvider,
        fetcher: WebFetcher,
        settings: IntakeSettings,
        ledger: Optional[DecisionLedger] = None,
    ):
        self.store = store
        self.llm = llm
        self.settings = settings
        self.ledger = ledger or DecisionLedger(store)
        self.ingestor = ArtifactIngestor(store, fetcher, llm, settings)
        self.verifier = CheckpointVerifier(store)

    def advance(self, project_id: str, cycle_no: int, request: TurnRequest) -> TurnResponse:
        if self.store.get_project(project_id) is None:
            raise NotFoundError(f"Project {project_id} not found", code="PROJECT_NOT_FOUND")

        free_text = _free_text(request)
        has_input = (
            free_text
            or (request.selected_option_id or "").strip()
            or request.checkpoint_response is not None
            or (request.artifact_ref or "").strip()
        )
        if not has_input:
            raise InputValidationError(
                "A message, a selected option, a checkpoint response, or an artifact reference is required.",
                code="USER_MESSAGE_REQUIRED",
            )
        target = self._checkpoint_target(project_id, cycle_no, request.checkpoint_response)

        # Step 1: record
        user_turn = self.store.append_turn(project_id, cycle_no, Actor.USER, user_turn_text(request))
        logger.info("Recorded user turn %s (#%d) for %s/%d",
                    user_turn.id, user_turn.turn_index, project_id, cycle_no)

        # Step 2: remember
        if free_text and len(free_text) >= SEMANTIC_MIN_CHARS:
            embedding = safe_embed(self.llm, free_text)
            if embedding:
                self.store.record_semantic_entry(project_id, cycle_no, user_turn.id, free_text, embedding)

        # Step 3: ground
        artifact, ingest_result = self._ground(project_id, cycle_no, request, free_text)

        # Step 4: gate
        pending, consumed = self._resolve_checkpoint(project_id, cycle_no, request, free_text, user_turn, target)
        if artifact is not None:
            artifact = self.store.get_artifact(artifact.id)
            if pending is None:
                pending = self.verifier.ensure_checkpoint(artifact)
                if pending is not None and pending.is_pending:
                    logger.info("Checkpoint %s awaiting confirmation", pending.id)
                else:
                    pending = None

        # Step 5: interpret
        if not consumed:
            record_turn_meaning(
                self.ledger,
                user_turn,
                request.selected_option_id,
                free_text,
                checkpoint_pending=pending is not None,
            )

        # Step 6: score
        decisions = self.ledger.latest_by_key(project_id, cycle_no)
        turns = self.store.list_turns(project_id, cycle_no)
        readiness = score_readiness(decisions, turns, artifact, pending)

        # Step 7: plan
        plan = plan_next(
            decisions,
            readiness,
            artifact=artifact,
            pending_checkpoint=pending,
            selected_option_id=request.selected_option_id,
            free_text=None if consumed else free_text,
        )
        intent = decisions.get("latest_user_intent")
        plan = personalize_prompt(self.llm, plan, intent.claim if intent else None)

        # Step 8: reply
        assistant_turn = self.store.append_turn(project_id, cycle_no, Actor.ASSISTANT, plan.prompt)
        self.store.record_interview_state(project_id, cycle_no, assistant_turn.id, plan.branch, {
            "plan_key": plan.key,
            "posture": plan.posture,
            "move": plan.move,
            "option_ids": [o.id for o in plan.options],
            "user_turn_id": user_turn.id,
        })
        self.store.record_readiness_snapshot(
            project_id, cycle_no, assistant_turn.id, readiness.score, readiness.model_dump(mode="json")
        )
        self.store.record_audit(project_id, cycle_no, "turn.advanced", {
            "user_turn_id": user_turn.id,
            "assistant_turn_id": assistant_turn.id,
            "branch": plan.branch,
            "score": readiness.score,
            "can_commit": readiness.can_commit,
            "checkpoint_id": pending.id if pending else None,
        })

        return TurnResponse(
            user_turn_id=user_turn.id,
            assistant_turn_id=assistant_turn.id,
            prompt=plan.prompt,
            options=plan.options,
            plan_key=plan.key,
            branch=plan.branch,
            posture=plan.posture,
            move=plan.move,
            unresolved=unresolved_items(list(decisions.values())),
            readiness=readiness,
            can_commit=readiness.can_commit and pending is None,
            artifact_status=ingest_result.status_message if ingest_result else None,
            ingestion_degraded=ingest_result is not None and ingest_result.state == IngestState.FAILED,
            checkpoint_id=pending.id if pending else None,
        )

    def _ground(
        self, project_id: str, cycle_no: int, request: TurnRequest, free_text: Optional[str]
    ) -> Tuple[Optional[ArtifactInput], Optional[IngestResult]]:
        """Find the artifact this turn is about and ingest it when needed."""
        reference = (request.artifact_ref or "").strip() or extract_first_url(free_text or "")
        if reference:
            artifact = self.store.get_or_create_artifact(project_id, cycle_no, request.artifact_type, reference)
        else:
            artifact = self.store.latest_artifact(project_id, cycle_no)
        if artifact is None:
            return None, None

        if not (reference or request.force_refresh):
            return artifact, None
        if not self.ingestor.requires_ingestion(artifact, request.force_refresh):
            return artifact, None

        result = self.ingestor.ingest(artifact, force_refresh=request.force_refresh)
        if result.state == IngestState.FAILED:
            logger.warning("Ingestion degraded for %s: %s", artifact.reference, result.error_code)
        return self.store.get_artifact(artifact.id), result

    def _checkpoint_target(
        self,
        project_id: str,
        cycle_no: int,
        response: Optional[CheckpointResponse],
    ) -> Optional[Checkpoint]:
        """Look up the checkpoint an explicit response refers to, before anything is recorded."""
        if response is None:
            return None
        if response.checkpoint_id:
            target = self.store.get_checkpoint(response.checkpoint_id)
        else:
            target = self.store.pending_checkpoint(project_id, cycle_no)
        if target is None or target.project_id != project_id or target.cycle_no != cycle_no:
            raise NotFoundError("Checkpoint not found", code="CHECKPOINT_NOT_FOUND")
        return target

    def _resolve_checkpoint(
        self,
        project_id: str,
        cycle_no: int,
        request: TurnRequest,
        free_text: Optional[str],
        user_turn: Turn,
        target: Optional[Checkpoint] = None,
    ) -> Tuple[Optional[Checkpoint], bool]:
        """
        Apply this turn to the pending checkpoint, if any.
        Returns (still-pending checkpoint or None, whether the free text was consumed).
        """
        pending = self.store.pending_checkpoint(project_id, cycle_no)

        if request.checkpoint_response is not None:
            response = request.checkpoint_response
            self.verifier.resolve(target, response.action, user_turn.id, response.correction_text or free_text)
            return self.store.pending_checkpoint(project_id, cycle_no), True

        if pending is None:
            return None, False

        action = action_for_option(request.selected_option_id)
        if action is not None:
            self.verifier.resolve(pending, action, user_turn.id, free_text)
            return self.store.pending_checkpoint(project_id, cycle_no), True

        action, remainder = classify_free_text(free_text)
        if action is not None:
            self.verifier.resolve(pending, action, user_turn.id, remainder)
            return self.store.pending_checkpoint(project_id, cycle_no), True

        return pending, False
