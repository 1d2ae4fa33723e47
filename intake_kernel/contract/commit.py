"""
Commit Pipeline — turns a cycle's ledger into an immutable ten-document packet.

Flow:
    gate -> fingerprint (reuse?) -> generate -> normalize
         -> strengthen (mode) -> validate -> persist -> audit

Behavioral Contract:
- The gate is the readiness scorer's can_commit. A closed gate raises and
  writes nothing but an audit event.
- Identical inputs (turns + ledger) produce the same fingerprint, and a
  repeated commit returns the stored version instead of generating again.
- Any blocking validation issue aborts the commit; nothing is persisted.
- Version, documents, claims and provenance are written in one transaction.
"""

import logging
from typing import List, Optional, Set

from intake_kernel.config import IntakeSettings
from intake_kernel.contract.generator import (
    DocumentGenerator,
    GenerationContext,
    LLMDocumentGenerator,
    assess_strength,
    normalize_docs,
    strengthen_docs,
)
from intake_kernel.contract.validation import blocking, check_unknown_survival, validate_docs
from intake_kernel.errors import CommitGateError, ContractValidationError, InputValidationError
from intake_kernel.ledger.ledger import DecisionLedger
from intake_kernel.llm.provider import LLMProvider
from intake_kernel.models.artifact import ArtifactInput
from intake_kernel.models.contract import CommitResult, ContractVersion, IssueSeverity
from intake_kernel.models.decision import DecisionItem
from intake_kernel.models.turn import Turn
from intake_kernel.readiness.scorer import score_readiness
from intake_kernel.store.store import IntakeStore
from intake_kernel.util import sha256_hex

logger = logging.getLogger(__name__)

COMMIT_MODES = ("fast", "strengthen")


def compute_input_fingerprint(
    project_id: str, cycle_no: int, turns: List[Turn], decisions: List[DecisionItem]
) -> str:
    """sha256 over canonical JSON of the cycle's turns and ledger. Mode is not an input."""
    return sha256_hex({
        "project_id": project_id,
        "cycle_no": cycle_no,
        "turns": [
            {"id": t.id, "turn_index": t.turn_index, "raw_text": t.raw_text.strip()}
            for t in sorted(turns, key=lambda t: t.turn_index)
        ],
        "decisions": [
            {
                "id": d.id,
                "key": d.decision_key,
                "claim": d.claim,
                "label": d.trust_label.value,
                "lock_state": d.lock_state.value,
                "has_conflict": d.has_conflict,
                "conflict_key": d.conflict_key,
                "evidence": sorted(d.evidence_refs),
            }
            for d in sorted(decisions, key=lambda d: d.decision_key)
        ],
    })


class CommitPipeline:
    """Gate, generate, validate and persist a requirements packet."""

    def __init__(
        self,
        store: IntakeStore,
        ledger: DecisionLedger,
        llm: LLMProvider,
        settings: IntakeSettings,
        generator: Optional[DocumentGenerator] = None,
    ):
        self.store = store
        self.ledger = ledger
        self.settings = settings
        self.generator = generator or LLMDocumentGenerator(llm)

    def commit(self, project_id: str, cycle_no: int, mode: str = "fast") -> CommitResult:
        if mode not in COMMIT_MODES:
            raise InputValidationError(
                f"Unknown commit mode {mode!r}; expected one of {', '.join(COMMIT_MODES)}.",
                code="INVALID_COMMIT_MODE",
            )

        turns = self.store.list_turns(project_id, cycle_no)
        latest = self.ledger.latest_by_key(project_id, cycle_no)
        decisions = list(latest.values())
        artifact = self.store.latest_artifact(project_id, cycle_no)
        pending = self.store.pending_checkpoint(project_id, cycle_no)

        # Step 1: gate
        readiness = score_readiness(latest, turns, artifact, pending)
        if not readiness.can_commit:
            self.store.record_audit(project_id, cycle_no, "contract.commit_refused", {
                "mode": mode,
                "blockers": [b.code for b in readiness.blockers],
            })
            logger.warning("Commit refused for %s/%d: %s", project_id, cycle_no,
                           ", ".join(b.code for b in readiness.blockers))
            raise CommitGateError(readiness.blockers)

        # Step 2: fingerprint
        fingerprint = compute_input_fingerprint(project_id, cycle_no, turns, decisions)
        existing = self.store.get_version_by_fingerprint(project_id, cycle_no, fingerprint)
        if existing is not None:
            logger.info("Commit reused version %s (v%d)", existing.id, existing.version_number)
            return self._reused(existing)

        # Step 3: generate + normalize
        context = GenerationContext(
            project_id=project_id,
            cycle_no=cycle_no,
            decisions=decisions,
            turns=turns,
            artifact=artifact,
            artifact_refs=self._artifact_refs(artifact),
        )
        docs = normalize_docs(self.generator.generate(context), context)

        # Step 4: strengthen
        known_refs = self.store.known_refs(project_id, cycle_no)
        if mode == "strengthen":
            docs, strength = strengthen_docs(docs, context, known_refs)
        else:
            strength = [assess_strength(d, known_refs) for d in docs]

        # Step 5: validate
        issues = validate_docs(docs) + check_unknown_survival(docs, decisions)
        blocks = blocking(issues)
        if blocks:
            self.store.record_audit(project_id, cycle_no, "contract.validation_failed", {
                "mode": mode,
                "fingerprint": fingerprint,
                "issues": [i.model_dump(mode="json") for i in blocks],
            })
            logger.warning("Contract validation failed for %s/%d with %d blocking issue(s)",
                           project_id, cycle_no, len(blocks))
            raise ContractValidationError(blocks)
        warnings = [i for i in issues if i.severity == IssueSeverity.WARN]

        # Step 6: persist
        version, created = self.store.persist_contract(
            project_id, cycle_no, fingerprint, mode, self.settings.engine_version, docs
        )
        if not created:
            logger.info("Concurrent commit won for %s/%d; returning version %s",
                        project_id, cycle_no, version.id)
            return self._reused(version)

        self.store.record_audit(project_id, cycle_no, "contract.committed", {
            "contract_version_id": version.id,
            "version_number": version.version_number,
            "fingerprint": fingerprint,
            "mode": mode,
            "warnings": [w.code for w in warnings],
            "strengthened_roles": [s.role_id for s in strength if s.strengthened],
        })
        self.store.record_doc_strength(version.id, mode, [s.model_dump(mode="json") for s in strength])
        logger.info("Committed %s v%d (%s mode)", version.id, version.version_number, mode)

        return CommitResult(
            version=version,
            documents=docs,
            reused_existing_version=False,
            warnings=warnings,
            strength=strength,
        )

    def _reused(self, version: ContractVersion) -> CommitResult:
        docs = self.store.get_docs(version.id)
        issues = validate_docs(docs)
        return CommitResult(
            version=version,
            documents=docs,
            reused_existing_version=True,
            warnings=[i for i in issues if i.severity == IssueSeverity.WARN],
            strength=self.store.get_doc_strength(version.id) or [],
        )

    def _artifact_refs(self, artifact: Optional[ArtifactInput]) -> List[str]:
        """Refs backing the artifact's current understanding, the correcting turn included."""
        if artifact is None or not artifact.summary_text:
            return []
        refs: List[str] = []
        seen: Set[str] = set()

        def add(ref: str) -> None:
            if ref not in seen:
                seen.add(ref)
                refs.append(ref)

        summaries = self.store.list_summaries(artifact.id)
        if summaries:
            latest = summaries[-1]
            for page_id in latest.source_page_ids:
                add(f"artifact_page:{page_id}")
            add(f"artifact_summary:{latest.id}")
        for checkpoint in self.store.list_checkpoints(artifact.project_id, artifact.cycle_no):
            if checkpoint.artifact_input_id == artifact.id and checkpoint.resolved_by_turn_id:
                add(f"turn:{checkpoint.resolved_by_turn_id}")
        return refs
