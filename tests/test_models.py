"""Tests for core data models."""

from datetime import datetime, timezone

import pytest

from intake_kernel.models import (
    ArtifactSummary,
    Checkpoint,
    CheckpointStatus,
    DecisionItem,
    LockState,
    ProvenanceLink,
    ProvenanceSourceType,
    Requirement,
    TrustLabel,
    TurnRequest,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TestDecisionItem:
    def test_explicit_confirmation_needs_all_three(self):
        item = DecisionItem(
            id="dec_1",
            project_id="proj_1",
            cycle_no=1,
            decision_key="primary_outcome",
            claim="Primary outcome: Book a time.",
            trust_label=TrustLabel.USER_SAID,
            lock_state=LockState.LOCKED,
            confirmed_by_turn_id="turn_1",
            evidence_refs=["turn:turn_1"],
            updated_at=_now(),
        )
        assert item.is_explicitly_confirmed is True

        assert item.model_copy(update={"lock_state": LockState.OPEN}).is_explicitly_confirmed is False
        assert item.model_copy(update={"trust_label": TrustLabel.ASSUMED}).is_explicitly_confirmed is False
        assert item.model_copy(update={"confirmed_by_turn_id": None}).is_explicitly_confirmed is False

    def test_defaults_are_unknown_and_open(self):
        item = DecisionItem(
            id="dec_2",
            project_id="proj_1",
            cycle_no=1,
            decision_key="business_type",
            claim="Business type is still unknown.",
            updated_at=_now(),
        )
        assert item.trust_label == TrustLabel.UNKNOWN
        assert item.lock_state == LockState.OPEN
        assert item.has_conflict is False


class TestProvenanceLink:
    def test_known_prefixes(self):
        link = ProvenanceLink.from_ref("decision:dec_abc")
        assert link.source_type == ProvenanceSourceType.DECISION_ITEM
        assert link.source_id == "dec_abc"

        assert ProvenanceLink.from_ref("artifact_summary:sum_1").source_type == \
            ProvenanceSourceType.ARTIFACT_SUMMARY

    def test_unknown_prefix_is_role_fallback(self):
        link = ProvenanceLink.from_ref("role:3")
        assert link.source_type == ProvenanceSourceType.ROLE_FALLBACK
        assert link.source_id is None


class TestMiscModels:
    def test_requirement_keeps_raw_label(self):
        req = Requirement(claim="x", trust_label="MAYBE")
        assert req.trust_label == "MAYBE"

    def test_summary_confidence_bounds(self):
        with pytest.raises(Exception):
            ArtifactSummary(
                id="sum_1",
                artifact_input_id="art_1",
                version=1,
                summary_text="A bakery.",
                confidence=1.5,
                created_at=_now(),
            )

    def test_checkpoint_starts_pending(self):
        checkpoint = Checkpoint(
            id="ckpt_1",
            project_id="proj_1",
            cycle_no=1,
            checkpoint_key="k",
            artifact_input_id="art_1",
            prompt="Is this right?",
            created_at=_now(),
        )
        assert checkpoint.status == CheckpointStatus.PENDING
        assert checkpoint.is_pending

    def test_turn_request_defaults(self):
        req = TurnRequest(user_message="hello")
        assert req.artifact_type == "website"
        assert req.force_refresh is False
        assert req.checkpoint_response is None
