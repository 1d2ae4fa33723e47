"""Tests for packet validation and the deterministic document builder."""

from datetime import datetime, timezone

import pytest

from intake_kernel.contract.generator import (
    GenerationContext,
    RuleBasedDocumentGenerator,
    build_role_body,
    normalize_docs,
)
from intake_kernel.contract.roles import ROLE_CATALOG, ROLES_BY_ID
from intake_kernel.contract.validation import (
    blocking,
    check_unknown_survival,
    count_builder_notes,
    missing_spine_sections,
    validate_doc,
    validate_docs,
)
from intake_kernel.models.contract import ContractDoc, IssueSeverity, Requirement
from intake_kernel.models.decision import DecisionItem, TrustLabel
from intake_kernel.util import word_count

NOW = datetime.now(timezone.utc)


def _claims(label: str = "USER_SAID") -> list:
    return [Requirement(claim="Customers book a time online.", trust_label=label, provenance_refs=["turn:t1"])]


def _make_doc(role_id: int, **overrides) -> ContractDoc:
    role = ROLES_BY_ID[role_id]
    claims = overrides.pop("claims", _claims())
    fields = dict(role_id=role_id, title=role.title, body=build_role_body(role, claims), claims=claims)
    fields.update(overrides)
    return ContractDoc(**fields)


def _packet() -> list:
    return [_make_doc(role.role_id) for role in ROLE_CATALOG]


def _codes(issues) -> list:
    return [i.code for i in issues]


def _body_with_notes(notes: int, words: int = 200) -> str:
    sections = "Purpose\nKey Decisions\nAcceptance Criteria\nSuccess Measures\nUnknowns\n"
    bullets = "\n".join(f"- note {i}" for i in range(notes))
    padding = " ".join(["word"] * words)
    return f"{padding}\n{sections}Builder Notes\n{bullets}"


class TestBodyBuilder:
    @pytest.mark.parametrize("role", ROLE_CATALOG, ids=lambda r: r.key)
    def test_body_is_within_budget_and_complete(self, role):
        body = build_role_body(role, _claims())
        assert role.hard_min <= word_count(body) <= role.hard_max
        assert missing_spine_sections(body) == []
        assert 3 <= count_builder_notes(body) <= 6

    def test_long_claims_are_clipped_to_fit(self):
        role = ROLES_BY_ID[1]
        long_claim = " ".join(["detail"] * 120)
        claims = [
            Requirement(claim=long_claim, trust_label="USER_SAID", provenance_refs=["turn:t1"]),
            Requirement(claim=long_claim, trust_label="ASSUMED", provenance_refs=["turn:t1"]),
            Requirement(claim=long_claim, trust_label="UNKNOWN", provenance_refs=["turn:t1"]),
            Requirement(claim=long_claim, trust_label="UNKNOWN", provenance_refs=["turn:t1"]),
        ]
        body = build_role_body(role, claims)
        assert word_count(body) <= role.hard_max
        assert blocking(validate_doc(ContractDoc(role_id=1, title="North Star", body=body, claims=claims))) == []

    def test_pad_to_grows_body(self):
        role = ROLES_BY_ID[2]
        short = build_role_body(role, _claims())
        padded = build_role_body(role, _claims(), pad_to=role.soft_target)
        assert word_count(padded) >= word_count(short)
        assert word_count(padded) <= role.hard_max


class TestValidateDoc:
    def test_clean_doc(self):
        assert blocking(validate_doc(_make_doc(2))) == []

    def test_short_body_blocks(self):
        doc = _make_doc(2, body=_body_with_notes(3, words=110))
        budget = [i for i in validate_doc(doc) if i.code == "BUDGET_HARD"]
        assert len(budget) == 1
        assert "170-270" in budget[0].message

    def test_soft_drift_only_warns(self):
        # Role 8: soft 180, hard 140-240. 230 words is past 1.25x soft but inside hard.
        doc = _make_doc(8, body=_body_with_notes(3, words=210))
        issues = validate_doc(doc)
        budget = [i for i in issues if i.code.startswith("BUDGET")]
        assert [i.code for i in budget] == ["BUDGET_SOFT"]
        assert budget[0].severity == IssueSeverity.WARN

    @pytest.mark.parametrize("notes,ok", [(2, False), (3, True), (6, True), (7, False)])
    def test_builder_notes_count(self, notes, ok):
        doc = _make_doc(2, body=_body_with_notes(notes))
        assert ("BUILDER_NOTES_COUNT" not in _codes(validate_doc(doc))) is ok

    def test_builder_notes_heading_required(self):
        assert count_builder_notes("Purpose\n- a\n- b\n- c") is None

    def test_builder_notes_stop_at_next_section(self):
        body = "## Builder Notes:\n- a\n- b\n\nUnknowns\n- c\n- d"
        assert count_builder_notes(body) == 2

    def test_spine_missing(self):
        body = _body_with_notes(3).replace("Success Measures\n", "")
        issues = validate_doc(_make_doc(2, body=body))
        spine = [i for i in issues if i.code == "SPINE_MISSING"]
        assert len(spine) == 1
        assert "success measures" in spine[0].message

    def test_claim_rules(self):
        doc = _make_doc(3, claims=[
            Requirement(claim="Fine.", trust_label="MAYBE", provenance_refs=["turn:t1"]),
            Requirement(claim="  ", trust_label="USER_SAID", provenance_refs=["turn:t1"]),
            Requirement(claim="No refs.", trust_label="ASSUMED", provenance_refs=[" "]),
        ])
        codes = _codes(validate_doc(doc))
        assert "TRUST_LABEL_INVALID" in codes
        assert "CLAIM_BLANK" in codes
        assert "PROVENANCE_MISSING" in codes

    def test_no_claims_blocks(self):
        assert "CLAIMS_MISSING" in _codes(validate_doc(_make_doc(4, claims=[])))


class TestValidateDocs:
    def test_full_packet_passes(self):
        assert blocking(validate_docs(_packet())) == []

    def test_missing_role(self):
        docs = _packet()[:-1]
        codes = _codes(validate_docs(docs))
        assert "ROLE_COUNT" in codes
        assert "MISSING_ROLES" in codes

    def test_extra_role(self):
        docs = _packet() + [ContractDoc(role_id=11, title="Extra")]
        codes = _codes(validate_docs(docs))
        assert "ROLE_COUNT" in codes
        assert "EXTRA_ROLES" in codes


class TestUnknownSurvival:
    def _unknown_decision(self) -> DecisionItem:
        return DecisionItem(
            id="dec_1", project_id="p", cycle_no=1, decision_key="primary_audience",
            claim="Audience unclear.", trust_label=TrustLabel.UNKNOWN, updated_at=NOW,
        )

    def test_passes_without_ledger_unknowns(self):
        assert check_unknown_survival(_packet(), []) == []

    def test_blocks_when_unknowns_dropped(self):
        issues = check_unknown_survival(_packet(), [self._unknown_decision()])
        assert _codes(issues) == ["UNKNOWN_SURVIVAL"]

    def test_passes_when_one_claim_keeps_unknown(self):
        docs = _packet()
        docs[7] = _make_doc(8, claims=_claims("UNKNOWN"))
        assert check_unknown_survival(docs, [self._unknown_decision()]) == []


class TestNormalizeDocs:
    def _context(self) -> GenerationContext:
        return GenerationContext(project_id="p", cycle_no=1)

    def test_builds_missing_roles_and_drops_extras(self):
        raw = [
            ContractDoc(role_id=1, title="", body="too short", claims=_claims()),
            ContractDoc(role_id=1, title="Duplicate", body="", claims=[]),
            ContractDoc(role_id=42, title="Bogus"),
        ]
        docs = normalize_docs(raw, self._context())

        assert [d.role_id for d in docs] == list(range(1, 11))
        assert docs[0].title == "North Star"
        assert blocking(validate_docs(docs)) == []

    def test_claims_are_normalized(self):
        raw = [ContractDoc(role_id=5, claims=[
            Requirement(claim=" Keep bookings. ", trust_label="user_said", provenance_refs=[]),
            Requirement(claim="Maybe.", trust_label="PROBABLY", provenance_refs=["turn:t1"]),
            Requirement(claim="", trust_label="USER_SAID", provenance_refs=["turn:t1"]),
        ])]
        doc = normalize_docs(raw, self._context())[4]

        assert [c.claim for c in doc.claims] == ["Keep bookings.", "Maybe."]
        assert doc.claims[0].trust_label == "USER_SAID"
        assert doc.claims[0].provenance_refs == ["role:5"]
        assert doc.claims[1].trust_label == "UNKNOWN"

    def test_rule_based_packet_with_empty_ledger(self):
        docs = RuleBasedDocumentGenerator().generate(self._context())
        assert len(docs) == 10
        assert all(d.claims[0].trust_label == "UNKNOWN" for d in docs)
        assert blocking(validate_docs(docs)) == []
