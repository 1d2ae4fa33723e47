"""
Document Generation — produces the ten role documents of a packet.

Pluggable: the default LLMDocumentGenerator asks the LLM collaborator for a
JSON packet and falls back to RuleBasedDocumentGenerator when the provider
is offline, fails, or returns anything unusable. Whatever a generator
returns is then forced into shape by normalize_docs().
"""

import itertools
import json
import logging
from typing import Dict, List, Optional, Protocol, Set, Tuple

from pydantic import BaseModel, Field

from intake_kernel.contract.roles import (
    MAX_CLAIMS_PER_DOC,
    ROLE_CATALOG,
    ROLES_BY_ID,
    RoleSpec,
)
from intake_kernel.contract.validation import blocking, validate_doc
from intake_kernel.llm.provider import LLMProvider, safe_generate_json
from intake_kernel.models.artifact import ArtifactInput, VerificationState
from intake_kernel.models.contract import ContractDoc, Requirement, RoleStrength
from intake_kernel.models.decision import DecisionItem, TrustLabel
from intake_kernel.models.turn import Actor, Turn
from intake_kernel.util import word_count

logger = logging.getLogger(__name__)

EXCLUDED_CLAIM_KEYS = {"draft_readiness_ack"}
NO_DECISION_CLAIM = "No explicit decisions were confirmed; unresolved meaning remains UNKNOWN."
VALID_LABELS = {label.value for label in TrustLabel}
MIN_PROVENANCE_COVERAGE = 0.6


class GenerationContext(BaseModel):
    """Everything a generator may read. Built once per commit."""

    project_id: str
    cycle_no: int
    decisions: List[DecisionItem] = Field(default_factory=list)
    turns: List[Turn] = Field(default_factory=list)
    artifact: Optional[ArtifactInput] = None
    artifact_refs: List[str] = Field(default_factory=list)

    def decision(self, key: str) -> Optional[DecisionItem]:
        return next((d for d in self.decisions if d.decision_key == key), None)

    def first_user_turn_ref(self) -> Optional[str]:
        turn = next((t for t in self.turns if t.actor == Actor.USER), None)
        return f"turn:{turn.id}" if turn else None


class DocumentGenerator(Protocol):
    """Interface for packet generators."""

    def generate(self, context: GenerationContext) -> List[ContractDoc]:
        ...


# === CLAIMS ===

def _decision_refs(decision: DecisionItem) -> List[str]:
    refs = list(decision.evidence_refs)
    own = f"decision:{decision.id}"
    if own not in refs:
        refs.append(own)
    return refs


def _claim_from_decision(decision: DecisionItem) -> Requirement:
    return Requirement(
        claim=decision.claim,
        trust_label=decision.trust_label.value,
        provenance_refs=_decision_refs(decision),
    )


def fallback_ref(role: RoleSpec, context: GenerationContext) -> str:
    """Evidence pointer for a claim that arrived without one."""
    for key in role.focus_keys:
        decision = context.decision(key)
        if decision:
            return f"decision:{decision.id}"
    return context.first_user_turn_ref() or f"role:{role.role_id}"


def build_claims_for_role(role: RoleSpec, context: GenerationContext) -> List[Requirement]:
    """
    Pick claims for a role: its focus keys first, then the rest of the ledger.
    At most 2 USER_SAID, 1 ASSUMED and 2 UNKNOWN.
    """
    eligible = [d for d in context.decisions if d.decision_key not in EXCLUDED_CLAIM_KEYS]
    focus_rank = {key: i for i, key in enumerate(role.focus_keys)}
    ordered = sorted(
        eligible,
        key=lambda d: (focus_rank.get(d.decision_key, len(focus_rank)), d.decision_key),
    )

    quotas = {
        TrustLabel.USER_SAID: 2,
        TrustLabel.ASSUMED: 1,
        TrustLabel.UNKNOWN: 2,
    }
    claims: List[Requirement] = []
    for decision in ordered:
        if quotas[decision.trust_label] > 0 and len(claims) < MAX_CLAIMS_PER_DOC:
            quotas[decision.trust_label] -= 1
            claims.append(_claim_from_decision(decision))

    artifact = context.artifact
    if (
        role.key == "NORTH_STAR"
        and artifact is not None
        and artifact.summary_text
        and artifact.verification_state != VerificationState.UNVERIFIED
        and context.artifact_refs
        and len(claims) < MAX_CLAIMS_PER_DOC
    ):
        # Confirmed or corrected by the user, so both count as said.
        claims.append(Requirement(
            claim=f"Website context: {_clip_words(artifact.summary_text, 30)}",
            trust_label=TrustLabel.USER_SAID.value,
            provenance_refs=list(context.artifact_refs),
        ))

    if not claims:
        claims.append(Requirement(
            claim=NO_DECISION_CLAIM,
            trust_label=TrustLabel.UNKNOWN.value,
            provenance_refs=[context.first_user_turn_ref() or f"role:{role.role_id}"],
        ))
    return claims


# === BODIES ===

_ACCEPTANCE_BASE = "- Behavior is implementable without hidden assumptions."
_SUCCESS_BASE = "- A reviewer can see what version one covers."
_BUILDER_NOTES_BASE = [
    "- Preserve trust labels exactly as provided.",
    "- Do not convert UNKNOWN items into assumptions.",
    "- Read this role alongside the other nine documents.",
]

# (section, line) candidates added while they fit the soft target
_EXTENSIONS = [
    ("acceptance criteria", "- Every claim stays linked to intake evidence or a decision record."),
    ("success measures", "- A builder can execute this role without reinterpreting trust labels."),
    ("acceptance criteria", "- The flow matches the confirmed primary outcome for version one."),
    ("success measures", "- Open uncertainty stays visible and is never silently resolved."),
    ("unknowns", "- Additional unknowns remain open until the user explicitly confirms them."),
    ("builder notes", "- Keep version one small and ship the confirmed capabilities first."),
    ("acceptance criteria", "- Edge cases are handled without losing user data or progress."),
    ("success measures", "- The first real customer can complete the core flow unaided."),
    ("builder notes", "- Raise a question instead of guessing when evidence is missing."),
]

_FILLERS = [
    "This section stays grounded in what the user actually said during intake.",
    "Decisions here follow the confirmed answers rather than assumptions made while drafting.",
    "Anything not confirmed is carried forward as an explicit open question.",
    "The goal is a version one that a small team can build with confidence.",
    "Scope stays narrow so the first release can ship and be measured.",
    "Each statement can be traced back to a specific turn or decision.",
]

_SECTION_TITLES = [
    ("purpose", "Purpose"),
    ("key decisions", "Key Decisions"),
    ("acceptance criteria", "Acceptance Criteria"),
    ("success measures", "Success Measures"),
    ("unknowns", "Unknowns"),
    ("builder notes", "Builder Notes"),
]


def _clip_words(text: str, limit: int) -> str:
    words = (text or "").split()
    if len(words) <= limit:
        return " ".join(words)
    return " ".join(words[:limit]) + "..."


def _render(sections: Dict[str, List[str]]) -> str:
    blocks = []
    for key, title in _SECTION_TITLES:
        blocks.append("\n".join([title] + sections[key]))
    return "\n\n".join(blocks)


def _compose(
    role: RoleSpec,
    claims: List[Requirement],
    context_line: Optional[str],
    clip: int,
    pad_to: int,
) -> str:
    known = [c for c in claims if c.trust_label != TrustLabel.UNKNOWN.value]
    unknown = [c for c in claims if c.trust_label == TrustLabel.UNKNOWN.value]

    sections: Dict[str, List[str]] = {
        "purpose": [f"{role.title} for this cycle, kept explicit and buildable."],
        "key decisions": [f"- [{c.trust_label}] {_clip_words(c.claim, clip)}" for c in known]
        or ["- [UNKNOWN] No confirmed decision applies to this role yet."],
        "acceptance criteria": [_ACCEPTANCE_BASE],
        "success measures": [_SUCCESS_BASE],
        "unknowns": [f"- [UNKNOWN] {_clip_words(c.claim, clip)}" for c in unknown]
        or ["- No open unknowns were recorded for this role."],
        "builder notes": list(_BUILDER_NOTES_BASE),
    }

    extensions = [("purpose", role.purpose)]
    if context_line:
        extensions.append(("purpose", context_line))
    extensions += _EXTENSIONS

    total = word_count(_render(sections))
    for section, line in extensions:
        words = word_count(line)
        if total + words <= role.soft_target:
            sections[section].append(line)
            total += words

    target = max(role.hard_min, min(pad_to, role.hard_max))
    for filler in itertools.cycle(_FILLERS):
        if total >= target or total + word_count(filler) > role.hard_max:
            break
        sections["purpose"].append(filler)
        total += word_count(filler)

    return _render(sections)


def build_role_body(
    role: RoleSpec,
    claims: List[Requirement],
    context: Optional[GenerationContext] = None,
    pad_to: Optional[int] = None,
) -> str:
    """
    Deterministic body with all six sections, sized into the role's budget.
    Claim snippets are clipped harder until the body fits under hard_max.
    """
    context_line = None
    if context is not None:
        intent = context.decision("latest_user_intent")
        if intent:
            context_line = f"Recent context from the user: {_clip_words(intent.claim, 16)}"

    body = ""
    for clip in (14, 8, 4):
        body = _compose(role, claims, context_line, clip, pad_to or role.hard_min)
        if word_count(body) <= role.hard_max:
            return body
    return body


# === NORMALIZATION ===

def normalize_claims(raw_claims: List[Requirement], role: RoleSpec, context: GenerationContext) -> List[Requirement]:
    """Strip text, default bad labels to UNKNOWN, drop blanks, cap, and backfill refs."""
    claims = []
    for raw in raw_claims:
        text = (raw.claim or "").strip()
        if not text:
            continue
        label = (raw.trust_label or "").strip().upper()
        if label not in VALID_LABELS:
            label = TrustLabel.UNKNOWN.value
        refs = [r.strip() for r in raw.provenance_refs if r and r.strip()]
        if not refs:
            refs = [fallback_ref(role, context)]
        claims.append(Requirement(claim=text, trust_label=label, provenance_refs=refs))
        if len(claims) >= MAX_CLAIMS_PER_DOC:
            break
    return claims


def normalize_docs(raw_docs: List[ContractDoc], context: GenerationContext) -> List[ContractDoc]:
    """
    Force the generator output into shape: exactly the catalog roles, each
    with a title, at least one claim, and a body that passes its structural
    rules. Missing roles are built deterministically.
    """
    by_role: Dict[int, ContractDoc] = {}
    for doc in raw_docs:
        if doc.role_id in ROLES_BY_ID and doc.role_id not in by_role:
            by_role[doc.role_id] = doc
        else:
            logger.warning("Dropping generated document with role id %s", doc.role_id)

    normalized = []
    for role in ROLE_CATALOG:
        raw = by_role.get(role.role_id)
        if raw is None:
            claims = build_claims_for_role(role, context)
            normalized.append(ContractDoc(
                role_id=role.role_id,
                title=role.title,
                body=build_role_body(role, claims, context),
                claims=claims,
            ))
            continue

        claims = normalize_claims(raw.claims, role, context) or build_claims_for_role(role, context)
        doc = ContractDoc(
            role_id=role.role_id,
            title=(raw.title or "").strip() or role.title,
            body=(raw.body or "").strip(),
            claims=claims,
        )
        if blocking(validate_doc(doc)):
            doc.body = build_role_body(role, claims, context)
        normalized.append(doc)
    return normalized


# === GENERATORS ===

class RuleBasedDocumentGenerator:
    """Deterministic generator. Always available; the fallback for every other generator."""

    def generate(self, context: GenerationContext) -> List[ContractDoc]:
        docs = []
        for role in ROLE_CATALOG:
            claims = build_claims_for_role(role, context)
            docs.append(ContractDoc(
                role_id=role.role_id,
                title=role.title,
                body=build_role_body(role, claims, context),
                claims=claims,
            ))
        return docs


PACKET_SYSTEM_PROMPT = (
    "You write a ten-document requirements packet for a small app from intake interview evidence. "
    "Use only the decisions and context provided. Never turn an UNKNOWN decision into a fact. "
    "Every document body must contain the sections Purpose, Key Decisions, Acceptance Criteria, "
    "Success Measures, Unknowns, and Builder Notes (3 to 6 bullet lines starting with '- '). "
    "Every claim needs a trust_label of USER_SAID, ASSUMED, or UNKNOWN and at least one "
    "provenance ref copied from the evidence (for example 'decision:<id>' or 'turn:<id>'). "
    'Respond with a JSON object: {"documents": [{"role_id": int, "title": string, "body": string, '
    '"claims": [{"claim": string, "trust_label": string, "provenance_refs": [string]}]}]}.'
)


def _packet_prompt(context: GenerationContext) -> str:
    roles = [
        {"role_id": r.role_id, "title": r.title, "word_budget": [r.hard_min, r.hard_max]}
        for r in ROLE_CATALOG
    ]
    decisions = [
        {"ref": f"decision:{d.id}", "key": d.decision_key, "claim": d.claim,
         "trust_label": d.trust_label.value}
        for d in context.decisions if d.decision_key not in EXCLUDED_CLAIM_KEYS
    ]
    turns = [
        {"ref": f"turn:{t.id}", "text": _clip_words(t.raw_text, 60)}
        for t in context.turns if t.actor == Actor.USER
    ][-12:]
    payload = {"roles": roles, "decisions": decisions, "user_turns": turns}
    if context.artifact and context.artifact.summary_text:
        payload["website_summary"] = {
            "refs": context.artifact_refs,
            "text": context.artifact.summary_text,
            "verification": context.artifact.verification_state.value,
        }
    return json.dumps(payload)


def parse_documents(payload: Optional[dict]) -> List[ContractDoc]:
    """Tolerant parse of an LLM packet. Malformed entries are skipped."""
    docs = []
    for entry in (payload or {}).get("documents") or []:
        if not isinstance(entry, dict):
            continue
        try:
            role_id = int(entry.get("role_id"))
        except (TypeError, ValueError):
            continue
        claims = []
        for raw in entry.get("claims") or []:
            if not isinstance(raw, dict):
                continue
            refs = raw.get("provenance_refs") or raw.get("refs") or []
            claims.append(Requirement(
                claim=str(raw.get("claim") or ""),
                trust_label=str(raw.get("trust_label") or ""),
                provenance_refs=[str(r) for r in refs if isinstance(r, (str, int))],
            ))
        docs.append(ContractDoc(
            role_id=role_id,
            title=str(entry.get("title") or ""),
            body=str(entry.get("body") or ""),
            claims=claims,
        ))
    return docs


class LLMDocumentGenerator:
    """LLM-backed generator with a deterministic fallback."""

    def __init__(self, llm: LLMProvider, fallback: Optional[DocumentGenerator] = None):
        self.llm = llm
        self.fallback = fallback or RuleBasedDocumentGenerator()

    def generate(self, context: GenerationContext) -> List[ContractDoc]:
        payload = safe_generate_json(
            self.llm,
            "packet generation",
            PACKET_SYSTEM_PROMPT,
            _packet_prompt(context),
            temperature=0.2,
            max_tokens=6000,
        )
        docs = parse_documents(payload)
        if not docs:
            if payload is not None:
                logger.warning("LLM packet had no usable documents; using deterministic generator")
            return self.fallback.generate(context)
        return docs


# === STRENGTH ===

def provenance_coverage(doc: ContractDoc, known_refs: Set[str]) -> float:
    """Share of claims with at least one ref that resolves to a stored row."""
    if not doc.claims:
        return 0.0
    covered = sum(1 for c in doc.claims if any(r in known_refs for r in c.provenance_refs))
    return covered / len(doc.claims)


def assess_strength(doc: ContractDoc, known_refs: Set[str]) -> RoleStrength:
    role = ROLES_BY_ID[doc.role_id]
    words = word_count(doc.body)
    coverage = provenance_coverage(doc, known_refs)
    unknown = sum(1 for c in doc.claims if c.trust_label == TrustLabel.UNKNOWN.value)
    return RoleStrength(
        role_id=doc.role_id,
        word_count=words,
        claim_count=len(doc.claims),
        provenance_coverage=round(coverage, 3),
        unknown_claims=unknown,
        weak=words < role.hard_min or coverage < MIN_PROVENANCE_COVERAGE or unknown >= 2,
    )


def _consolidate_unknowns(claims: List[Requirement]) -> List[Requirement]:
    unknown = [c for c in claims if c.trust_label == TrustLabel.UNKNOWN.value]
    if len(unknown) < 2:
        return claims
    refs: List[str] = []
    for claim in unknown:
        refs.extend(r for r in claim.provenance_refs if r not in refs)
    merged = Requirement(
        claim="Still unresolved: " + "; ".join(c.claim.rstrip(".") for c in unknown) + ".",
        trust_label=TrustLabel.UNKNOWN.value,
        provenance_refs=refs,
    )
    known = [c for c in claims if c.trust_label != TrustLabel.UNKNOWN.value]
    return known + [merged]


def _anchor_refs(claims: List[Requirement], anchor: Optional[str], known_refs: Set[str]) -> List[Requirement]:
    anchored = []
    for claim in claims:
        if anchor and not any(r in known_refs for r in claim.provenance_refs):
            claim = claim.model_copy(update={"provenance_refs": claim.provenance_refs + [anchor]})
        anchored.append(claim)
    return anchored


def _ledger_anchor(role: RoleSpec, context: GenerationContext, known_refs: Set[str]) -> Optional[str]:
    """A ref guaranteed to resolve: the role's focus decision, else any decision, else the first turn."""
    candidates = [fallback_ref(role, context)]
    candidates += [f"decision:{d.id}" for d in context.decisions]
    candidates.append(context.first_user_turn_ref())
    return next((ref for ref in candidates if ref and ref in known_refs), None)


def strengthen_doc(
    doc: ContractDoc,
    context: GenerationContext,
    known_refs: Set[str],
) -> Tuple[ContractDoc, bool]:
    """Repair one weak role. Returns the original when the repair would add blocking issues."""
    role = ROLES_BY_ID[doc.role_id]
    anchor = _ledger_anchor(role, context, known_refs)

    claims = _consolidate_unknowns(list(doc.claims))
    claims = _anchor_refs(claims, anchor, known_refs)

    repaired = ContractDoc(role_id=doc.role_id, title=doc.title, claims=claims[:MAX_CLAIMS_PER_DOC])
    if provenance_coverage(repaired, known_refs) < MIN_PROVENANCE_COVERAGE:
        confirmed = [d for d in context.decisions
                     if d.is_explicitly_confirmed and d.decision_key not in EXCLUDED_CLAIM_KEYS]
        existing = {c.claim for c in repaired.claims}
        for decision in confirmed:
            if len(repaired.claims) >= MAX_CLAIMS_PER_DOC:
                break
            if decision.claim not in existing:
                repaired.claims.append(_claim_from_decision(decision))
    repaired.body = build_role_body(role, repaired.claims, context, pad_to=role.soft_target)

    if len(blocking(validate_doc(repaired))) > len(blocking(validate_doc(doc))):
        logger.info("Discarding strengthen repair for role %s", doc.role_id)
        return doc, False
    return repaired, True


def strengthen_docs(
    docs: List[ContractDoc],
    context: GenerationContext,
    known_refs: Set[str],
) -> Tuple[List[ContractDoc], List[RoleStrength]]:
    """Strengthen only the weak roles and report per-role strength after repair."""
    result_docs, strengths = [], []
    for doc in docs:
        before = assess_strength(doc, known_refs)
        if not before.weak:
            result_docs.append(doc)
            strengths.append(before)
            continue
        repaired, changed = strengthen_doc(doc, context, known_refs)
        after = assess_strength(repaired, known_refs)
        after.strengthened = changed
        result_docs.append(repaired)
        strengths.append(after)
    return result_docs, strengths
