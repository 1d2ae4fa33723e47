"""
Validation Engine — budget, structure, and provenance rules for a packet.

Behavioral Contract:
- validate_docs() is a pure function: documents in, issues out.
- Every issue carries a machine-readable code and a block/warn severity.
- Packet rules run once; document rules run per known role through a rule
  registry, so new checks are added by registering a function.
"""

from typing import Callable, Dict, Iterable, List, Optional

from intake_kernel.contract.roles import (
    BUILDER_NOTES_MAX,
    BUILDER_NOTES_MIN,
    ROLE_IDS,
    ROLES_BY_ID,
    SPINE_SECTIONS,
    RoleSpec,
)
from intake_kernel.models.contract import ContractDoc, IssueSeverity, ValidationIssue
from intake_kernel.models.decision import DecisionItem, TrustLabel
from intake_kernel.util import word_count

VALID_LABELS = {label.value for label in TrustLabel}


def _heading(line: str) -> str:
    """Normalize a possible heading line: '## Builder Notes:' -> 'builder notes'."""
    return line.strip().lstrip("#").strip().rstrip(":").strip().lower()


def count_builder_notes(body: str) -> Optional[int]:
    """
    Bullet lines ('- ') under the Builder Notes heading, up to the next spine
    heading. None when the heading itself is absent.
    """
    lines = (body or "").splitlines()
    start = None
    for i, line in enumerate(lines):
        if _heading(line) == "builder notes":
            start = i + 1
            break
    if start is None:
        return None

    count = 0
    for line in lines[start:]:
        if _heading(line) in SPINE_SECTIONS:
            break
        if line.strip().startswith("- "):
            count += 1
    return count


def missing_spine_sections(body: str) -> List[str]:
    lowered = (body or "").lower()
    return [section for section in SPINE_SECTIONS if section not in lowered]


def _block(code: str, message: str, role_id: Optional[int] = None) -> ValidationIssue:
    return ValidationIssue(severity=IssueSeverity.BLOCK, code=code, message=message, role_id=role_id)


def _warn(code: str, message: str, role_id: Optional[int] = None) -> ValidationIssue:
    return ValidationIssue(severity=IssueSeverity.WARN, code=code, message=message, role_id=role_id)


def _check_budget(doc: ContractDoc, role: RoleSpec) -> List[ValidationIssue]:
    words = word_count(doc.body)
    if words < role.hard_min or words > role.hard_max:
        return [_block(
            "BUDGET_HARD",
            f"{role.title} has {words} words; allowed range is {role.hard_min}-{role.hard_max}.",
            role.role_id,
        )]
    low, high = round(role.soft_target * 0.75), round(role.soft_target * 1.25)
    if words < low or words > high:
        return [_warn(
            "BUDGET_SOFT",
            f"{role.title} has {words} words; target is about {role.soft_target}.",
            role.role_id,
        )]
    return []


def _check_builder_notes(doc: ContractDoc, role: RoleSpec) -> List[ValidationIssue]:
    count = count_builder_notes(doc.body)
    if count is None or not BUILDER_NOTES_MIN <= count <= BUILDER_NOTES_MAX:
        return [_block(
            "BUILDER_NOTES_COUNT",
            f"{role.title} needs {BUILDER_NOTES_MIN}-{BUILDER_NOTES_MAX} Builder Notes bullets "
            f"(found {count or 0}).",
            role.role_id,
        )]
    return []


def _check_spine(doc: ContractDoc, role: RoleSpec) -> List[ValidationIssue]:
    missing = missing_spine_sections(doc.body)
    if missing:
        return [_block(
            "SPINE_MISSING",
            f"{role.title} is missing sections: {', '.join(missing)}.",
            role.role_id,
        )]
    return []


def _check_claims(doc: ContractDoc, role: RoleSpec) -> List[ValidationIssue]:
    if not doc.claims:
        return [_block("CLAIMS_MISSING", f"{role.title} has no claims.", role.role_id)]

    issues = []
    for i, claim in enumerate(doc.claims, start=1):
        if (claim.trust_label or "").strip() not in VALID_LABELS:
            issues.append(_block(
                "TRUST_LABEL_INVALID",
                f"{role.title} claim {i} has invalid trust label {claim.trust_label!r}.",
                role.role_id,
            ))
        if not (claim.claim or "").strip():
            issues.append(_block("CLAIM_BLANK", f"{role.title} claim {i} is blank.", role.role_id))
        if not [r for r in claim.provenance_refs if r and r.strip()]:
            issues.append(_block(
                "PROVENANCE_MISSING",
                f"{role.title} claim {i} has no provenance reference.",
                role.role_id,
            ))
    return issues


# Rule registry: maps rule names to per-document checks.
DOC_RULES: Dict[str, Callable[[ContractDoc, RoleSpec], List[ValidationIssue]]] = {
    "budget": _check_budget,
    "builder_notes": _check_builder_notes,
    "spine": _check_spine,
    "claims": _check_claims,
}


def validate_doc(doc: ContractDoc) -> List[ValidationIssue]:
    role = ROLES_BY_ID.get(doc.role_id)
    if role is None:
        return []
    issues: List[ValidationIssue] = []
    for check in DOC_RULES.values():
        issues.extend(check(doc, role))
    return issues


def validate_docs(docs: List[ContractDoc]) -> List[ValidationIssue]:
    """Packet-level checks, then every document rule for each known role."""
    issues: List[ValidationIssue] = []
    if len(docs) != len(ROLE_IDS):
        issues.append(_block("ROLE_COUNT", f"Expected {len(ROLE_IDS)} documents, got {len(docs)}."))

    present = {d.role_id for d in docs}
    missing = sorted(ROLE_IDS - present)
    extra = sorted(present - ROLE_IDS)
    if missing:
        issues.append(_block("MISSING_ROLES", f"Missing role ids: {missing}."))
    if extra:
        issues.append(_block("EXTRA_ROLES", f"Unknown role ids: {extra}."))

    for doc in docs:
        issues.extend(validate_doc(doc))
    return issues


def check_unknown_survival(docs: List[ContractDoc], decisions: Iterable[DecisionItem]) -> List[ValidationIssue]:
    """If the ledger holds any UNKNOWN, the packet must still carry one."""
    ledger_has_unknown = any(d.trust_label == TrustLabel.UNKNOWN for d in decisions)
    if not ledger_has_unknown:
        return []
    packet_has_unknown = any(
        (c.trust_label or "").strip() == TrustLabel.UNKNOWN.value for d in docs for c in d.claims
    )
    if packet_has_unknown:
        return []
    return [_block(
        "UNKNOWN_SURVIVAL",
        "The ledger has UNKNOWN decisions but no claim in the packet is labeled UNKNOWN.",
    )]


def blocking(issues: List[ValidationIssue]) -> List[ValidationIssue]:
    return [i for i in issues if i.severity == IssueSeverity.BLOCK]
