"""
Question Funnel — deterministic next-question selection over ledger state.

The funnel walks a fixed, ordered list of required decision keys:

    business_type -> primary_outcome -> launch_capabilities
        -> monetization_path -> quality_signal -> ready

and returns the canned plan for the first key that is not yet explicitly
confirmed. A pending checkpoint, an artifact still being ingested, or a
contradiction between confirmed answers short-circuits that walk.

Typed options (``prefix:value``) are the only way a key gets locked. Free
text only ever writes inference-grade entries, plus a quality signal once
the core keys are locked.
"""

import logging
import re
from typing import Dict, List, Optional, Tuple

from intake_kernel.funnel.control import describe_branch
from intake_kernel.ledger.ledger import DecisionLedger
from intake_kernel.models.artifact import ArtifactInput, IngestState, VerificationState
from intake_kernel.models.checkpoint import Checkpoint, QuestionOption
from intake_kernel.models.decision import DecisionItem, LockState, TrustLabel
from intake_kernel.models.interview import QuestionPlan, ReadinessReport
from intake_kernel.models.turn import Turn
from intake_kernel.readiness.scorer import CORE_KEYS, QUALITY_KEY, core_confirmed, is_rich_evidence

logger = logging.getLogger(__name__)

FUNNEL_ORDER = CORE_KEYS + [QUALITY_KEY, "ready"]

PREFIX_TO_KEY = {
    "business_type": "business_type",
    "outcome": "primary_outcome",
    "capability": "launch_capabilities",
    "monetization": "monetization_path",
    "quality": "quality_signal",
    "audience": "primary_audience",
    "readiness": "draft_readiness_ack",
    "refine": "refinement_focus",
}

KEY_LABELS = {
    "business_type": "Business type",
    "primary_outcome": "Primary outcome",
    "launch_capabilities": "Launch capability",
    "monetization_path": "Monetization path",
    "quality_signal": "Quality focus",
    "primary_audience": "Primary audience",
    "draft_readiness_ack": "Draft readiness",
    "refinement_focus": "Refinement focus",
    "latest_user_intent": "Latest user intent",
}

NONE_FIT_OPTION = "none_fit"


def _options(*pairs: Tuple[str, str]) -> List[QuestionOption]:
    return [QuestionOption(id=option_id, label=label) for option_id, label in pairs]


# key -> (prompt, options)
CANNED_PLANS: Dict[str, Tuple[str, List[QuestionOption]]] = {
    "business_type": (
        "What kind of business is this app for?",
        _options(
            ("business_type:service", "A service business (appointments, clients)"),
            ("business_type:selling", "Selling products"),
            ("business_type:content", "Content or community"),
            ("business_type:internal_tool", "An internal tool for a team"),
            (NONE_FIT_OPTION, "None of these fit"),
        ),
    ),
    "primary_outcome": (
        "What is the main thing a customer should be able to do?",
        _options(
            ("outcome:book", "Book a time"),
            ("outcome:buy", "Buy something"),
            ("outcome:browse", "Browse and learn"),
            ("outcome:request", "Send a request or inquiry"),
        ),
    ),
    "launch_capabilities": (
        "Which capability matters most at launch?",
        _options(
            ("capability:online_scheduling", "Online scheduling"),
            ("capability:payment_processing", "Payment processing"),
            ("capability:client_reminders", "Client reminders"),
            ("capability:simple_gallery", "A simple gallery or portfolio"),
        ),
    ),
    "monetization_path": (
        "How should the app handle money at launch?",
        _options(
            ("monetization:required", "Charge customers at launch"),
            ("monetization:later", "Charge later, not at launch"),
            ("monetization:none", "No payments"),
        ),
    ),
    "quality_signal": (
        "Before I draft the packet: what would make this app feel genuinely good to use? "
        "Describe a moment in the customer's flow in a sentence or two.",
        _options(
            ("quality:customer_flow", "A smooth customer flow"),
            ("quality:operations", "Less admin work for me"),
            ("quality:trust", "Trust and credibility"),
            ("quality:brand_feel", "Brand look and feel"),
        ),
    ),
    "ready": (
        "I have enough to draft your ten-document requirements packet. Generate it now?",
        _options(
            ("readiness:ready_to_commit", "Generate my requirements packet"),
            ("readiness:improve_quality", "Strengthen a few answers first"),
        ),
    ),
    "refinement_focus": (
        "Which part should we sharpen before drafting? Tell me more in your own words.",
        _options(
            ("refine:edge_cases", "Edge cases and failure handling"),
            ("refine:success_metrics", "How success is measured"),
            ("refine:priorities", "What ships first"),
        ),
    ),
}

ARTIFACT_GROUNDING_PROMPT = (
    "I'm still reading the website you shared. While that finishes, "
    "tell me in your own words what the business does."
)

_BUSINESS_TYPE_HINTS: List[Tuple[re.Pattern, str, str]] = [
    (re.compile(r"photograph", re.IGNORECASE), "service", "Photography service business"),
    (re.compile(r"\bcoach|\bconsult", re.IGNORECASE), "service", "Coaching or consulting service"),
    (re.compile(r"\bmeal|\bfood\b|restaurant|bakery|catering", re.IGNORECASE), "selling",
     "Food or meal business"),
    (re.compile(r"e-?commerce|online store|\bstore\b|\bshop\b", re.IGNORECASE), "selling",
     "Online store selling products"),
    (re.compile(r"\bapp\b|\bsoftware\b|\bsaas\b", re.IGNORECASE), "software", "Software or SaaS product"),
]

_SCOPE_COMPLETE = re.compile(
    r"no more features?|that'?s enough|that is enough|ready to commit|ready to generate|"
    r"nothing else|that'?s all|that is all|generate (it|the packet)",
    re.IGNORECASE,
)
_STRENGTHEN = re.compile(r"\b(strengthen|improve|refine|more detail|sharpen)\b", re.IGNORECASE)

CLAIM_MAX_CHARS = 280


def sanitize_options(options: List[QuestionOption]) -> List[QuestionOption]:
    """Drop blank options and duplicate ids, keeping first occurrence order."""
    seen = set()
    clean = []
    for option in options:
        option_id = (option.id or "").strip()
        label = (option.label or "").strip()
        if not option_id or not label or option_id in seen:
            continue
        seen.add(option_id)
        clean.append(QuestionOption(id=option_id, label=label))
    return clean


def parse_option(option_id: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """'outcome:book' -> ('primary_outcome', 'book'). Unknown prefixes map to (None, None)."""
    prefix, sep, value = (option_id or "").strip().partition(":")
    key = PREFIX_TO_KEY.get(prefix.strip().lower())
    if not sep or not key or not value.strip():
        return None, None
    return key, value.strip().lower()


def option_label(option_id: str) -> Optional[str]:
    for _, options in CANNED_PLANS.values():
        for option in options:
            if option.id == option_id:
                return option.label
    return None


def infer_business_type(text: str) -> Optional[Tuple[str, str]]:
    for pattern, value, claim in _BUSINESS_TYPE_HINTS:
        if pattern.search(text or ""):
            return value, claim
    return None


def _clip(text: str, limit: int = CLAIM_MAX_CHARS) -> str:
    text = " ".join((text or "").split())
    return text if len(text) <= limit else text[: limit - 3].rstrip() + "..."


def record_turn_meaning(
    ledger: DecisionLedger,
    turn: Turn,
    selected_option_id: Optional[str],
    free_text: Optional[str],
    checkpoint_pending: bool,
) -> List[DecisionItem]:
    """Write the ledger entries this user turn implies. Returns the rows as stored."""
    project_id, cycle_no = turn.project_id, turn.cycle_no
    turn_ref = [f"turn:{turn.id}"]
    written: List[DecisionItem] = []

    key, value = parse_option(selected_option_id)
    if key and not checkpoint_pending:
        label = option_label(selected_option_id.strip()) or value.replace("_", " ")
        written.append(ledger.upsert(
            project_id, cycle_no, key,
            claim=f"{KEY_LABELS.get(key, key)}: {label}.",
            trust_label=TrustLabel.USER_SAID,
            lock_state=LockState.LOCKED,
            confirming_turn_id=turn.id,
            evidence_refs=turn_ref,
            value=value,
        ))
    elif selected_option_id and not key and selected_option_id != NONE_FIT_OPTION:
        logger.debug("Ignoring unmapped option %s", selected_option_id)

    text = (free_text or "").strip()
    if not text:
        return written

    written.append(ledger.upsert(
        project_id, cycle_no, "latest_user_intent",
        claim=_clip(text),
        trust_label=TrustLabel.USER_SAID,
        lock_state=LockState.OPEN,
        evidence_refs=turn_ref,
    ))
    if checkpoint_pending:
        return written

    latest = ledger.latest_by_key(project_id, cycle_no)
    business_type = latest.get("business_type")
    if business_type is None or not business_type.is_explicitly_confirmed:
        inferred = infer_business_type(text)
        if inferred:
            written.append(ledger.upsert(
                project_id, cycle_no, "business_type",
                claim=f"Business type (inferred): {inferred[1]}.",
                trust_label=TrustLabel.ASSUMED,
                evidence_refs=turn_ref,
                value=inferred[0],
            ))
        elif business_type is None:
            written.append(ledger.upsert(
                project_id, cycle_no, "business_type",
                claim="Business type is still unknown.",
                trust_label=TrustLabel.UNKNOWN,
                evidence_refs=turn_ref,
            ))

    if core_confirmed(latest) and is_rich_evidence(text):
        written.append(ledger.upsert(
            project_id, cycle_no, QUALITY_KEY,
            claim=_clip(text),
            trust_label=TrustLabel.USER_SAID,
            lock_state=LockState.OPEN,
            evidence_refs=turn_ref,
        ))
    return written


def _plan(key: str, branch: str, prompt: Optional[str] = None,
          options: Optional[List[QuestionOption]] = None) -> QuestionPlan:
    canned_prompt, canned_options = CANNED_PLANS.get(key, ("", []))
    posture, move = describe_branch(branch)
    return QuestionPlan(
        key=key,
        prompt=prompt if prompt is not None else canned_prompt,
        options=sanitize_options(options if options is not None else canned_options),
        branch=branch,
        posture=posture,
        move=move,
    )


def plan_next(
    decisions: Dict[str, DecisionItem],
    readiness: ReadinessReport,
    artifact: Optional[ArtifactInput] = None,
    pending_checkpoint: Optional[Checkpoint] = None,
    selected_option_id: Optional[str] = None,
    free_text: Optional[str] = None,
) -> QuestionPlan:
    """Pick the next question. Earlier branches always win."""
    if pending_checkpoint is not None:
        return _plan("website_checkpoint", "checkpoint_pending",
                     prompt=pending_checkpoint.prompt, options=pending_checkpoint.options)

    if (
        artifact is not None
        and artifact.verification_state == VerificationState.UNVERIFIED
        and artifact.ingest_state == IngestState.PENDING
    ):
        return _plan("website_context", "artifact_grounding", prompt=ARTIFACT_GROUNDING_PROMPT, options=[])

    for key in CORE_KEYS:
        item = decisions.get(key)
        if item is not None and item.has_conflict:
            other = decisions.get(item.conflict_key)
            other_claim = other.claim if other else item.conflict_key
            prompt = (
                f"Two of your answers pull in different directions: \"{item.claim}\" and "
                f"\"{other_claim}\". {CANNED_PLANS[key][0]}"
            )
            return _plan(key, "conflict_reframe", prompt=prompt)

    for key in CORE_KEYS:
        item = decisions.get(key)
        if item is None or not item.is_explicitly_confirmed:
            return _plan(key, f"{key}_gap")

    if not readiness.quality_ready:
        return _plan(QUALITY_KEY, "quality_signal_gap")

    text = (free_text or "").strip()
    wants_boost = selected_option_id == "readiness:improve_quality" or (
        bool(text) and _STRENGTHEN.search(text) and not _SCOPE_COMPLETE.search(text)
    )
    if wants_boost:
        return _plan("refinement_focus", "quality_boost_refinement")

    if text and _SCOPE_COMPLETE.search(text):
        return _plan("ready", "scope_complete")
    return _plan("ready", "ready_for_commit")
