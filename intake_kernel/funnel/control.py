"""
Control telemetry and prompt personalization for funnel plans.

Posture and move labels are derived from the branch that fired; they are
observability only and never feed back into branching.
"""

import logging
from typing import Dict, Optional, Tuple

from intake_kernel.llm.provider import LLMProvider, safe_generate_json
from intake_kernel.models.interview import QuestionPlan

logger = logging.getLogger(__name__)

# branch -> (posture, move)
BRANCH_TELEMETRY: Dict[str, Tuple[str, str]] = {
    "checkpoint_pending": ("Alignment Checkpoint", "MOVE_CONFIRM_UNDERSTANDING"),
    "artifact_grounding": ("Artifact Grounding", "MOVE_GROUND_IN_ARTIFACT"),
    "conflict_reframe": ("Recovery", "MOVE_RESOLVE_CONTRADICTION"),
    "business_type_gap": ("Exploration", "MOVE_ESTABLISH_CONTEXT"),
    "primary_outcome_gap": ("Extraction", "MOVE_CLARIFY_OUTCOME"),
    "launch_capabilities_gap": ("Extraction", "MOVE_SCOPE_CAPABILITIES"),
    "monetization_path_gap": ("Extraction", "MOVE_CLARIFY_MONETIZATION"),
    "quality_signal_gap": ("Verification", "MOVE_STRENGTHEN_EVIDENCE"),
    "quality_boost_refinement": ("Verification", "MOVE_DEEPEN_QUALITY"),
    "scope_complete": ("Alignment Checkpoint", "MOVE_CLOSE_SCOPE"),
    "ready_for_commit": ("Alignment Checkpoint", "MOVE_OFFER_COMMIT"),
}

DEFAULT_TELEMETRY = ("Exploration", "MOVE_CONTINUE")

PERSONALIZABLE_BRANCHES = {
    "business_type_gap",
    "primary_outcome_gap",
    "launch_capabilities_gap",
    "monetization_path_gap",
    "quality_signal_gap",
}

PERSONALIZE_SYSTEM_PROMPT = (
    "You rephrase one interview question for a product intake conversation. "
    "Keep its meaning and keep it to one or two sentences ending with a question mark. "
    "You may reference the user's own words from the context. Do not add new options. "
    'Respond with a JSON object: {"question": string}.'
)

MAX_PROMPT_CHARS = 320


def describe_branch(branch: str) -> Tuple[str, str]:
    return BRANCH_TELEMETRY.get(branch, DEFAULT_TELEMETRY)


def personalize_prompt(llm: LLMProvider, plan: QuestionPlan, context: Optional[str]) -> QuestionPlan:
    """
    Optionally rewrite the prompt wording. Option ids and labels never change,
    and any unusable response keeps the canned prompt.
    """
    if plan.branch not in PERSONALIZABLE_BRANCHES or not (context or "").strip():
        return plan

    payload = safe_generate_json(
        llm,
        "question personalization",
        PERSONALIZE_SYSTEM_PROMPT,
        f"Question: {plan.prompt}\n\nRecent user context: {context.strip()[:800]}",
        temperature=0.3,
        max_tokens=120,
    )
    question = str((payload or {}).get("question") or "").strip()
    if not question or len(question) > MAX_PROMPT_CHARS or not question.endswith("?"):
        if payload is not None:
            logger.warning("Personalized question rejected for branch %s", plan.branch)
        return plan
    return plan.model_copy(update={"prompt": question})
