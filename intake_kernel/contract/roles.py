"""Role catalog — the fixed ten documents of a requirements packet and their budgets."""

from typing import Dict, List

from pydantic import BaseModel


class RoleSpec(BaseModel):
    role_id: int
    key: str
    title: str
    soft_target: int                 # Words; drifting past 0.75x-1.25x only warns
    hard_min: int                    # Below blocks
    hard_max: int                    # Above blocks
    purpose: str                     # One sentence used by the deterministic generator
    focus_keys: List[str] = []       # Decision keys this role draws on first


ROLE_CATALOG: List[RoleSpec] = [
    RoleSpec(
        role_id=1, key="NORTH_STAR", title="North Star",
        soft_target=120, hard_min=90, hard_max=150,
        purpose="It states who the product serves and the single outcome that defines success.",
        focus_keys=["business_type", "primary_outcome", "quality_signal"],
    ),
    RoleSpec(
        role_id=2, key="USER_STORY_MAP", title="User Story Map",
        soft_target=220, hard_min=170, hard_max=270,
        purpose="It maps the customer journey from first visit to the confirmed primary outcome.",
        focus_keys=["primary_outcome", "latest_user_intent", "primary_audience"],
    ),
    RoleSpec(
        role_id=3, key="SCOPE_BOUNDARY", title="Scope Boundary",
        soft_target=160, hard_min=120, hard_max=200,
        purpose="It draws the line between what version one includes and what waits for later.",
        focus_keys=["launch_capabilities", "monetization_path"],
    ),
    RoleSpec(
        role_id=4, key="FEATURES_PRIORITIZED", title="Features Prioritized",
        soft_target=220, hard_min=170, hard_max=280,
        purpose="It ranks the launch capabilities so the most valuable one ships first.",
        focus_keys=["launch_capabilities", "refinement_focus"],
    ),
    RoleSpec(
        role_id=5, key="DATA_MODEL", title="Data Model",
        soft_target=220, hard_min=170, hard_max=280,
        purpose="It names the records the app must keep and how they relate to each other.",
        focus_keys=["business_type", "launch_capabilities"],
    ),
    RoleSpec(
        role_id=6, key="INTEGRATIONS", title="Integrations",
        soft_target=160, hard_min=120, hard_max=210,
        purpose="It lists the outside services the app depends on, payments included.",
        focus_keys=["monetization_path", "launch_capabilities"],
    ),
    RoleSpec(
        role_id=7, key="UX_NOTES", title="UX Notes",
        soft_target=180, hard_min=140, hard_max=230,
        purpose="It records how the experience should feel at each step of the core flow.",
        focus_keys=["quality_signal", "primary_outcome"],
    ),
    RoleSpec(
        role_id=8, key="RISKS_OPEN_QUESTIONS", title="Risks & Open Questions",
        soft_target=180, hard_min=140, hard_max=240,
        purpose="It keeps every unresolved question and delivery risk visible to the builder.",
        focus_keys=["business_type", "monetization_path"],
    ),
    RoleSpec(
        role_id=9, key="BUILD_PLAN", title="Build Plan",
        soft_target=220, hard_min=170, hard_max=280,
        purpose="It sequences the work into small milestones that each end in something testable.",
        focus_keys=["launch_capabilities", "monetization_path"],
    ),
    RoleSpec(
        role_id=10, key="ACCEPTANCE_TESTS", title="Acceptance Tests",
        soft_target=220, hard_min=170, hard_max=280,
        purpose="It describes the checks that prove version one delivers the confirmed outcome.",
        focus_keys=["primary_outcome", "quality_signal"],
    ),
]

ROLES_BY_ID: Dict[int, RoleSpec] = {r.role_id: r for r in ROLE_CATALOG}
ROLE_IDS = frozenset(ROLES_BY_ID)

SPINE_SECTIONS = [
    "purpose",
    "key decisions",
    "acceptance criteria",
    "success measures",
    "unknowns",
    "builder notes",
]

BUILDER_NOTES_MIN = 3
BUILDER_NOTES_MAX = 6
MAX_CLAIMS_PER_DOC = 4
