"""Turn — one utterance in an intake cycle."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class Actor(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Project(BaseModel):
    """An intake project owned by a single user."""

    id: str
    owner_user_id: str
    name: str = ""
    active_cycle_no: int = 1
    created_at: datetime


class Turn(BaseModel):
    """Immutable once written. turn_index is strictly increasing per cycle."""

    id: str
    project_id: str
    cycle_no: int
    turn_index: int
    actor: Actor
    raw_text: str
    created_at: datetime
