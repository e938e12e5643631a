from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .errors import ValidationError
from .rubric import Criteria, total_score

# Backend identities are canonical UUIDs; the built-in seed teams use t1..t99
UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
SEED_ID_RE = re.compile(r"^t\d{1,2}$")


def is_valid_id(value: object) -> bool:
    if not isinstance(value, str):
        return False
    return bool(UUID_RE.match(value) or SEED_ID_RE.match(value))


def require_valid_id(value: object, label: str) -> str:
    if not is_valid_id(value):
        raise ValidationError(f"Invalid {label} id format: {value!r}")
    return value  # type: ignore[return-value]


@dataclass(frozen=True)
class Team:
    id: str
    name: str
    members: Tuple[str, ...] = ()
    project: str = ""
    institution: Optional[str] = None


@dataclass(frozen=True)
class Judge:
    id: str
    name: str
    email: str


@dataclass
class Evaluation:
    id: str
    team_id: str
    judge_id: str
    criteria: Criteria
    notes: Optional[str]
    timestamp: str
    # False until the backend has stored this record under this id
    synced: bool = True

    @property
    def total_score(self) -> int:
        return total_score(self.criteria)


@dataclass
class TeamResult:
    team: Team
    evaluations: List[Evaluation]
    total_score: int
    average_score: float

    @property
    def evaluation_count(self) -> int:
        return len(self.evaluations)
