from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, Mapping, Tuple

# Five criteria, each scored 0-20 by a judge
CRITERIA_FIELDS: Tuple[str, ...] = ("innovation", "technical", "presentation", "impact", "completion")
CRITERION_MIN = 0
CRITERION_MAX = 20
RUBRIC_TOTAL = CRITERION_MAX * len(CRITERIA_FIELDS)  # 100


@dataclass(frozen=True)
class Criteria:
    innovation: int
    technical: int
    presentation: int
    impact: int
    completion: int

    @classmethod
    def from_mapping(cls, data: Mapping[str, int]) -> "Criteria":
        return cls(**{name: int(data[name]) for name in CRITERIA_FIELDS})

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


def total_score(criteria: Criteria) -> int:
    """
    Sum of the five criteria.
    No clamping: range checks belong to whoever collected the scores.
    """
    return sum(getattr(criteria, name) for name in CRITERIA_FIELDS)
