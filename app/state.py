from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import List, Optional

from .connectivity import ConnectivityGate
from .models import Judge, Team
from .store import EvaluationStore


@dataclass
class AppState:
    """Everything the portal holds in memory for one running instance."""

    teams: List[Team] = field(default_factory=list)
    judges: List[Judge] = field(default_factory=list)
    evaluations: EvaluationStore = field(default_factory=EvaluationStore)
    connectivity: ConnectivityGate = field(default_factory=ConnectivityGate)
    loaded: bool = False
    # roster lists are swapped whole under this lock, never edited in place
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def find_team(self, team_id: str) -> Optional[Team]:
        return next((t for t in self.teams if t.id == team_id), None)

    def find_judge(self, judge_id: str) -> Optional[Judge]:
        return next((j for j in self.judges if j.id == judge_id), None)
