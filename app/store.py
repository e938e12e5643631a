from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .models import Evaluation, require_valid_id
from .rubric import Criteria

logger = logging.getLogger(__name__)

PairKey = Tuple[str, str]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class EvaluationStore:
    """
    In-memory evaluations, at most one per (team_id, judge_id).

    upsert_evaluation() is the only way a record gets in; a repeat submission
    for the same pair overwrites criteria/notes/timestamp and keeps the id.
    Records returned to callers are copies.
    """

    def __init__(self, clock: Callable[[], str] = utc_now_iso, id_factory: Optional[Callable[[], str]] = None):
        self._clock = clock
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._lock = threading.RLock()
        self._items: List[Evaluation] = []
        self._by_pair: Dict[PairKey, Evaluation] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    # -----------------------
    # Reads
    # -----------------------
    def find_evaluation(self, team_id: str, judge_id: str) -> Optional[Evaluation]:
        with self._lock:
            existing = self._by_pair.get((team_id, judge_id))
            return replace(existing) if existing else None

    def list_by_judge(self, judge_id: str) -> List[Evaluation]:
        with self._lock:
            return [replace(e) for e in self._items if e.judge_id == judge_id]

    def list_all(self) -> List[Evaluation]:
        with self._lock:
            return [replace(e) for e in self._items]

    # -----------------------
    # Writes
    # -----------------------
    def upsert_evaluation(
        self,
        team_id: str,
        judge_id: str,
        criteria: Criteria,
        notes: Optional[str] = None,
        *,
        evaluation_id: Optional[str] = None,
        timestamp: Optional[str] = None,
        synced: bool = False,
    ) -> Evaluation:
        """
        Insert or update the evaluation for (team_id, judge_id).

        evaluation_id/timestamp let a caller adopt a backend-assigned identity
        for a new record. An existing record keeps its own id, unless it was
        only ever saved locally and is now being synced (synced=True), in
        which case it takes the backend's id.
        Raises ValidationError on malformed ids, before touching anything.
        """
        require_valid_id(team_id, "team")
        require_valid_id(judge_id, "judge")
        with self._lock:
            return replace(self._apply(team_id, judge_id, criteria, notes, evaluation_id, timestamp, synced))

    def _apply(
        self,
        team_id: str,
        judge_id: str,
        criteria: Criteria,
        notes: Optional[str],
        evaluation_id: Optional[str],
        timestamp: Optional[str],
        synced: bool,
    ) -> Evaluation:
        stamp = timestamp or self._clock()
        existing = self._by_pair.get((team_id, judge_id))
        if existing is not None:
            if synced and not existing.synced and evaluation_id:
                existing.id = evaluation_id
            existing.criteria = criteria
            existing.notes = notes
            existing.timestamp = stamp
            existing.synced = existing.synced or synced
            return existing

        created = Evaluation(
            id=evaluation_id or self._id_factory(),
            team_id=team_id,
            judge_id=judge_id,
            criteria=criteria,
            notes=notes,
            timestamp=stamp,
            synced=synced,
        )
        self._items.append(created)
        self._by_pair[(team_id, judge_id)] = created
        return created

    def load(self, evaluations: Iterable[Evaluation]) -> None:
        """Replace the whole collection. Duplicate pairs collapse, last one wins."""
        with self._lock:
            self._items = []
            self._by_pair = {}
            for e in evaluations:
                self._apply(e.team_id, e.judge_id, e.criteria, e.notes, e.id, e.timestamp, e.synced)
            logger.info("Loaded %d evaluations", len(self._items))

    def remove_by_team(self, team_id: str) -> int:
        return self._remove_where(lambda e: e.team_id == team_id)

    def remove_by_judge(self, judge_id: str) -> int:
        return self._remove_where(lambda e: e.judge_id == judge_id)

    def _remove_where(self, predicate: Callable[[Evaluation], bool]) -> int:
        with self._lock:
            kept = [e for e in self._items if not predicate(e)]
            removed = len(self._items) - len(kept)
            self._items = kept
            self._by_pair = {(e.team_id, e.judge_id): e for e in kept}
            return removed

    def reset_all(self) -> None:
        """Drop every evaluation. Irreversible; confirmation is the caller's job."""
        with self._lock:
            self._items = []
            self._by_pair = {}
