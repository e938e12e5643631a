"""
Reconciliation between in-memory state and the durable backend.

Every write goes through Reconciler, which picks one of three paths:

  offline         gate says unreachable -> change memory only
  online          backend write first, then mirror into memory
  online, failed  raise; memory keeps only the backend steps that succeeded
                  (a policy rejection on an evaluation or a reset may instead
                  keep the local change, see Settings)

An evaluation saved only in memory stays unsynced; the next online submission
for its pair inserts it and adopts the backend id.

Startup load fills memory from the backend, or from the seed roster when the
backend can't be reached; in that case the session stays offline.
"""
from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .aggregation import compute_team_result, compute_team_results
from .backend import DurableBackend
from .config import Settings
from .errors import PermissionDenied, RemoteReadFailure, RemoteWriteFailure, ValidationError
from .models import Evaluation, Judge, Team, TeamResult, require_valid_id
from .rubric import Criteria
from .seed import SEED_TEAMS
from .state import AppState
from .store import utc_now_iso

logger = logging.getLogger(__name__)

TEAM_REQUIRED = ("name", "project")
JUDGE_REQUIRED = ("name", "email")


class Outcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SAVED_LOCALLY = "saved_locally"
    SAVED_LOCALLY_WITH_WARNING = "saved_locally_with_warning"


OUTCOME_MESSAGES: Dict[Outcome, str] = {
    Outcome.CREATED: "Evaluation submitted successfully",
    Outcome.UPDATED: "Evaluation updated successfully",
    Outcome.SAVED_LOCALLY: "Evaluation saved locally (offline mode)",
    Outcome.SAVED_LOCALLY_WITH_WARNING: "Online submission was rejected, but the evaluation was saved locally",
}


@dataclass
class SubmissionResult:
    evaluation: Evaluation
    outcome: Outcome

    @property
    def message(self) -> str:
        return OUTCOME_MESSAGES[self.outcome]

    @property
    def is_warning(self) -> bool:
        return self.outcome is Outcome.SAVED_LOCALLY_WITH_WARNING


def _has_required(draft: Mapping[str, Any], required: Sequence[str]) -> bool:
    return all(str(draft.get(f) or "").strip() for f in required)


def _local_id() -> str:
    return str(uuid.uuid4())


class Reconciler:
    def __init__(
        self,
        state: AppState,
        backend: DurableBackend,
        settings: Optional[Settings] = None,
        clock: Callable[[], str] = utc_now_iso,
    ):
        self.state = state
        self.backend = backend
        self.settings = settings or Settings()
        self.clock = clock
        # find -> remote call -> local mutation runs as one step
        self._write_lock = threading.RLock()

    @property
    def online(self) -> bool:
        return self.state.connectivity.reachable

    # -----------------------
    # Startup
    # -----------------------
    def load(self) -> None:
        gate = self.state.connectivity
        if not gate.probe(self.backend):
            self._load_seed()
            return

        try:
            teams = self.backend.list_teams()
            if not teams:
                teams = self._seed_backend()
            judges = self.backend.list_judges()
            evaluations = self.backend.list_evaluations()
        except RemoteReadFailure as e:
            logger.error("Startup load failed, falling back to seed data: %s", e)
            gate.mark_unreachable()
            self._load_seed()
            return

        with self.state.lock:
            self.state.teams = list(teams)
            self.state.judges = list(judges)
            self.state.evaluations.load(evaluations)
            self.state.loaded = True
        logger.info(
            "Loaded %d teams, %d judges, %d evaluations from %s",
            len(teams), len(judges), len(evaluations), self.backend.name,
        )

    def _load_seed(self) -> None:
        with self.state.lock:
            self.state.teams = list(SEED_TEAMS)
            self.state.judges = []
            self.state.evaluations.reset_all()
            self.state.loaded = True
        logger.warning("Running offline with %d seed teams", len(SEED_TEAMS))

    def _seed_backend(self) -> List[Team]:
        """Empty backend: insert the seed roster one by one, skipping failures."""
        created: List[Team] = []
        for team in SEED_TEAMS:
            draft = {"name": team.name, "members": team.members, "project": team.project,
                     "institution": team.institution}
            try:
                created.append(self.backend.insert_team(draft))
            except RemoteWriteFailure as e:
                logger.error("Could not insert seed team %s: %s", team.name, e)
        return created or list(SEED_TEAMS)

    # -----------------------
    # Remote helpers
    # -----------------------
    def _reprobe(self) -> None:
        # a failed probe drops the gate to offline for later writes
        self.state.connectivity.probe(self.backend)

    def _remote_write(self, what: str, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return fn(*args)
        except PermissionDenied as e:
            logger.warning("Backend rejected %s: %s", what, e)
            raise
        except RemoteWriteFailure as e:
            logger.error("Backend failed to %s: %s", what, e)
            self._reprobe()
            raise

    # -----------------------
    # Evaluations
    # -----------------------
    def submit_evaluation(
        self, team_id: str, judge_id: str, criteria: Criteria, notes: Optional[str] = None
    ) -> SubmissionResult:
        require_valid_id(team_id, "team")
        require_valid_id(judge_id, "judge")
        store = self.state.evaluations

        with self._write_lock:
            if not self.online:
                saved = store.upsert_evaluation(team_id, judge_id, criteria, notes)
                logger.info("Saved evaluation %s locally (offline)", saved.id)
                return SubmissionResult(saved, Outcome.SAVED_LOCALLY)

            existing = store.find_evaluation(team_id, judge_id)
            try:
                if existing is not None and existing.synced:
                    timestamp = self.clock()
                    self._remote_write(
                        "update evaluation", self.backend.update_evaluation,
                        existing.id, criteria, notes, timestamp,
                    )
                    saved = store.upsert_evaluation(
                        team_id, judge_id, criteria, notes, timestamp=timestamp, synced=True
                    )
                    return SubmissionResult(saved, Outcome.UPDATED)

                # no backend row yet; a local-only record takes the backend's id
                created = self._remote_write(
                    "insert evaluation", self.backend.insert_evaluation,
                    team_id, judge_id, criteria, notes,
                )
                saved = store.upsert_evaluation(
                    team_id, judge_id, criteria, notes,
                    evaluation_id=created.id, timestamp=created.timestamp, synced=True,
                )
                return SubmissionResult(saved, Outcome.CREATED)
            except PermissionDenied:
                if not self.settings.policy_rejection_saves_locally:
                    raise
                saved = store.upsert_evaluation(team_id, judge_id, criteria, notes)
                return SubmissionResult(saved, Outcome.SAVED_LOCALLY_WITH_WARNING)

    def judge_evaluations(self, judge_id: str) -> List[Evaluation]:
        return self.state.evaluations.list_by_judge(judge_id)

    def reset_evaluations(self) -> bool:
        """
        Delete every evaluation. Returns True when the backend was cleared too.

        A policy rejection clears memory anyway (returning False) unless
        policy_rejection_saves_locally is off, in which case it propagates.
        """
        with self._write_lock:
            synced = self.online
            if synced:
                try:
                    self._remote_write("reset evaluations", self.backend.delete_evaluations_matching, {})
                except PermissionDenied:
                    if not self.settings.policy_rejection_saves_locally:
                        raise
                    synced = False
            self.state.evaluations.reset_all()
        logger.warning("All evaluations reset%s", "" if synced else " (local only)")
        return synced

    # -----------------------
    # Roster
    # -----------------------
    def add_team(self, draft: Mapping[str, Any]) -> Team:
        if not _has_required(draft, TEAM_REQUIRED):
            raise ValidationError("Team needs a name and a project")
        return self.upload_teams([draft])[0]

    def upload_teams(self, drafts: Sequence[Mapping[str, Any]]) -> List[Team]:
        valid = [d for d in drafts if _has_required(d, TEAM_REQUIRED)]
        if len(valid) < len(drafts):
            logger.warning("Skipped %d team records missing name or project", len(drafts) - len(valid))
        if not valid:
            return []

        with self._write_lock:
            if self.online:
                created = self._remote_write("insert teams", self.backend.insert_teams, valid)
            else:
                created = [
                    Team(
                        id=_local_id(),
                        name=d["name"],
                        members=tuple(d.get("members") or ()),
                        project=d["project"],
                        institution=d.get("institution") or None,
                    )
                    for d in valid
                ]
            with self.state.lock:
                self.state.teams = [*self.state.teams, *created]
        logger.info("Added %d teams", len(created))
        return created

    def add_judge(self, draft: Mapping[str, Any]) -> Judge:
        if not _has_required(draft, JUDGE_REQUIRED):
            raise ValidationError("Judge needs a name and an email")
        return self.upload_judges([draft])[0]

    def upload_judges(self, drafts: Sequence[Mapping[str, Any]]) -> List[Judge]:
        valid = [d for d in drafts if _has_required(d, JUDGE_REQUIRED)]
        if len(valid) < len(drafts):
            logger.warning("Skipped %d judge records missing name or email", len(drafts) - len(valid))
        if not valid:
            return []

        with self._write_lock:
            if self.online:
                created = self._remote_write("insert judges", self.backend.insert_judges, valid)
            else:
                created = [Judge(id=_local_id(), name=d["name"], email=d["email"]) for d in valid]
            with self.state.lock:
                self.state.judges = [*self.state.judges, *created]
        logger.info("Added %d judges", len(created))
        return created

    def remove_team(self, team_id: str) -> int:
        """Remove a team and its evaluations. Returns how many evaluations went with it."""
        with self._write_lock:
            if self.online:
                self._remote_write(
                    "delete team evaluations", self.backend.delete_evaluations_matching, {"team_id": team_id}
                )
                # mirror now so a failed team delete can't leave evaluations only in memory
                removed = self.state.evaluations.remove_by_team(team_id)
                self._remote_write("delete team", self.backend.delete_team, team_id)
            else:
                removed = self.state.evaluations.remove_by_team(team_id)
            with self.state.lock:
                self.state.teams = [t for t in self.state.teams if t.id != team_id]
        logger.info("Removed team %s and %d evaluations", team_id, removed)
        return removed

    def remove_judge(self, judge_id: str) -> int:
        """Remove a judge and their evaluations. Returns how many evaluations went with them."""
        with self._write_lock:
            if self.online:
                self._remote_write(
                    "delete judge evaluations", self.backend.delete_evaluations_matching, {"judge_id": judge_id}
                )
                removed = self.state.evaluations.remove_by_judge(judge_id)
                self._remote_write("delete judge", self.backend.delete_judge, judge_id)
            else:
                removed = self.state.evaluations.remove_by_judge(judge_id)
            with self.state.lock:
                self.state.judges = [j for j in self.state.judges if j.id != judge_id]
        logger.info("Removed judge %s and %d evaluations", judge_id, removed)
        return removed

    # -----------------------
    # Results
    # -----------------------
    def team_results(self) -> List[TeamResult]:
        with self.state.lock:
            teams = list(self.state.teams)
            evaluations = self.state.evaluations.list_all()
        return compute_team_results(teams, evaluations)

    def team_result(self, team_id: str) -> Optional[TeamResult]:
        with self.state.lock:
            teams = list(self.state.teams)
            evaluations = self.state.evaluations.list_all()
        return compute_team_result(team_id, teams, evaluations)
