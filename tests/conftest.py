"""
Shared fixtures: an in-memory backend with failure injection, a temp SQLite
backend, and ready-made stores/reconcilers. No network calls.
"""
import itertools
import uuid

import pytest

from app.backend import DurableBackend, SqliteBackend
from app.config import Settings, sha256
from app.errors import RemoteWriteFailure
from app.models import Evaluation, Judge, Team
from app.rubric import Criteria
from app.state import AppState
from app.store import EvaluationStore
from app.sync import Reconciler

TEAM_A = "aaaaaaaa-0000-4000-8000-000000000001"
TEAM_B = "bbbbbbbb-0000-4000-8000-000000000002"
TEAM_C = "cccccccc-0000-4000-8000-000000000003"
JUDGE_1 = "11111111-0000-4000-8000-000000000001"
JUDGE_2 = "22222222-0000-4000-8000-000000000002"
ADMIN_PASSWORD = "letmein"


def crit(innovation=10, technical=10, presentation=10, impact=10, completion=10):
    return Criteria(innovation, technical, presentation, impact, completion)


def counting_clock():
    ticks = itertools.count(1)
    return lambda: f"2026-10-16T12:00:00.{next(ticks):06d}+00:00"


class FakeBackend(DurableBackend):
    """Dict-backed backend. Set fail_writes / fail_reads to an exception to inject failures."""

    name = "fake"

    def __init__(self, reachable=True):
        self.reachable = reachable
        self.teams = []
        self.judges = []
        self.evaluations = {}
        self.calls = []
        self.fail_writes = None
        self.fail_reads = None

    def _read(self, call):
        self.calls.append(call)
        if self.fail_reads is not None:
            raise self.fail_reads

    def _write(self, call):
        self.calls.append(call)
        if self.fail_writes is not None:
            raise self.fail_writes

    @property
    def write_calls(self):
        return [c for c in self.calls if c not in ("probe", "list_teams", "list_judges", "list_evaluations")]

    def probe(self):
        self.calls.append("probe")
        return self.reachable

    def list_teams(self):
        self._read("list_teams")
        return list(self.teams)

    def list_judges(self):
        self._read("list_judges")
        return list(self.judges)

    def list_evaluations(self):
        self._read("list_evaluations")
        return list(self.evaluations.values())

    def insert_teams(self, drafts):
        self._write("insert_teams")
        created = [
            Team(id=str(uuid.uuid4()), name=d["name"], members=tuple(d.get("members") or ()),
                 project=d["project"], institution=d.get("institution"))
            for d in drafts
        ]
        self.teams.extend(created)
        return created

    def insert_judges(self, drafts):
        self._write("insert_judges")
        created = [Judge(id=str(uuid.uuid4()), name=d["name"], email=d["email"]) for d in drafts]
        self.judges.extend(created)
        return created

    def insert_evaluation(self, team_id, judge_id, criteria, notes):
        self._write("insert_evaluation")
        created = Evaluation(
            id=str(uuid.uuid4()), team_id=team_id, judge_id=judge_id, criteria=criteria,
            notes=notes, timestamp="2026-10-16T09:00:00+00:00",
        )
        self.evaluations[created.id] = created
        return created

    def update_evaluation(self, evaluation_id, criteria, notes, timestamp):
        self._write("update_evaluation")
        e = self.evaluations.get(evaluation_id)
        if e is None:
            raise RemoteWriteFailure(f"Evaluation {evaluation_id} not found")
        e.criteria, e.notes, e.timestamp = criteria, notes, timestamp

    def delete_team(self, team_id):
        self._write("delete_team")
        self.teams = [t for t in self.teams if t.id != team_id]

    def delete_judge(self, judge_id):
        self._write("delete_judge")
        self.judges = [j for j in self.judges if j.id != judge_id]

    def delete_evaluations_matching(self, match):
        self._write("delete_evaluations_matching")
        self.evaluations = {
            k: e for k, e in self.evaluations.items()
            if not all(getattr(e, col) == val for col, val in match.items())
        }


@pytest.fixture
def store():
    return EvaluationStore(clock=counting_clock())


@pytest.fixture
def settings(tmp_path):
    return Settings(db_path=str(tmp_path / "judging.sqlite"), admin_pw_hash=sha256(ADMIN_PASSWORD))


@pytest.fixture
def fake_backend():
    backend = FakeBackend()
    backend.teams = [
        Team(id=TEAM_A, name="Alpha", members=("Ann",), project="Rover"),
        Team(id=TEAM_B, name="Beta", members=("Ben",), project="Drone", institution="MIT"),
    ]
    backend.judges = [
        Judge(id=JUDGE_1, name="Judge One", email="one@example.com"),
        Judge(id=JUDGE_2, name="Judge Two", email="two@example.com"),
    ]
    return backend


def _reconciler(backend, settings):
    state = AppState(evaluations=EvaluationStore(clock=counting_clock()))
    sync = Reconciler(state, backend, settings, clock=counting_clock())
    sync.load()
    return sync


@pytest.fixture
def online_sync(fake_backend, settings):
    return _reconciler(fake_backend, settings)


@pytest.fixture
def offline_sync(settings):
    return _reconciler(FakeBackend(reachable=False), settings)


@pytest.fixture
def sqlite_backend(tmp_path):
    return SqliteBackend(str(tmp_path / "judging.sqlite"), timeout=1.0)
