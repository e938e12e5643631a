"""
Durable backend clients.

Both clients speak the same contract so the sync layer never cares which one
is configured. Backend rows are mapped to Team/Judge/Evaluation right here;
column names like `total_score` or `updated_at` stop at this module.
"""
from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Type

import httpx
from postgrest.exceptions import APIError

from .config import Settings
from .errors import PermissionDenied, RemoteError, RemoteReadFailure, RemoteWriteFailure
from .models import Evaluation, Judge, Team
from .rubric import CRITERIA_FIELDS, Criteria, total_score

logger = logging.getLogger(__name__)

# PostgREST code for a row-level-security rejection
PGRST_PERMISSION_DENIED = "PGRST301"
NIL_UUID = "00000000-0000-0000-0000-000000000000"

# Columns callers may match on when bulk-deleting evaluations
MATCHABLE_COLUMNS = {"team_id", "judge_id"}


# -----------------------
# Row <-> entity mapping
# -----------------------
def team_from_row(row: Mapping[str, Any]) -> Team:
    members = row["members"] or []
    if isinstance(members, str):
        members = json.loads(members)
    return Team(
        id=str(row["id"]),
        name=row["name"],
        members=tuple(members),
        project=row["project"],
        institution=row["institution"] or None,
    )


def team_to_row(draft: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "name": draft["name"],
        "members": list(draft.get("members") or []),
        "project": draft["project"],
        "institution": draft.get("institution") or None,
    }


def judge_from_row(row: Mapping[str, Any]) -> Judge:
    return Judge(id=str(row["id"]), name=row["name"], email=row["email"])


def judge_to_row(draft: Mapping[str, Any]) -> Dict[str, Any]:
    return {"name": draft["name"], "email": draft["email"]}


def evaluation_from_row(row: Mapping[str, Any]) -> Evaluation:
    criteria = Criteria.from_mapping({name: row[name] for name in CRITERIA_FIELDS})
    return Evaluation(
        id=str(row["id"]),
        team_id=str(row["team_id"]),
        judge_id=str(row["judge_id"]),
        # stored total_score is ignored; Evaluation derives it from criteria
        criteria=criteria,
        notes=row["notes"] or None,
        timestamp=row["updated_at"] or row["created_at"],
    )


def evaluation_to_row(criteria: Criteria, notes: Optional[str]) -> Dict[str, Any]:
    row: Dict[str, Any] = criteria.as_dict()
    row["total_score"] = total_score(criteria)
    row["notes"] = notes or None
    return row


def _check_match(match: Mapping[str, str]) -> None:
    unknown = set(match) - MATCHABLE_COLUMNS
    if unknown:
        raise ValueError(f"Cannot match evaluations on: {sorted(unknown)}")


# -----------------------
# Contract
# -----------------------
class DurableBackend(ABC):
    name = "backend"

    @abstractmethod
    def probe(self) -> bool:
        """Cheap reachability check. Never raises."""

    @abstractmethod
    def list_teams(self) -> List[Team]: ...

    @abstractmethod
    def list_judges(self) -> List[Judge]: ...

    @abstractmethod
    def list_evaluations(self) -> List[Evaluation]: ...

    @abstractmethod
    def insert_teams(self, drafts: Sequence[Mapping[str, Any]]) -> List[Team]: ...

    @abstractmethod
    def insert_judges(self, drafts: Sequence[Mapping[str, Any]]) -> List[Judge]: ...

    @abstractmethod
    def insert_evaluation(
        self, team_id: str, judge_id: str, criteria: Criteria, notes: Optional[str]
    ) -> Evaluation: ...

    @abstractmethod
    def update_evaluation(
        self, evaluation_id: str, criteria: Criteria, notes: Optional[str], timestamp: str
    ) -> None: ...

    @abstractmethod
    def delete_team(self, team_id: str) -> None: ...

    @abstractmethod
    def delete_judge(self, judge_id: str) -> None: ...

    @abstractmethod
    def delete_evaluations_matching(self, match: Mapping[str, str]) -> None:
        """Delete evaluations whose columns equal every value in `match`; {} deletes all."""

    def insert_team(self, draft: Mapping[str, Any]) -> Team:
        return self.insert_teams([draft])[0]

    def insert_judge(self, draft: Mapping[str, Any]) -> Judge:
        return self.insert_judges([draft])[0]


# -----------------------
# SQLite
# -----------------------
SCHEMA = """
CREATE TABLE IF NOT EXISTS teams (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    members TEXT NOT NULL DEFAULT '[]',
    project TEXT NOT NULL,
    institution TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS judges (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS evaluations (
    id TEXT PRIMARY KEY,
    team_id TEXT NOT NULL,
    judge_id TEXT NOT NULL,
    innovation INTEGER NOT NULL,
    technical INTEGER NOT NULL,
    presentation INTEGER NOT NULL,
    impact INTEGER NOT NULL,
    completion INTEGER NOT NULL,
    total_score INTEGER NOT NULL,
    notes TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(team_id, judge_id)
);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SqliteBackend(DurableBackend):
    """Relational backend in a single SQLite file."""

    name = "sqlite"

    def __init__(self, db_path: str, timeout: float = 10.0):
        self.db_path = db_path
        self.timeout = timeout
        self._initialized = False

    def db(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        with self.db() as conn:
            conn.executescript(SCHEMA)
        self._initialized = True

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        try:
            with self.db() as conn:
                yield conn
        except sqlite3.Error as e:
            raise RemoteReadFailure(f"sqlite read failed: {e}") from e

    @contextmanager
    def _writing(self) -> Iterator[sqlite3.Connection]:
        try:
            with self.db() as conn:
                yield conn
        except sqlite3.OperationalError as e:
            if "readonly" in str(e):
                raise PermissionDenied(f"sqlite rejected write: {e}") from e
            raise RemoteWriteFailure(f"sqlite write failed: {e}") from e
        except sqlite3.Error as e:
            raise RemoteWriteFailure(f"sqlite write failed: {e}") from e

    def probe(self) -> bool:
        try:
            if not self._initialized:
                self.init_db()
            with self.db() as conn:
                conn.execute("SELECT id FROM teams LIMIT 1").fetchall()
            return True
        except sqlite3.Error as e:
            logger.warning("SQLite probe failed for %s: %s", self.db_path, e)
            return False

    def list_teams(self) -> List[Team]:
        with self._reading() as conn:
            rows = conn.execute("SELECT * FROM teams ORDER BY created_at, rowid").fetchall()
        return [team_from_row(r) for r in rows]

    def list_judges(self) -> List[Judge]:
        with self._reading() as conn:
            rows = conn.execute("SELECT * FROM judges ORDER BY created_at, rowid").fetchall()
        return [judge_from_row(r) for r in rows]

    def list_evaluations(self) -> List[Evaluation]:
        with self._reading() as conn:
            rows = conn.execute("SELECT * FROM evaluations ORDER BY created_at, rowid").fetchall()
        return [evaluation_from_row(r) for r in rows]

    def insert_teams(self, drafts: Sequence[Mapping[str, Any]]) -> List[Team]:
        created = []
        with self._writing() as conn:
            for draft in drafts:
                row = team_to_row(draft)
                team_id = str(uuid.uuid4())
                conn.execute(
                    "INSERT INTO teams(id, name, members, project, institution, created_at) VALUES(?,?,?,?,?,?)",
                    (team_id, row["name"], json.dumps(row["members"]), row["project"], row["institution"], _now()),
                )
                created.append(team_from_row({**row, "id": team_id}))
        return created

    def insert_judges(self, drafts: Sequence[Mapping[str, Any]]) -> List[Judge]:
        created = []
        with self._writing() as conn:
            for draft in drafts:
                row = judge_to_row(draft)
                judge_id = str(uuid.uuid4())
                conn.execute(
                    "INSERT INTO judges(id, name, email, created_at) VALUES(?,?,?,?)",
                    (judge_id, row["name"], row["email"], _now()),
                )
                created.append(judge_from_row({**row, "id": judge_id}))
        return created

    def insert_evaluation(
        self, team_id: str, judge_id: str, criteria: Criteria, notes: Optional[str]
    ) -> Evaluation:
        row = evaluation_to_row(criteria, notes)
        row.update(id=str(uuid.uuid4()), team_id=team_id, judge_id=judge_id)
        row["created_at"] = row["updated_at"] = _now()
        cols = list(row)
        with self._writing() as conn:
            conn.execute(
                f"INSERT INTO evaluations({', '.join(cols)}) VALUES({', '.join('?' * len(cols))})",
                [row[c] for c in cols],
            )
        return evaluation_from_row(row)

    def update_evaluation(
        self, evaluation_id: str, criteria: Criteria, notes: Optional[str], timestamp: str
    ) -> None:
        row = evaluation_to_row(criteria, notes)
        row["updated_at"] = timestamp
        assignments = ", ".join(f"{c}=?" for c in row)
        with self._writing() as conn:
            cur = conn.execute(
                f"UPDATE evaluations SET {assignments} WHERE id=?",
                [*row.values(), evaluation_id],
            )
            if cur.rowcount == 0:
                raise RemoteWriteFailure(f"Evaluation {evaluation_id} not found in backend")

    def delete_team(self, team_id: str) -> None:
        with self._writing() as conn:
            conn.execute("DELETE FROM teams WHERE id=?", (team_id,))

    def delete_judge(self, judge_id: str) -> None:
        with self._writing() as conn:
            conn.execute("DELETE FROM judges WHERE id=?", (judge_id,))

    def delete_evaluations_matching(self, match: Mapping[str, str]) -> None:
        _check_match(match)
        where = " AND ".join(f"{c}=?" for c in match) or "1=1"
        with self._writing() as conn:
            conn.execute(f"DELETE FROM evaluations WHERE {where}", tuple(match.values()))


# -----------------------
# Supabase (PostgREST)
# -----------------------
class SupabaseBackend(DurableBackend):
    """Hosted Postgres through the supabase client. Tables: teams, judges, evaluations."""

    name = "supabase"

    def __init__(self, url: str, key: str, timeout: float = 10.0):
        self.url = url
        self.key = key
        self.timeout = timeout
        self._client = None

    def _get_client(self):
        if self._client is None:
            from supabase import ClientOptions, create_client

            if not self.url or not self.key:
                raise RemoteReadFailure("Supabase credentials not configured")
            self._client = create_client(
                self.url, self.key, options=ClientOptions(postgrest_client_timeout=self.timeout)
            )
        return self._client

    def _table(self, name: str):
        return self._get_client().table(name)

    def _run(self, query, failure: Type[RemoteError]) -> List[Dict[str, Any]]:
        try:
            return query.execute().data or []
        except APIError as e:
            if e.code == PGRST_PERMISSION_DENIED and failure is RemoteWriteFailure:
                raise PermissionDenied(f"Supabase rejected write: {e.message}") from e
            raise failure(f"Supabase error {e.code}: {e.message}") from e
        except httpx.HTTPError as e:
            raise failure(f"Supabase request failed: {e}") from e

    def _read(self, query) -> List[Dict[str, Any]]:
        return self._run(query, RemoteReadFailure)

    def _write(self, query) -> List[Dict[str, Any]]:
        return self._run(query, RemoteWriteFailure)

    def probe(self) -> bool:
        try:
            self._read(self._table("teams").select("id").limit(1))
            return True
        except RemoteReadFailure as e:
            # RLS rejection still proves the service is up
            if isinstance(e.__cause__, APIError) and e.__cause__.code == PGRST_PERMISSION_DENIED:
                return True
            logger.warning("Supabase probe failed: %s", e)
            return False

    def list_teams(self) -> List[Team]:
        return [team_from_row(r) for r in self._read(self._table("teams").select("*").order("created_at"))]

    def list_judges(self) -> List[Judge]:
        return [judge_from_row(r) for r in self._read(self._table("judges").select("*").order("created_at"))]

    def list_evaluations(self) -> List[Evaluation]:
        query = self._table("evaluations").select("*").order("created_at")
        try:
            rows = self._read(query)
        except RemoteReadFailure as e:
            # not allowed to see evaluations yet: start with none
            if isinstance(e.__cause__, APIError) and e.__cause__.code == PGRST_PERMISSION_DENIED:
                logger.warning("Evaluations not readable under current policy")
                return []
            raise
        return [evaluation_from_row(r) for r in rows]

    def insert_teams(self, drafts: Sequence[Mapping[str, Any]]) -> List[Team]:
        rows = self._write(self._table("teams").insert([team_to_row(d) for d in drafts]))
        return [team_from_row(r) for r in rows]

    def insert_judges(self, drafts: Sequence[Mapping[str, Any]]) -> List[Judge]:
        rows = self._write(self._table("judges").insert([judge_to_row(d) for d in drafts]))
        return [judge_from_row(r) for r in rows]

    def insert_evaluation(
        self, team_id: str, judge_id: str, criteria: Criteria, notes: Optional[str]
    ) -> Evaluation:
        row = evaluation_to_row(criteria, notes)
        row.update(team_id=team_id, judge_id=judge_id)
        created = self._write(self._table("evaluations").insert(row))
        if not created:
            raise RemoteWriteFailure("Supabase returned no row for inserted evaluation")
        return evaluation_from_row(created[0])

    def update_evaluation(
        self, evaluation_id: str, criteria: Criteria, notes: Optional[str], timestamp: str
    ) -> None:
        row = evaluation_to_row(criteria, notes)
        row["updated_at"] = timestamp
        updated = self._write(self._table("evaluations").update(row).eq("id", evaluation_id))
        if not updated:
            raise RemoteWriteFailure(f"Evaluation {evaluation_id} not found in backend")

    def delete_team(self, team_id: str) -> None:
        self._write(self._table("teams").delete().eq("id", team_id))

    def delete_judge(self, judge_id: str) -> None:
        self._write(self._table("judges").delete().eq("id", judge_id))

    def delete_evaluations_matching(self, match: Mapping[str, str]) -> None:
        _check_match(match)
        query = self._table("evaluations").delete()
        if not match:
            # PostgREST refuses an unfiltered delete
            query = query.neq("id", NIL_UUID)
        for column, value in match.items():
            query = query.eq(column, value)
        self._write(query)


def make_backend(settings: Settings) -> DurableBackend:
    if settings.backend == "supabase":
        return SupabaseBackend(settings.supabase_url, settings.supabase_key, timeout=settings.remote_timeout_seconds)
    if settings.backend == "sqlite":
        return SqliteBackend(settings.db_path, timeout=settings.remote_timeout_seconds)
    raise ValueError(f"Unknown JUDGING_BACKEND: {settings.backend!r}")
