from __future__ import annotations

import html
import logging
from datetime import datetime, timezone
from io import StringIO
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, Response
from pydantic import BaseModel, Field

from .aggregation import results_frame
from .backend import DurableBackend, make_backend
from .config import Settings, configure_logging, sha256
from .errors import PermissionDenied, RemoteError, ValidationError
from .models import Evaluation, Judge, Team, TeamResult
from .rubric import CRITERION_MAX, CRITERION_MIN, Criteria
from .state import AppState
from .sync import Reconciler

logger = logging.getLogger(__name__)


# -----------------------
# Request bodies
# -----------------------
class CriteriaIn(BaseModel):
    innovation: int = Field(..., ge=CRITERION_MIN, le=CRITERION_MAX)
    technical: int = Field(..., ge=CRITERION_MIN, le=CRITERION_MAX)
    presentation: int = Field(..., ge=CRITERION_MIN, le=CRITERION_MAX)
    impact: int = Field(..., ge=CRITERION_MIN, le=CRITERION_MAX)
    completion: int = Field(..., ge=CRITERION_MIN, le=CRITERION_MAX)


class EvaluationIn(BaseModel):
    team_id: str
    criteria: CriteriaIn
    notes: Optional[str] = None


class TeamIn(BaseModel):
    name: str
    project: str
    members: List[str] = []
    institution: Optional[str] = None


class JudgeIn(BaseModel):
    name: str
    email: str


# -----------------------
# JSON shapes
# -----------------------
def team_json(t: Team) -> Dict[str, Any]:
    return {"id": t.id, "name": t.name, "members": list(t.members), "project": t.project, "institution": t.institution}


def judge_json(j: Judge) -> Dict[str, Any]:
    return {"id": j.id, "name": j.name, "email": j.email}


def evaluation_json(e: Evaluation) -> Dict[str, Any]:
    return {
        "id": e.id,
        "team_id": e.team_id,
        "judge_id": e.judge_id,
        "criteria": e.criteria.as_dict(),
        "total_score": e.total_score,
        "notes": e.notes,
        "timestamp": e.timestamp,
    }


def result_json(r: TeamResult) -> Dict[str, Any]:
    return {
        "team": team_json(r.team),
        "evaluations": [evaluation_json(e) for e in r.evaluations],
        "total_score": r.total_score,
        "average_score": r.average_score,
        "evaluation_count": r.evaluation_count,
    }


# -----------------------
# UI helpers
# -----------------------
def page(title: str, body: str) -> HTMLResponse:
    html_doc = f"""
    <html>
      <head>
        <title>{title}</title>
        <meta name="viewport" content="width=device-width, initial-scale=1.0">
        <style>
          body {{ font-family: system-ui, Arial; max-width: 980px; margin: 0 auto; padding: 22px; }}
          .card {{ border: 1px solid #ddd; border-radius: 12px; padding: 16px; margin: 16px 0; }}
          table {{ border-collapse: collapse; width: 100%; }}
          th, td {{ border: 1px solid #ddd; padding: 8px; }}
          th {{ text-align: left; background: #f7f7f7; }}
          .muted {{ color: #666; }}
          .danger {{ color: #b00020; }}
          a {{ text-decoration: none; }}
        </style>
      </head>
      <body>
        <h1>{title}</h1>
        {body}
      </body>
    </html>
    """
    return HTMLResponse(html_doc)


def leaderboard_body(results: List[TeamResult], online: bool, admin_password: str) -> str:
    rows = ""
    for rank, r in enumerate(results, start=1):
        rows += (
            f"<tr><td>{rank}</td><td>{html.escape(r.team.name)}</td><td>{html.escape(r.team.project)}</td>"
            f"<td>{r.total_score}</td><td>{r.average_score:.1f}</td><td>{r.evaluation_count}</td></tr>"
        )
    mode = "" if online else '<p class="danger">Offline mode: results reflect local data only.</p>'
    return f"""
    <div class="card">
      {mode}
      <p class="muted">Ranked by total score (highest wins). Equal totals keep roster order.</p>
      <p><a href="/admin/results/download?admin_password={html.escape(admin_password)}">Download Results CSV</a></p>
      <table>
        <thead><tr><th>Rank</th><th>Team</th><th>Project</th><th>Total</th><th>Average</th><th>Evaluations</th></tr></thead>
        <tbody>{rows or '<tr><td colspan="6" class="muted">No teams yet.</td></tr>'}</tbody>
      </table>
    </div>
    """


# -----------------------
# App
# -----------------------
def create_app(settings: Optional[Settings] = None, backend: Optional[DurableBackend] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    backend = backend or make_backend(settings)

    app = FastAPI(title="Hackathon Judging Portal")
    app.state.settings = settings
    app.state.reconciler = Reconciler(AppState(), backend, settings)

    @app.on_event("startup")
    def _startup():
        configure_logging(settings.log_level)
        app.state.reconciler.load()
        logger.info("Judging portal ready (%s backend, online=%s)", backend.name, app.state.reconciler.online)

    @app.exception_handler(ValidationError)
    def _validation_error(request: Request, exc: ValidationError):
        return JSONResponse(status_code=422, content={"status": "error", "message": str(exc)})

    @app.exception_handler(PermissionDenied)
    def _permission_denied(request: Request, exc: PermissionDenied):
        return JSONResponse(status_code=403, content={"status": "error", "message": f"Rejected by backend policy: {exc}"})

    @app.exception_handler(RemoteError)
    def _remote_error(request: Request, exc: RemoteError):
        return JSONResponse(status_code=502, content={"status": "error", "message": f"Backend call failed: {exc}"})

    register_routes(app)
    return app


def get_reconciler(request: Request) -> Reconciler:
    return request.app.state.reconciler


def require_admin(
    request: Request,
    admin_password: Optional[str] = None,
    x_admin_password: Optional[str] = Header(None),
) -> str:
    password = x_admin_password or admin_password or ""
    if sha256(password) != request.app.state.settings.admin_pw_hash:
        raise HTTPException(status_code=403, detail="Invalid admin password.")
    return password


def require_judge(judge_id: str, sync: Reconciler = Depends(get_reconciler)) -> Judge:
    judge = sync.state.find_judge(judge_id)
    if judge is None:
        raise HTTPException(404, "Judge not found.")
    return judge


def register_routes(app: FastAPI) -> None:
    # -----------------------
    # Routes: Public
    # -----------------------
    @app.get("/health")
    def health(sync: Reconciler = Depends(get_reconciler)):
        return {
            "status": "ok",
            "online": sync.online,
            "backend": sync.backend.name,
            "teams": len(sync.state.teams),
            "judges": len(sync.state.judges),
            "evaluations": len(sync.state.evaluations),
        }

    @app.get("/teams")
    def list_teams(sync: Reconciler = Depends(get_reconciler)):
        return [team_json(t) for t in sync.state.teams]

    @app.get("/judges")
    def list_judges(sync: Reconciler = Depends(get_reconciler)):
        return [judge_json(j) for j in sync.state.judges]

    # -----------------------
    # Routes: Admin
    # -----------------------
    @app.post("/admin/teams", status_code=201, dependencies=[Depends(require_admin)])
    def admin_add_team(body: TeamIn, sync: Reconciler = Depends(get_reconciler)):
        team = sync.add_team(body.model_dump())
        return {"status": "ok", "message": f'Team "{team.name}" added successfully', "team": team_json(team)}

    @app.post("/admin/teams/upload", dependencies=[Depends(require_admin)])
    def admin_upload_teams(records: List[Dict[str, Any]], sync: Reconciler = Depends(get_reconciler)):
        created = sync.upload_teams(records)
        return {
            "status": "ok",
            "message": f"{len(created)} teams uploaded successfully",
            "skipped": len(records) - len(created),
            "teams": [team_json(t) for t in created],
        }

    @app.delete("/admin/teams/{team_id}", dependencies=[Depends(require_admin)])
    def admin_remove_team(team_id: str, sync: Reconciler = Depends(get_reconciler)):
        if sync.state.find_team(team_id) is None:
            raise HTTPException(404, "Team not found.")
        removed = sync.remove_team(team_id)
        return {"status": "ok", "message": "Team removed successfully", "evaluations_removed": removed}

    @app.post("/admin/judges", status_code=201, dependencies=[Depends(require_admin)])
    def admin_add_judge(body: JudgeIn, sync: Reconciler = Depends(get_reconciler)):
        judge = sync.add_judge(body.model_dump())
        return {"status": "ok", "message": f'Judge "{judge.name}" added successfully', "judge": judge_json(judge)}

    @app.post("/admin/judges/upload", dependencies=[Depends(require_admin)])
    def admin_upload_judges(records: List[Dict[str, Any]], sync: Reconciler = Depends(get_reconciler)):
        created = sync.upload_judges(records)
        return {
            "status": "ok",
            "message": f"{len(created)} judges uploaded successfully",
            "skipped": len(records) - len(created),
            "judges": [judge_json(j) for j in created],
        }

    @app.delete("/admin/judges/{judge_id}", dependencies=[Depends(require_admin)])
    def admin_remove_judge(judge_id: str, sync: Reconciler = Depends(get_reconciler)):
        if sync.state.find_judge(judge_id) is None:
            raise HTTPException(404, "Judge not found.")
        removed = sync.remove_judge(judge_id)
        return {"status": "ok", "message": "Judge removed successfully", "evaluations_removed": removed}

    @app.post("/admin/evaluations/reset", dependencies=[Depends(require_admin)])
    def admin_reset(sync: Reconciler = Depends(get_reconciler)):
        synced = sync.reset_evaluations()
        message = "All evaluations have been reset"
        if not synced:
            message += " locally; the backend was not changed"
        return {"status": "ok", "message": message}

    @app.get("/admin/results", dependencies=[Depends(require_admin)])
    def admin_results(sync: Reconciler = Depends(get_reconciler)):
        return {
            "exported_at": datetime.now(timezone.utc).isoformat(),
            "online": sync.online,
            "results": results_frame(sync.team_results()).to_dict(orient="records"),
        }

    @app.get("/admin/results/download", dependencies=[Depends(require_admin)])
    def download_results(sync: Reconciler = Depends(get_reconciler)):
        buf = StringIO()
        results_frame(sync.team_results()).to_csv(buf, index=False)
        stamp = datetime.now(timezone.utc).date().isoformat()
        return Response(
            content=buf.getvalue(),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="hackathon-results-{stamp}.csv"'},
        )

    @app.get("/admin/results/{team_id}", dependencies=[Depends(require_admin)])
    def admin_team_result(team_id: str, sync: Reconciler = Depends(get_reconciler)):
        result = sync.team_result(team_id)
        if result is None:
            raise HTTPException(404, "Team not found.")
        return result_json(result)

    @app.get("/admin/leaderboard", response_class=HTMLResponse)
    def admin_leaderboard(
        sync: Reconciler = Depends(get_reconciler), admin_password: str = Depends(require_admin)
    ):
        return page("Results", leaderboard_body(sync.team_results(), sync.online, admin_password))

    # -----------------------
    # Routes: Judge
    # -----------------------
    @app.get("/judge/{judge_id}/evaluations")
    def judge_evaluations(judge: Judge = Depends(require_judge), sync: Reconciler = Depends(get_reconciler)):
        return [evaluation_json(e) for e in sync.judge_evaluations(judge.id)]

    @app.post("/judge/{judge_id}/evaluations")
    def judge_submit(
        body: EvaluationIn,
        judge: Judge = Depends(require_judge),
        sync: Reconciler = Depends(get_reconciler),
    ):
        if sync.state.find_team(body.team_id) is None:
            raise HTTPException(404, "Team not found.")
        result = sync.submit_evaluation(
            body.team_id, judge.id, Criteria(**body.criteria.model_dump()), body.notes
        )
        return {
            "status": "warning" if result.is_warning else "ok",
            "outcome": result.outcome.value,
            "message": result.message,
            "evaluation": evaluation_json(result.evaluation),
        }


app = create_app()
