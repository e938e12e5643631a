from __future__ import annotations

from collections import defaultdict
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .models import Evaluation, Team, TeamResult
from .rubric import CRITERIA_FIELDS

RESULT_COLUMNS = ["Rank", "Team", "Project", "Institution", "TotalScore", "AverageScore", "Evaluations"]


def _group_by_team(evaluations: Sequence[Evaluation]) -> Dict[str, List[Evaluation]]:
    grouped: Dict[str, List[Evaluation]] = defaultdict(list)
    for e in evaluations:
        grouped[e.team_id].append(e)
    return grouped


def _result_for(team: Team, team_evaluations: List[Evaluation]) -> TeamResult:
    total = sum(e.total_score for e in team_evaluations)
    average = total / len(team_evaluations) if team_evaluations else 0.0
    return TeamResult(team=team, evaluations=list(team_evaluations), total_score=total, average_score=average)


def compute_team_results(teams: Sequence[Team], evaluations: Sequence[Evaluation]) -> List[TeamResult]:
    """
    One TeamResult per team, highest total first.
    Teams with equal totals keep their order from `teams`.
    """
    grouped = _group_by_team(evaluations)
    results = [_result_for(team, grouped.get(team.id, [])) for team in teams]
    if not results:
        return []

    # mergesort is stable, so ties keep roster order
    order = pd.DataFrame(
        {"pos": range(len(results)), "total": [r.total_score for r in results]}
    ).sort_values(by="total", ascending=False, kind="mergesort")
    return [results[i] for i in order["pos"]]


def compute_team_result(
    team_id: str, teams: Sequence[Team], evaluations: Sequence[Evaluation]
) -> Optional[TeamResult]:
    team = next((t for t in teams if t.id == team_id), None)
    if team is None:
        return None
    return _result_for(team, [e for e in evaluations if e.team_id == team_id])


def results_frame(results: Sequence[TeamResult]) -> pd.DataFrame:
    """
    Export snapshot of ranked results:
      Rank, Team, Project, Institution, TotalScore, AverageScore, Evaluations,
      then one Avg<Criterion> column per rubric criterion (0 when unscored).
    """
    criteria_cols = [f"Avg{name.capitalize()}" for name in CRITERIA_FIELDS]
    if not results:
        return pd.DataFrame(columns=RESULT_COLUMNS + criteria_cols)

    rows = []
    for rank, r in enumerate(results, start=1):
        # rows = evaluations, cols = criteria
        scores = np.array(
            [[getattr(e.criteria, name) for name in CRITERIA_FIELDS] for e in r.evaluations],
            dtype=float,
        ).reshape(-1, len(CRITERIA_FIELDS))
        averages = scores.sum(axis=0) / max(1, scores.shape[0])
        row = {
            "Rank": rank,
            "Team": r.team.name,
            "Project": r.team.project,
            "Institution": r.team.institution or "",
            "TotalScore": r.total_score,
            "AverageScore": round(r.average_score, 2),
            "Evaluations": r.evaluation_count,
        }
        row.update({col: round(float(avg), 2) for col, avg in zip(criteria_cols, averages)})
        rows.append(row)

    return pd.DataFrame(rows, columns=RESULT_COLUMNS + criteria_cols)
