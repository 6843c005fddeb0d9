from __future__ import annotations

import logging
import sqlite3
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from .db import new_id, now_iso

logger = logging.getLogger(__name__)

SCORE_COLUMNS = ["judge_id", "team_id", "category_id", "criterion_name", "score", "weight"]
RAW_COLUMNS = ["judge_id", "team_id", "raw_score"]
NORMALIZED_COLUMNS = [
    "judge_id",
    "team_id",
    "raw_score",
    "normalized_score",
    "percentile",
    "rank",
    "selected_for_round2",
]
FINAL_COLUMNS = ["team_id", "final_score", "final_rank", "correlation_coefficient"]


# -----------------------
# Scores -> raw -> normalized (one round)
# -----------------------
def raw_scores(score_rows: pd.DataFrame) -> pd.DataFrame:
    """
    score_rows: one row per stored criterion score, columns SCORE_COLUMNS.

    Returns one row per (judge, team): the sum over categories of
    category weight * mean criterion score in that category.
    """
    if score_rows.empty:
        return pd.DataFrame(columns=RAW_COLUMNS)

    df = score_rows.copy()
    df["category_id"] = df["category_id"].fillna("")
    df["score"] = pd.to_numeric(df["score"]).astype(float)
    df["weight"] = pd.to_numeric(df["weight"]).astype(float)
    df = df.sort_values(by=["judge_id", "team_id", "category_id", "criterion_name"], kind="mergesort")

    per_category = (
        df.groupby(["judge_id", "team_id", "category_id"], sort=True)
        .agg(mean_score=("score", "mean"), weight=("weight", "first"))
        .reset_index()
    )
    per_category["weighted"] = per_category["mean_score"] * per_category["weight"]

    raw = per_category.groupby(["judge_id", "team_id"], sort=True)["weighted"].sum().reset_index(name="raw_score")
    return raw[RAW_COLUMNS]


def normalize_round(raw: pd.DataFrame, top_n: int) -> pd.DataFrame:
    """
    Per-judge z-score of the raw scores (population std). A judge whose
    scores do not vary gets 0 for every team.

    Rank is 1..n inside each judge's set, highest normalized score first,
    ties going to the lower team id. Percentile is 100 for the judge's top
    team and 0 for the bottom one. The first top_n ranks are flagged for
    round 2.
    """
    if raw.empty:
        return pd.DataFrame(columns=NORMALIZED_COLUMNS)

    df = raw.sort_values(by=["judge_id", "team_id"], kind="mergesort").reset_index(drop=True)
    df["raw_score"] = df["raw_score"].astype(float).round(6)

    by_judge = df.groupby("judge_id", sort=True)["raw_score"]
    mean = by_judge.transform("mean")
    std = by_judge.transform(lambda s: s.std(ddof=0))
    z = (df["raw_score"] - mean) / std.where(std > 1e-12)
    # + 0.0 turns -0.0 into 0.0
    df["normalized_score"] = z.fillna(0.0).round(6) + 0.0

    df = df.sort_values(
        by=["judge_id", "normalized_score", "team_id"],
        ascending=[True, False, True],
        kind="mergesort",
    ).reset_index(drop=True)
    df["rank"] = df.groupby("judge_id").cumcount() + 1

    n = df.groupby("judge_id")["team_id"].transform("size")
    pct = 100.0 * (n - df["rank"]) / (n - 1).clip(lower=1)
    df["percentile"] = pct.where(n > 1, 100.0).round(4)
    df["selected_for_round2"] = df["rank"] <= top_n
    return df[NORMALIZED_COLUMNS]


# -----------------------
# Round-2 normalized -> final results
# -----------------------
def judge_agreement(matrix: pd.DataFrame) -> Dict[str, Optional[float]]:
    """
    matrix: rows = team_id, cols = judge_id, values = normalized score.

    For each team, the mean Spearman correlation over every pair of judges
    who scored it. Each pair is compared on the teams both judges scored.
    """
    corr = matrix.corr(method="spearman", min_periods=2)
    agreement: Dict[str, Optional[float]] = {}
    for team_id, row in matrix.iterrows():
        judges = list(row.index[row.notna()])
        if len(judges) < 2:
            agreement[team_id] = None
            continue
        pairs = corr.loc[judges, judges].to_numpy()[np.triu_indices(len(judges), k=1)]
        pairs = pairs[~np.isnan(pairs)]
        agreement[team_id] = round(float(pairs.mean()), 6) if pairs.size else None
    return agreement


def aggregate_final(normalized: pd.DataFrame) -> pd.DataFrame:
    if normalized.empty:
        return pd.DataFrame(columns=FINAL_COLUMNS)

    matrix = normalized.pivot(index="team_id", columns="judge_id", values="normalized_score")
    matrix = matrix.astype(float).sort_index().sort_index(axis=1)

    final = matrix.mean(axis=1, skipna=True)
    agreement = judge_agreement(matrix)

    results = pd.DataFrame(
        {
            "team_id": [str(t) for t in matrix.index],
            "final_score": [round(float(final[t]), 6) + 0.0 for t in matrix.index],
            "correlation_coefficient": [agreement[t] for t in matrix.index],
        }
    )

    # Higher mean normalized score wins; ties go to the lower team id
    results = results.sort_values(
        by=["final_score", "team_id"],
        ascending=[False, True],
        kind="mergesort",
    ).reset_index(drop=True)
    results["final_rank"] = range(1, len(results) + 1)
    return results[FINAL_COLUMNS]


# -----------------------
# DB glue
# -----------------------
def load_round_scores(conn: sqlite3.Connection, round_id: str) -> pd.DataFrame:
    rows = conn.execute(
        """
        SELECT s.judge_id, s.team_id,
               COALESCE(s.category_id, t.category_id) AS category_id,
               s.criterion_name, s.score,
               COALESCE(c.weight, tc.weight, 1.0) AS weight
        FROM scores s
        JOIN teams t ON t.id = s.team_id
        LEFT JOIN categories c ON c.id = s.category_id
        LEFT JOIN categories tc ON tc.id = t.category_id
        WHERE s.round_id=?
        """,
        (round_id,),
    ).fetchall()
    return pd.DataFrame([dict(r) for r in rows], columns=SCORE_COLUMNS)


def load_normalized(conn: sqlite3.Connection, round_id: str) -> pd.DataFrame:
    rows = conn.execute(
        f"SELECT {', '.join(NORMALIZED_COLUMNS)} FROM normalized_scores WHERE round_id=? ORDER BY judge_id, rank",
        (round_id,),
    ).fetchall()
    df = pd.DataFrame([dict(r) for r in rows], columns=NORMALIZED_COLUMNS)
    df["selected_for_round2"] = df["selected_for_round2"].astype(bool)
    return df


def recompute_normalized(conn: sqlite3.Connection, round_id: str, top_n: int) -> pd.DataFrame:
    """Replace the round's normalized rows with a fresh computation."""
    normalized = normalize_round(raw_scores(load_round_scores(conn, round_id)), top_n)

    conn.execute("DELETE FROM normalized_scores WHERE round_id=?", (round_id,))
    created_at = now_iso()
    for r in normalized.itertuples(index=False):
        conn.execute(
            """
            INSERT INTO normalized_scores(id, judge_id, team_id, round_id, raw_score, normalized_score,
                                          percentile, rank, selected_for_round2, created_at)
            VALUES(?,?,?,?,?,?,?,?,?,?)
            """,
            (
                new_id(),
                r.judge_id,
                r.team_id,
                round_id,
                float(r.raw_score),
                float(r.normalized_score),
                float(r.percentile),
                int(r.rank),
                1 if r.selected_for_round2 else 0,
                created_at,
            ),
        )

    logger.info(
        "Normalized round %s: %d rows, %d selected for round 2",
        round_id,
        len(normalized),
        int(normalized["selected_for_round2"].sum()) if len(normalized) else 0,
    )
    return normalized


def finalist_team_ids(conn: sqlite3.Connection, round_id: str) -> List[str]:
    rows = conn.execute(
        "SELECT DISTINCT team_id FROM normalized_scores WHERE round_id=? AND selected_for_round2=1 ORDER BY team_id",
        (round_id,),
    ).fetchall()
    return [r["team_id"] for r in rows]


def recompute_final_results(conn: sqlite3.Connection, event_id: str) -> pd.DataFrame:
    round2 = conn.execute(
        "SELECT id FROM scoring_rounds WHERE event_id=? AND round_number=2", (event_id,)
    ).fetchone()
    if not round2:
        raise ValueError("Event has no round 2.")

    results = aggregate_final(load_normalized(conn, round2["id"]))

    conn.execute("DELETE FROM final_results WHERE event_id=?", (event_id,))
    created_at = now_iso()
    for r in results.itertuples(index=False):
        coeff = None if pd.isna(r.correlation_coefficient) else float(r.correlation_coefficient)
        conn.execute(
            """
            INSERT INTO final_results(id, event_id, team_id, final_score, final_rank, correlation_coefficient, created_at)
            VALUES(?,?,?,?,?,?,?)
            """,
            (new_id(), event_id, r.team_id, float(r.final_score), int(r.final_rank), coeff, created_at),
        )

    logger.info("Final results for event %s: %d teams ranked", event_id, len(results))
    return results
