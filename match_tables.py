from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from match_types import TOPK, ManualMatchingOutput, MatchingOutput

# Order of rows in a manual vs engine comparison.
COMPARISON_ORDER = {"different": 0, "agreed": 1, "manual_only": 2, "ai_only": 3}


def _breakdown_columns(score) -> Dict[str, float]:
    return {f"BRK::{b.criterion}": b.weighted_score for b in score.score_breakdown}


# Score tables
def build_score_table(evaluations: Sequence) -> pd.DataFrame:
    """One row per evaluated pair, best score first within each mentee."""
    rows = []
    for ev in evaluations:
        score = ev.score
        row = {
            "Mentee": ev.mentee_id,
            "Mentor": ev.mentor_id,
            "Feasible": ev.feasible,
            "Reason": ev.reason or "",
            "Score": round(score.total_score, 2) if score is not None else None,
            "Needs Approval": score.needs_approval if score is not None else False,
            "Shared Languages": ", ".join(score.logistics.languages_shared) if score is not None else "",
        }
        if score is not None:
            row.update(_breakdown_columns(score))
        rows.append(row)
    if not rows:
        return pd.DataFrame(columns=["Mentee", "Mentor", "Feasible", "Reason", "Score"])
    df = pd.DataFrame(rows)
    return df.sort_values(["Mentee", "Score", "Mentor"], ascending=[True, False, True],
                          na_position="last").reset_index(drop=True)


def top_k_table(output: MatchingOutput, k: int = TOPK) -> pd.DataFrame:
    rows = []
    for result in output.results:
        for rank, rec in enumerate(result.recommendations[:k], start=1):
            rows.append({
                "Mentee": result.mentee_id,
                "Mentee Name": result.mentee_name or "",
                "Rank": rank,
                "Mentor": rec.mentor_id,
                "Mentor Name": rec.mentor_name or "",
                "Score": round(rec.score.total_score, 2),
                "Reasons": "; ".join(rec.score.reasons),
                "Risks": "; ".join(rec.score.risks),
                **_breakdown_columns(rec.score),
            })
    return pd.DataFrame(rows, columns=None if rows else ["Mentee", "Rank", "Mentor", "Score"])


def assignments_table(output: MatchingOutput) -> pd.DataFrame:
    rows = []
    for result in output.results:
        pa = result.proposed_assignment
        if pa is None:
            continue
        score = next((r.score.total_score for r in result.recommendations if r.mentor_id == pa.mentor_id), None)
        rows.append({
            "mentee id": result.mentee_id,
            "mentee name": result.mentee_name or "",
            "mentor id": pa.mentor_id or "",
            "mentor name": pa.mentor_name or "",
            "score": round(score, 2) if score is not None else None,
            "status": pa.status.value,
            "comment": pa.comment,
        })
    return pd.DataFrame(rows, columns=["mentee id", "mentee name", "mentor id", "mentor name",
                                       "score", "status", "comment"])


# Write analysis tables
def write_analysis_tables(output: MatchingOutput, evaluations: Sequence, out_dir: Path) -> List[Path]:
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    full_scores_path = out_dir / "mentor_mentee_full_scores.csv"
    build_score_table(evaluations).to_csv(full_scores_path, index=False)

    topk_path = out_dir / f"mentor_mentee_top{TOPK}_per_mentee.csv"
    top_k_table(output).to_csv(topk_path, index=False)

    written = [full_scores_path, topk_path]
    if output.mode.value == "batch":
        assignments_path = out_dir / "mentor_mentee_assignments.csv"
        assignments_table(output).to_csv(assignments_path, index=False)
        written.append(assignments_path)
    return written


# Manual vs engine comparison
def _mean(values) -> Optional[float]:
    values = [v for v in values if v is not None and not pd.isna(v)]
    return round(sum(values) / len(values), 2) if values else None


def compare_manual_matches(output: MatchingOutput, manual: ManualMatchingOutput,
                           evaluations: Optional[Sequence] = None) -> Tuple[pd.DataFrame, Dict]:
    """
    Line up an admin's manual matches against the engine's proposals.

    Each mentee is 'agreed' (same mentor), 'different', 'manual_only' (engine
    proposed nobody) or 'ai_only' (no manual match). When the pair evaluations
    are passed, the engine's score for each manual pair is reported too.
    Agreement rate is agreed / (agreed + different).
    """
    pair_scores = {}
    for ev in evaluations or []:
        if ev.score is not None:
            pair_scores[(ev.mentee_id, ev.mentor_id)] = ev.score.total_score

    results = {r.mentee_id: r for r in output.results}

    def engine_pick(mentee_id):
        result = results.get(mentee_id)
        pa = result.proposed_assignment if result else None
        if pa is None or not pa.mentor_id:
            return None, None
        score = next((r.score.total_score for r in result.recommendations if r.mentor_id == pa.mentor_id), None)
        return pa.mentor_id, score

    rows = []
    seen = set()
    for mm in manual.matches:
        seen.add(mm.mentee_id)
        ai_mentor, ai_score = engine_pick(mm.mentee_id)
        if ai_mentor is None:
            status = "manual_only"
        elif ai_mentor == mm.mentor_id:
            status = "agreed"
        else:
            status = "different"
        rows.append({
            "mentee_id": mm.mentee_id,
            "manual_mentor_id": mm.mentor_id,
            "manual_confidence": mm.confidence,
            "ai_mentor_id": ai_mentor,
            "ai_score": ai_score,
            "manual_ai_score": pair_scores.get((mm.mentee_id, mm.mentor_id)),
            "status": status,
        })

    for result in output.results:
        if result.mentee_id in seen:
            continue
        ai_mentor, ai_score = engine_pick(result.mentee_id)
        if ai_mentor is None:
            continue
        rows.append({
            "mentee_id": result.mentee_id,
            "manual_mentor_id": None,
            "manual_confidence": None,
            "ai_mentor_id": ai_mentor,
            "ai_score": ai_score,
            "manual_ai_score": None,
            "status": "ai_only",
        })

    df = pd.DataFrame(rows, columns=["mentee_id", "manual_mentor_id", "manual_confidence", "ai_mentor_id",
                                     "ai_score", "manual_ai_score", "status"])
    if not df.empty:
        df["_order"] = df["status"].map(COMPARISON_ORDER)
        df = df.sort_values(["_order", "mentee_id"]).drop(columns="_order").reset_index(drop=True)

    counts = df["status"].value_counts().to_dict() if not df.empty else {}
    agreed, different = counts.get("agreed", 0), counts.get("different", 0)
    stats = {
        "agreed": agreed,
        "different": different,
        "manual_only": counts.get("manual_only", 0),
        "ai_only": counts.get("ai_only", 0),
        "agreement_rate": round(agreed / (agreed + different) * 100, 1) if agreed + different else 0.0,
        "avg_confidence": _mean(df["manual_confidence"].tolist()),
        "avg_ai_score": _mean(df["ai_score"].tolist()),
        "avg_manual_ai_score": _mean(df["manual_ai_score"].tolist()),
        "total_manual": len(manual.matches),
        "total_ai": sum(1 for r in output.results if r.proposed_assignment and r.proposed_assignment.mentor_id),
    }
    return df, stats
