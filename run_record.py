import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import List, Optional, Union

from match_types import (
    Cohort,
    MatchingHistoryEntry,
    MatchingMode,
    MatchingModel,
    MatchingOutput,
    MatchingResult,
    MatchingStats,
)

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def build_output(mode: Union[MatchingMode, str], stats: MatchingStats, results: List[MatchingResult],
                 model: MatchingModel, timestamp: Optional[datetime] = None) -> MatchingOutput:
    """Package a finished run. The model is stamped in as it was when the run started."""
    return MatchingOutput(
        mode=MatchingMode(mode),
        stats=stats,
        results=results,
        model=model.model_copy(deep=True),
        timestamp=timestamp or utc_now(),
    )


# Serialization
def output_to_json(output: MatchingOutput, indent: Optional[int] = None) -> str:
    return output.model_dump_json(indent=indent)


def output_from_json(data: Union[str, bytes]) -> MatchingOutput:
    return MatchingOutput.model_validate_json(data)


def output_fingerprint(output: MatchingOutput) -> str:
    """Digest of everything except the timestamp; equal for reproduced runs."""
    payload = output.model_dump(mode="json", exclude={"timestamp"})
    blob = json.dumps(payload, sort_keys=True, separators=(",", ":"), allow_nan=False)
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


# History
def summarize_run(output: MatchingOutput) -> MatchingHistoryEntry:
    assigned_scores = []
    for result in output.results:
        pa = result.proposed_assignment
        if pa is None or pa.mentor_id is None:
            continue
        for rec in result.recommendations:
            if rec.mentor_id == pa.mentor_id:
                assigned_scores.append(rec.score.total_score)
                break

    if output.mode == MatchingMode.TOP3_PER_MENTEE:
        top_scores = [r.recommendations[0].score.total_score for r in output.results if r.recommendations]
        scores = top_scores
    else:
        scores = assigned_scores

    return MatchingHistoryEntry(
        id=f"{output.model.id}-{output.timestamp.strftime('%Y%m%dT%H%M%S%fZ')}",
        timestamp=output.timestamp,
        mode=output.mode,
        stats=output.stats,
        model_id=output.model.id,
        model_version=output.model.version,
        launched=False,
        matches_count=len(assigned_scores),
        average_score=round(sum(scores) / len(scores), 2) if scores else 0.0,
    )


def record_run(cohort: Cohort, output: MatchingOutput) -> Cohort:
    """Return a copy of the cohort with this run as its current matches and appended to its history."""
    entry = summarize_run(output)
    logger.info("Recording %s run for cohort %s (%d matches, avg %.1f)",
                output.mode.value, cohort.id, entry.matches_count, entry.average_score)
    return cohort.model_copy(update={
        "matches": output,
        "matching_history": list(cohort.matching_history) + [entry],
    })
