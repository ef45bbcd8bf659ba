"""
Mentor/mentee matching engine.

Pipeline for one cohort under one active matching model:
  - hard filters drop infeasible pairs (capacity, timezone, languages)
  - features + rules are evaluated per pair, in parallel, each pair isolated
  - scores are combined into a 0-100 total with a per-criterion breakdown
  - each mentee's feasible mentors are ranked
  - batch mode commits one mentor per mentee under capacity (greedy, mentee id order);
    top3_per_mentee mode only produces shortlists

Usage:
  mentor-match --cohort cohort.json --model model.json --mode batch --outdir out

Configuration comes from the environment / .env (see matching_config.EngineSettings).
"""

import argparse
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from time import time
from typing import Dict, List, Optional, Sequence, Union

from hard_filters import apply_hard_filters
from match_features import extract_features
from match_rules import evaluate_rules
from match_scoring import score_pair
from match_tables import write_analysis_tables
from match_types import (
    Cohort,
    MatchingMode,
    MatchingModel,
    MatchingOutput,
    MatchingStats,
    MatchScore,
    MenteeProfile,
    MentorProfile,
    ModelStatus,
)
from matching_algos import greedy_assign_with_capacity, rank_mentors, top_per_mentee
from matching_config import EngineSettings, load_matching_model
from matching_errors import MatchingCancelledError, MatchingConfigError
from run_record import build_output, output_to_json, record_run
from semantic_scorer import SemanticScorer

logger = logging.getLogger(__name__)


@dataclass
class PairEvaluation:
    mentee_id: str
    mentor_id: str
    feasible: bool
    reason: Optional[str] = None
    score: Optional[MatchScore] = None


@dataclass
class MatchingRun:
    output: MatchingOutput
    evaluations: List[PairEvaluation] = field(default_factory=list)


def _check_unique_ids(profiles, kind: str) -> None:
    seen = set()
    for p in profiles:
        if p.id in seen:
            raise MatchingConfigError(f"Duplicate {kind} id {p.id!r}")
        seen.add(p.id)


class MatchingEngine:
    """
    Runs matching for a cohort under one matching model.

    The model is validated once, when the engine is built; an invalid model or
    one that is not active (unless allow_draft=True) raises MatchingConfigError
    before any pair is touched.
    """

    def __init__(self, model: Union[MatchingModel, dict, str, Path],
                 settings: Optional[EngineSettings] = None,
                 semantic: Optional[SemanticScorer] = None,
                 allow_draft: bool = False):
        self.settings = settings or EngineSettings.from_env()
        self.model = load_matching_model(model)
        if self.model.status != ModelStatus.ACTIVE:
            if not (allow_draft and self.model.status == ModelStatus.DRAFT):
                raise MatchingConfigError(
                    f"Matching model {self.model.id!r} is {self.model.status.value}; only an active model can be run")
        self.semantic = semantic or SemanticScorer(
            mode=self.settings.semantic_mode,
            model_name=self.settings.embed_model,
            retries=self.settings.embed_retries,
            backoff=self.settings.embed_backoff,
        )

    # Pair evaluation
    def evaluate_pair(self, mentee: MenteeProfile, mentor: MentorProfile) -> PairEvaluation:
        try:
            decision = apply_hard_filters(mentee, mentor, self.model.filters)
            if not decision.feasible:
                return PairEvaluation(mentee.id, mentor.id, False, decision.reason)
            features, is_embedding_based, missing = extract_features(mentee, mentor, self.model, self.semantic)
            outcome = evaluate_rules(mentee, mentor, self.model.rules)
            score = score_pair(
                mentee, mentor, features, outcome, self.model,
                is_embedding_based=is_embedding_based,
                missing=missing,
                semantic_fallback=self.semantic.mode == "embed" and not is_embedding_based,
            )
        except Exception as e:
            logger.warning("Pair %s/%s excluded after evaluation error: %s", mentee.id, mentor.id, e)
            return PairEvaluation(mentee.id, mentor.id, False, f"evaluation error: {e}")

        if not score.is_eligible:
            errors = [v for v in score.constraint_violations if v.severity == "error"]
            return PairEvaluation(mentee.id, mentor.id, False, errors[0].description, score)
        return PairEvaluation(mentee.id, mentor.id, True, score=score)

    def _evaluate_task(self, mentee, mentor, cancel_event: Optional[threading.Event]) -> PairEvaluation:
        if cancel_event is not None and cancel_event.is_set():
            raise MatchingCancelledError("matching run cancelled")
        return self.evaluate_pair(mentee, mentor)

    def evaluate_pairs(self, mentees: Sequence[MenteeProfile], mentors: Sequence[MentorProfile],
                       cancel_event: Optional[threading.Event] = None) -> List[PairEvaluation]:
        """Evaluate every mentee x mentor pair. Output order is (mentee id, mentor id)."""
        self.semantic.prepare(mentees, mentors)
        pairs = [(me, mr) for me in sorted(mentees, key=lambda m: m.id)
                 for mr in sorted(mentors, key=lambda m: m.id)]
        if not pairs:
            return []
        with ThreadPoolExecutor(max_workers=self.settings.max_workers) as executor:
            futures = [executor.submit(self._evaluate_task, me, mr, cancel_event) for me, mr in pairs]
            try:
                return [f.result() for f in futures]
            except MatchingCancelledError:
                for f in futures:
                    f.cancel()
                raise

    # Full run
    def run_detailed(self, mentees: Sequence[MenteeProfile], mentors: Sequence[MentorProfile],
                     mode: Union[MatchingMode, str] = MatchingMode.BATCH,
                     cancel_event: Optional[threading.Event] = None) -> MatchingRun:
        mode = MatchingMode(mode)
        _check_unique_ids(mentees, "mentee")
        _check_unique_ids(mentors, "mentor")
        start_time = time()
        logger.info("Running %s matching with model %s v%d: %d mentees x %d mentors",
                    mode.value, self.model.id, self.model.version, len(mentees), len(mentors))

        evaluations = self.evaluate_pairs(mentees, mentors, cancel_event)
        # Everything below is sequential and must only start once all scores are final.
        if cancel_event is not None and cancel_event.is_set():
            raise MatchingCancelledError("matching run cancelled")

        mentors_by_id = {m.id: m for m in mentors}
        candidates: Dict[str, list] = {m.id: [] for m in mentees}
        first_reason: Dict[str, str] = {}
        dropped: Dict[str, int] = {}
        for ev in evaluations:
            if ev.feasible:
                candidates[ev.mentee_id].append((mentors_by_id[ev.mentor_id], ev.score))
            else:
                dropped[ev.mentee_id] = dropped.get(ev.mentee_id, 0) + 1
                first_reason.setdefault(ev.mentee_id, ev.reason)
        ranked_by_mentee = {mentee_id: rank_mentors(c) for mentee_id, c in candidates.items()}

        unassigned_reasons = {}
        for mentee in mentees:
            if not mentors:
                unassigned_reasons[mentee.id] = "Cohort has no mentors"
            elif not ranked_by_mentee[mentee.id]:
                unassigned_reasons[mentee.id] = (
                    f"No feasible mentor ({dropped.get(mentee.id, 0)} excluded; "
                    f"first: {first_reason.get(mentee.id)})")

        if mode == MatchingMode.BATCH:
            results = greedy_assign_with_capacity(mentees, mentors, ranked_by_mentee, unassigned_reasons)
        else:
            results = top_per_mentee(mentees, ranked_by_mentee)

        assigned = [r for r in results if r.proposed_assignment and r.proposed_assignment.mentor_id]
        stats = MatchingStats(
            mentees_total=len(mentees),
            mentors_total=len(mentors),
            pairs_evaluated=len(evaluations),
            after_filters=sum(1 for ev in evaluations if ev.feasible),
            assigned=len(assigned),
            needs_approval=sum(1 for r in assigned if r.recommendations and r.recommendations[0].score.needs_approval),
        )
        output = build_output(mode, stats, results, self.model)
        logger.info("Matching done in %.2fs: %d/%d pairs feasible, %d assigned",
                    time() - start_time, stats.after_filters, stats.pairs_evaluated, stats.assigned)
        return MatchingRun(output=output, evaluations=evaluations)

    def run(self, mentees: Sequence[MenteeProfile], mentors: Sequence[MentorProfile],
            mode: Union[MatchingMode, str] = MatchingMode.BATCH,
            cancel_event: Optional[threading.Event] = None) -> MatchingOutput:
        return self.run_detailed(mentees, mentors, mode, cancel_event).output


def run_matching(cohort: Cohort, model, mode: Union[MatchingMode, str] = MatchingMode.BATCH,
                 settings: Optional[EngineSettings] = None,
                 semantic: Optional[SemanticScorer] = None) -> MatchingOutput:
    engine = MatchingEngine(model, settings=settings, semantic=semantic)
    return engine.run(cohort.mentees, cohort.mentors, mode)


def run_and_record(cohort: Cohort, model, mode: Union[MatchingMode, str] = MatchingMode.BATCH,
                   settings: Optional[EngineSettings] = None,
                   semantic: Optional[SemanticScorer] = None) -> Cohort:
    """Run matching and return the cohort with the output recorded. A failed or cancelled run records nothing."""
    output = run_matching(cohort, model, mode, settings=settings, semantic=semantic)
    return record_run(cohort, output)


# Main CLI
def main(argv=None):
    parser = argparse.ArgumentParser(description="Match mentees to mentors for one cohort.")
    parser.add_argument("--cohort", required=True, help="cohort JSON with 'mentees' and 'mentors'")
    parser.add_argument("--model", required=True, help="matching model JSON")
    parser.add_argument("--mode", default=MatchingMode.BATCH.value,
                        choices=[m.value for m in MatchingMode])
    parser.add_argument("--outdir", default="out")
    parser.add_argument("--semantic", choices=["off", "lexical", "embed"],
                        help="override MATCHING_SEMANTIC_MODE")
    parser.add_argument("--preview", action="store_true", help="allow running a draft model")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(), format="[%(levelname)s] %(name)s: %(message)s")

    settings = EngineSettings.from_env()
    if args.semantic:
        settings.semantic_mode = args.semantic

    try:
        cohort = Cohort.model_validate_json(Path(args.cohort).read_text(encoding="utf-8"))
        engine = MatchingEngine(args.model, settings=settings, allow_draft=args.preview)
        run = engine.run_detailed(cohort.mentees, cohort.mentors, args.mode)
    except MatchingConfigError as e:
        raise SystemExit(f"Configuration error: {e}")

    out_dir = Path(args.outdir)
    out_dir.mkdir(parents=True, exist_ok=True)
    output_path = out_dir / "matching_output.json"
    output_path.write_text(output_to_json(run.output, indent=2), encoding="utf-8")
    written = write_analysis_tables(run.output, run.evaluations, out_dir)

    logger.info("Wrote %s", output_path)
    for path in written:
        logger.info("Wrote %s", path)
    s = run.output.stats
    logger.info("Mentees: %d, Mentors: %d, Pairs: %d, Feasible: %d, Assigned: %d",
                s.mentees_total, s.mentors_total, s.pairs_evaluated, s.after_filters, s.assigned)
    return run.output


if __name__ == "__main__":
    main()
