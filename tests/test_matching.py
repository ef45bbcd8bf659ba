import threading
from collections import Counter

import pytest

from conftest import FakeEmbeddingProvider, make_mentee, make_mentor, make_model
from match_types import Cohort, MatchingMode, MatchingWeights, ModelStatus
from matching import MatchingEngine, main, run_and_record
from matching_config import EngineSettings
from matching_errors import MatchingCancelledError, MatchingConfigError
from run_record import output_fingerprint, output_from_json
from semantic_scorer import SemanticScorer


def cohort_profiles():
    mentors = [
        make_mentor("m1", capacity_remaining=1, topics_offered=["leadership", "career growth"]),
        make_mentor("m2", capacity_remaining=2, topics_offered=["leadership"], department="Sales"),
        make_mentor("m3", capacity_remaining=1, topics_offered=["data"], timezone=-5),
        make_mentor("m4", capacity_remaining=0),
    ]
    mentees = [
        make_mentee("e1"),
        make_mentee("e2", topics_sought=["leadership"]),
        make_mentee("e3", topics_sought=["data", "sales"], timezone=-4),
        make_mentee("e4", languages=["Japanese"]),
        make_mentee("e5", topics_sought=["career growth"]),
    ]
    return mentees, mentors


def engine(model=None, **kw):
    kw.setdefault("settings", EngineSettings(semantic_mode="lexical", max_workers=4))
    return MatchingEngine(model or make_model(), **kw)


def test_scores_within_bounds_and_stats():
    mentees, mentors = cohort_profiles()
    run = engine().run_detailed(mentees, mentors)
    stats = run.output.stats
    assert stats.mentees_total == 5
    assert stats.mentors_total == 4
    assert stats.pairs_evaluated == 20
    assert stats.after_filters == sum(1 for ev in run.evaluations if ev.feasible)
    assert stats.after_filters < 20
    for ev in run.evaluations:
        if ev.score is not None:
            assert 0 <= ev.score.total_score <= 100


def test_batch_never_exceeds_capacity_and_assignment_is_recommended():
    mentees, mentors = cohort_profiles()
    output = engine().run(mentees, mentors, MatchingMode.BATCH)
    counts = Counter(r.proposed_assignment.mentor_id for r in output.results
                     if r.proposed_assignment.mentor_id)
    for mentor in mentors:
        assert counts[mentor.id] <= mentor.capacity_remaining
    for r in output.results:
        if r.proposed_assignment.mentor_id:
            assert r.proposed_assignment.mentor_id in [rec.mentor_id for rec in r.recommendations]
    assert output.stats.assigned == sum(counts.values())


def test_top3_mode_commits_nothing():
    mentees, mentors = cohort_profiles()
    output = engine().run(mentees, mentors, "top3_per_mentee")
    assert output.mode == MatchingMode.TOP3_PER_MENTEE
    assert all(r.proposed_assignment is None for r in output.results)
    assert all(len(r.recommendations) <= 3 for r in output.results)
    assert output.stats.assigned == 0


def test_runs_are_deterministic_except_timestamp():
    mentees, mentors = cohort_profiles()
    first = engine().run(mentees, mentors)
    second = engine(settings=EngineSettings(max_workers=1)).run(list(reversed(mentees)), list(reversed(mentors)))
    assert output_fingerprint(first) == output_fingerprint(second)


def test_output_round_trips_through_json():
    mentees, mentors = cohort_profiles()
    output = engine().run(mentees, mentors)
    assert output_from_json(output.model_dump_json()) == output


def test_raising_topics_weight_keeps_better_topic_match_ahead():
    mentee = make_mentee("e1", topics_sought=["leadership", "career growth"])
    strong = make_mentor("strong", topics_offered=["leadership", "career growth"], department="Sales",
                         industry="Retail")
    weak = make_mentor("weak", topics_offered=["leadership"])
    positions = []
    for topics_weight in (1, 10, 40, 200, 1000):
        model = make_model(weights=MatchingWeights(topics=topics_weight))
        output = engine(model).run([mentee], [strong, weak], "top3_per_mentee")
        ids = [r.mentor_id for r in output.results[0].recommendations]
        positions.append(ids.index("strong"))
    assert positions == sorted(positions, reverse=True)
    assert positions[-1] == 0


def test_timezone_filter_keeps_far_pair_out():
    model = make_model(filters={"max_timezone_difference": 3})
    mentee = make_mentee("e1", timezone=0)
    far = make_mentor("far", timezone=5, capacity_remaining=10)
    near = make_mentor("near", timezone=1, topics_offered=[])
    run = engine(model).run_detailed([mentee], [far, near])
    assert [r.mentor_id for r in run.output.results[0].recommendations] == ["near"]
    assert run.output.stats.after_filters == 1
    far_eval = next(ev for ev in run.evaluations if ev.mentor_id == "far")
    assert not far_eval.feasible
    assert far_eval.score is None


def test_exclusion_rule_overrides_best_score():
    model = make_model(rules=[{
        "id": "no-same-dept",
        "name": "Different department",
        "rule_type": "exclusion",
        "condition": {"field": "department", "operator": "=", "value": "same"},
        "action": {"type": "exclude"},
    }])
    mentee = make_mentee("e1", department="Engineering")
    best = make_mentor("best", department="Engineering")
    other = make_mentor("other", department="Sales", topics_offered=[])
    output = engine(model).run([mentee], [best, other])
    result = output.results[0]
    assert [r.mentor_id for r in result.recommendations] == ["other"]
    assert result.proposed_assignment.mentor_id == "other"


def test_zero_mentors_is_a_valid_terminal_state():
    output = engine().run([make_mentee("e1"), make_mentee("e2")], [])
    assert output.stats.pairs_evaluated == 0
    assert output.stats.assigned == 0
    for r in output.results:
        assert r.proposed_assignment.mentor_id is None
        assert r.proposed_assignment.comment == "Cohort has no mentors"


def test_no_feasible_mentor_reports_reason():
    output = engine().run([make_mentee("e1", languages=["Japanese"])], [make_mentor("m1")])
    comment = output.results[0].proposed_assignment.comment
    assert comment.startswith("No feasible mentor")
    assert "language" in comment


def test_pair_error_is_isolated(caplog):
    model = make_model(rules=[{
        "id": "office-size",
        "rule_type": "bonus",
        "condition": {"field": "mentor.office", "operator": ">", "value": 2},
        "action": {"type": "points", "value": 5},
    }])
    good = make_mentor("good")
    broken = make_mentor("broken", attributes={"office": "Paris"})
    run = engine(model).run_detailed([make_mentee("e1")], [broken, good])
    broken_eval = next(ev for ev in run.evaluations if ev.mentor_id == "broken")
    assert not broken_eval.feasible
    assert broken_eval.reason.startswith("evaluation error:")
    assert run.output.results[0].proposed_assignment.mentor_id == "good"
    assert run.output.stats.after_filters == 1
    assert "broken" in caplog.text


def test_cancelled_run_produces_nothing():
    mentees, mentors = cohort_profiles()
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(MatchingCancelledError):
        engine().run(mentees, mentors, cancel_event=cancel)


def test_embedding_outage_falls_back_to_lexical():
    provider = FakeEmbeddingProvider(always_fail=True)
    waits = []
    semantic = SemanticScorer(mode="embed", provider=provider, retries=2, backoff=0.1, sleep=waits.append)
    output = engine(semantic=semantic).run([make_mentee("e1")], [make_mentor("m1")])
    score = output.results[0].recommendations[0].score
    assert score.is_embedding_based is False
    assert any("estimated lexically" in r for r in score.risks)
    assert provider.calls == 2
    assert waits == [0.1]


def test_embedding_scores_when_provider_works():
    semantic = SemanticScorer(mode="embed", provider=FakeEmbeddingProvider())
    output = engine(semantic=semantic).run([make_mentee("e1")], [make_mentor("m1")])
    score = output.results[0].recommendations[0].score
    assert score.is_embedding_based is True
    assert 0 < score.features.semantic_similarity <= 1


def test_non_active_model_is_refused():
    with pytest.raises(MatchingConfigError):
        engine(make_model(status=ModelStatus.DRAFT))
    with pytest.raises(MatchingConfigError):
        engine(make_model(status=ModelStatus.ARCHIVED), allow_draft=True)
    assert engine(make_model(status=ModelStatus.DRAFT), allow_draft=True).model.status == ModelStatus.DRAFT


def test_invalid_model_is_rejected_before_work():
    with pytest.raises(MatchingConfigError):
        engine({"id": "bad", "status": "active", "weights": {"topics": -1}})
    with pytest.raises(MatchingConfigError):
        engine({"id": "bad", "status": "active", "filters": {"max_timezone_difference": -2}})
    with pytest.raises(MatchingConfigError):
        engine({"id": "bad", "status": "active", "weights": {"topics": float("inf")}})


def test_duplicate_profile_ids_are_rejected():
    with pytest.raises(MatchingConfigError):
        engine().run([make_mentee("e1"), make_mentee("e1")], [make_mentor("m1")])


def test_output_stamps_the_model():
    model = make_model(weights=MatchingWeights(topics=12))
    output = engine(model).run([make_mentee("e1")], [make_mentor("m1")])
    assert output.model.weights.topics == 12
    assert output.model.version == 1


def test_run_and_record_appends_history():
    mentees, mentors = cohort_profiles()
    cohort = Cohort(id="c1", mentees=mentees, mentors=mentors)
    settings = EngineSettings(semantic_mode="lexical")
    recorded = run_and_record(cohort, make_model(), settings=settings)
    assert recorded.matches is not None
    assert len(recorded.matching_history) == 1
    assert cohort.matches is None
    assert cohort.matching_history == []


def test_cli_writes_output_and_tables(tmp_path, monkeypatch):
    monkeypatch.setenv("MATCHING_SEMANTIC_MODE", "lexical")
    mentees, mentors = cohort_profiles()
    cohort_path = tmp_path / "cohort.json"
    cohort_path.write_text(Cohort(id="c1", mentees=mentees, mentors=mentors).model_dump_json())
    model_path = tmp_path / "model.json"
    model_path.write_text(make_model().model_dump_json())
    out_dir = tmp_path / "out"

    output = main(["--cohort", str(cohort_path), "--model", str(model_path), "--outdir", str(out_dir)])

    assert (out_dir / "matching_output.json").exists()
    assert (out_dir / "mentor_mentee_full_scores.csv").exists()
    assert (out_dir / "mentor_mentee_top3_per_mentee.csv").exists()
    assert (out_dir / "mentor_mentee_assignments.csv").exists()
    saved = output_from_json((out_dir / "matching_output.json").read_text())
    assert output_fingerprint(saved) == output_fingerprint(output)


def test_extra_shared_language_breaks_a_tie():
    mentee = make_mentee("e1", languages=["English", "Czech"])
    one = make_mentor("a-one", languages=["English"])
    two = make_mentor("b-two", languages=["English", "Czech"])
    output = engine().run([mentee], [one, two], "top3_per_mentee")
    recs = output.results[0].recommendations
    assert [r.mentor_id for r in recs] == ["b-two", "a-one"]
    assert recs[0].score.total_score > recs[1].score.total_score
