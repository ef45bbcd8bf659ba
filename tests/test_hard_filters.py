from conftest import make_mentee, make_mentor
from hard_filters import apply_hard_filters
from match_types import MatchingFilters


def test_feasible_pair_passes():
    decision = apply_hard_filters(make_mentee(), make_mentor(), MatchingFilters())
    assert decision.feasible
    assert decision.reason is None


def test_full_mentor_is_infeasible():
    decision = apply_hard_filters(make_mentee(), make_mentor(capacity_remaining=0), MatchingFilters())
    assert not decision.feasible
    assert "capacity" in decision.reason


def test_capacity_check_can_be_disabled():
    filters = MatchingFilters(require_available_capacity=False)
    assert apply_hard_filters(make_mentee(), make_mentor(capacity_remaining=0), filters).feasible


def test_timezone_ceiling():
    filters = MatchingFilters(max_timezone_difference=3)
    far = apply_hard_filters(make_mentee(timezone="UTC+0"), make_mentor(timezone="UTC+5"), filters)
    assert not far.feasible
    assert "timezone difference 5h" in far.reason
    assert apply_hard_filters(make_mentee(timezone=0), make_mentor(timezone=3), filters).feasible


def test_unknown_timezone_skips_timezone_check():
    assert apply_hard_filters(make_mentee(timezone=None), make_mentor(timezone=9), MatchingFilters()).feasible


def test_language_overlap():
    mentee = make_mentee(languages=["French"])
    decision = apply_hard_filters(mentee, make_mentor(languages=["English"]), MatchingFilters())
    assert not decision.feasible
    assert "language" in decision.reason
    assert apply_hard_filters(mentee, make_mentor(languages=["english", "FRENCH"]), MatchingFilters()).feasible


def test_no_listed_languages_skips_language_check():
    assert apply_hard_filters(make_mentee(languages=[]), make_mentor(), MatchingFilters()).feasible


def test_capacity_checked_before_other_filters():
    mentee = make_mentee(timezone=0, languages=["French"])
    mentor = make_mentor(timezone=8, languages=["English"], capacity_remaining=0)
    assert "capacity" in apply_hard_filters(mentee, mentor, MatchingFilters()).reason


def test_timezone_checked_before_languages():
    mentee = make_mentee(timezone=0, languages=["French"])
    mentor = make_mentor(timezone=8, languages=["English"])
    assert "timezone" in apply_hard_filters(mentee, mentor, MatchingFilters()).reason
