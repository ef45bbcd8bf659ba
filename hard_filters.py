from typing import NamedTuple, Optional

from match_features import shared_languages, timezone_distance
from match_types import MatchingFilters, MenteeProfile, MentorProfile


class FilterDecision(NamedTuple):
    feasible: bool
    reason: Optional[str] = None


FEASIBLE = FilterDecision(True)


def apply_hard_filters(mentee: MenteeProfile, mentor: MentorProfile,
                       filters: MatchingFilters) -> FilterDecision:
    """
    Drop pairs that can never be matched, cheapest check first:
      1. mentor has free capacity (when required)
      2. timezone difference within the ceiling (skipped if either timezone is unknown)
      3. enough shared languages (skipped if either side lists none)
    The first failing check decides the reason.
    """
    if filters.require_available_capacity and mentor.capacity_remaining <= 0:
        return FilterDecision(False, f"mentor {mentor.id} has no remaining capacity")

    distance = timezone_distance(mentee.timezone, mentor.timezone)
    if distance is not None and distance > filters.max_timezone_difference:
        return FilterDecision(
            False,
            f"timezone difference {distance:g}h exceeds {filters.max_timezone_difference:g}h")

    shared = len(shared_languages(mentee, mentor))
    if mentee.languages and mentor.languages and shared < filters.min_language_overlap:
        return FilterDecision(
            False, f"{shared} shared language(s), at least {filters.min_language_overlap} required")

    return FEASIBLE
