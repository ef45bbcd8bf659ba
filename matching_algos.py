from typing import Dict, List, Optional, Sequence, Tuple

from match_types import (
    TOPK,
    AssignmentStatus,
    MatchingResult,
    MatchScore,
    MenteeProfile,
    MentorProfile,
    ProposedAssignment,
    Recommendation,
)

Candidate = Tuple[MentorProfile, MatchScore]

NEEDS_APPROVAL_PREFIX = "Needs approval"


def ranking_key(candidate: Candidate):
    mentor, score = candidate
    return (-score.total_score, -mentor.capacity_remaining, mentor.id)


def rank_mentors(candidates: Sequence[Candidate]) -> List[Candidate]:
    """
    Sort a mentee's scored mentors best first. Ties go to the mentor with more
    remaining capacity, then to the lower mentor id. Ineligible pairs (excluded
    by a rule) are dropped.
    """
    return sorted((c for c in candidates if c[1].is_eligible), key=ranking_key)


def to_recommendations(ranked: Sequence[Candidate], k: int = TOPK) -> List[Recommendation]:
    return [Recommendation(mentor_id=m.id, mentor_name=m.name, score=s) for m, s in ranked[:k]]


def top_per_mentee(mentees: Sequence[MenteeProfile], ranked_by_mentee: Dict[str, List[Candidate]],
                   k: int = TOPK) -> List[MatchingResult]:
    """Shortlist mode: top-k mentors per mentee, nothing committed."""
    return [
        MatchingResult(
            mentee_id=mentee.id,
            mentee_name=mentee.name,
            recommendations=to_recommendations(ranked_by_mentee.get(mentee.id, []), k),
        )
        for mentee in sorted(mentees, key=lambda m: m.id)
    ]


def _assignment_comment(score: MatchScore, position: int, skipped: List[str]) -> str:
    parts = []
    if score.needs_approval:
        parts.append(f"{NEEDS_APPROVAL_PREFIX}: {score.approval_reason}.")
    if position == 0:
        parts.append(f"Best-ranked mentor (score {score.total_score:.1f}).")
    else:
        parts.append(f"Ranked #{position + 1} (score {score.total_score:.1f}); "
                     f"higher-ranked {', '.join(skipped)} at capacity.")
    return " ".join(parts)


def greedy_assign_with_capacity(mentees: Sequence[MenteeProfile], mentors: Sequence[MentorProfile],
                                ranked_by_mentee: Dict[str, List[Candidate]],
                                unassigned_reasons: Optional[Dict[str, str]] = None,
                                k: int = TOPK) -> List[MatchingResult]:
    """
    Greedy, mentee-priority assignment with mentor capacity.
    - Mentees are processed in id order; this order is part of the result.
    - Each mentee takes its highest-ranked mentor that still has capacity,
      which decrements that mentor's counter.
    - Recommendations are the top-k mentors still available when the mentee
      is processed, so the proposed mentor is always the first of them.
    - No available mentor leaves the assignment empty with a comment.
    Not a stable or maximum-weight matching.
    """
    unassigned_reasons = unassigned_reasons or {}
    capacity = {m.id: m.capacity_remaining for m in mentors}
    results = []

    for mentee in sorted(mentees, key=lambda m: m.id):
        ranked = ranked_by_mentee.get(mentee.id, [])
        available = [(mr, s) for mr, s in ranked if capacity.get(mr.id, 0) > 0]

        if available:
            mentor, score = available[0]
            position = next(i for i, (mr, _) in enumerate(ranked) if mr.id == mentor.id)
            skipped = [mr.id for mr, _ in ranked[:position]]
            capacity[mentor.id] -= 1
            assignment = ProposedAssignment(
                mentor_id=mentor.id,
                mentor_name=mentor.name,
                comment=_assignment_comment(score, position, skipped),
                status=AssignmentStatus.PROPOSED,
            )
        else:
            if ranked:
                reason = f"All {len(ranked)} feasible mentor(s) are at capacity"
            else:
                reason = unassigned_reasons.get(mentee.id, "No feasible mentor")
            assignment = ProposedAssignment(comment=reason)

        results.append(MatchingResult(
            mentee_id=mentee.id,
            mentee_name=mentee.name,
            recommendations=to_recommendations(available, k),
            proposed_assignment=assignment,
        ))
    return results


def review_assignment(result: MatchingResult, approved: bool) -> MatchingResult:
    """Apply an admin decision: approve the proposal, or send the mentee back to unassigned."""
    current = result.proposed_assignment
    if current is None or current.mentor_id is None:
        return result
    if approved:
        updated = current.model_copy(update={"status": AssignmentStatus.APPROVED})
    else:
        updated = ProposedAssignment(comment=f"Proposal of {current.mentor_id} rejected in review")
    return result.model_copy(update={"proposed_assignment": updated})
