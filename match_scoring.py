from typing import List, Optional, Tuple

from match_features import shared_languages, shared_topics, timezone_distance
from match_rules import RuleOutcome
from match_types import (
    CRITERIA,
    CRITERION_NAMES,
    MatchingFeatures,
    MatchingModel,
    MatchingWeights,
    MatchLogistics,
    MatchScore,
    MenteeProfile,
    MentorProfile,
    RuleType,
    ScoreBreakdown,
)

FEATURE_FOR_CRITERION = {
    "topics": "topics_overlap",
    "semantic": "semantic_similarity",
    "industry": "industry_overlap",
    "seniority": "role_seniority_fit",
    "timezone": "tz_overlap_bonus",
    "language": "language_bonus",
}


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def compute_total(features: MatchingFeatures, weights: MatchingWeights,
                  rule_delta: float = 0.0) -> Tuple[float, List[ScoreBreakdown]]:
    """
    total = clamp(0, 100, sum(f_i * w_i) / sum(w_i) * 100
                          - w_capacity * capacity_penalty + rule_delta)

    Each term is also returned as a breakdown entry; weighted_score is the
    term's contribution in points.
    """
    weight_sum = sum(getattr(weights, c) for c in CRITERIA)
    breakdown = []
    base = 0.0
    for criterion in CRITERIA:
        weight = getattr(weights, criterion)
        raw = getattr(features, FEATURE_FOR_CRITERION[criterion])
        share = weight / weight_sum * 100 if weight_sum > 0 else 0.0
        points = raw * share
        base += points
        breakdown.append(ScoreBreakdown(
            criterion=criterion,
            criterion_name=CRITERION_NAMES[criterion],
            raw_score=round(raw, 4),
            max_possible=round(share, 4),
            weight=weight,
            weighted_score=round(points, 4),
        ))

    penalty = weights.capacity_penalty * features.capacity_penalty
    breakdown.append(ScoreBreakdown(
        criterion="capacity_penalty",
        criterion_name=CRITERION_NAMES["capacity_penalty"],
        raw_score=round(features.capacity_penalty, 4),
        max_possible=0.0,
        weight=weights.capacity_penalty,
        weighted_score=round(-penalty, 4),
    ))
    if rule_delta:
        breakdown.append(ScoreBreakdown(
            criterion="rules",
            criterion_name=CRITERION_NAMES["rules"],
            raw_score=round(rule_delta, 4),
            max_possible=0.0,
            weight=1.0,
            weighted_score=round(rule_delta, 4),
        ))
    return clamp(base - penalty + rule_delta), breakdown


# Advisory text. Generated after the numbers are final and never fed back into them.
def _reasons(mentee, mentor, features: MatchingFeatures, is_embedding_based: bool,
             bonus_names: List[str]) -> List[str]:
    reasons = []
    topics = shared_topics(mentee, mentor)
    if features.topics_overlap >= 0.8:
        reasons.append(f"Covers {len(topics)} of {len(mentee.topics_sought)} requested topics")
    elif features.topics_overlap >= 0.3:
        reasons.append(f"{len(topics)} shared development areas")
    semantic_floor = 0.5 if is_embedding_based else 0.2
    if features.semantic_similarity >= semantic_floor:
        reasons.append("Aligned goals and expertise")
    if features.industry_overlap >= 1.0:
        reasons.append("Same industry or department")
    if features.role_seniority_fit >= 1.0:
        reasons.append("Appropriate seniority gap")
    if features.tz_overlap_bonus >= 0.8:
        reasons.append("Compatible timezone")
    if features.language_bonus >= 1.0:
        reasons.append(f"Shared language: {', '.join(shared_languages(mentee, mentor))}")
    for name in bonus_names:
        reasons.append(f"Bonus: {name}")
    return reasons


def _risks(mentee, mentor, features: MatchingFeatures, outcome: RuleOutcome, missing: List[str],
           semantic_fallback: bool, penalty_names: List[str]) -> List[str]:
    risks = []
    if features.topics_overlap < 0.2 and "mentee topics" not in missing:
        risks.append("Limited topic overlap")
    distance = timezone_distance(mentee.timezone, mentor.timezone)
    if distance is not None and features.tz_overlap_bonus <= 0.2:
        risks.append(f"Timezone difference of {distance:g}h")
    if features.capacity_penalty > 0:
        risks.append(f"Limited mentor capacity ({mentor.capacity_remaining} slot(s) left)")
    if "seniority band" not in missing and features.role_seniority_fit < 0.5:
        risks.append("Mentor is not senior to mentee")
    for attr in missing:
        risks.append(f"Missing {attr}; feature scored 0")
    if semantic_fallback:
        risks.append("Goals similarity estimated lexically (embedding provider unavailable)")
    for name in penalty_names:
        risks.append(f"Penalty: {name}")
    for v in outcome.violations:
        risks.append(v.description)
    return risks


def _icebreaker(mentee, mentor) -> str:
    topics = shared_topics(mentee, mentor)
    if topics:
        return f"Discuss shared interest in {topics[0]}"
    return "Explore complementary experiences and goals"


def _approval(total: float, outcome: RuleOutcome, threshold: float) -> Tuple[bool, Optional[str]]:
    if outcome.forced_approval:
        flagged = [v for v in outcome.violations if v.severity == "warning"]
        names = ", ".join(v.rule_name or v.rule_id for v in flagged)
        return True, f"flagged by rule: {names}"
    if total < threshold:
        return True, f"score {total:.1f} below approval threshold {threshold:g}"
    return False, None


def score_pair(mentee: MenteeProfile, mentor: MentorProfile, features: MatchingFeatures,
               outcome: RuleOutcome, model: MatchingModel, is_embedding_based: bool = False,
               missing: Optional[List[str]] = None, semantic_fallback: bool = False) -> MatchScore:
    """
    Combine features and rule adjustments into a MatchScore.

    Excluded pairs are still scored so the decision can be audited, but come
    back with is_eligible=False.
    """
    missing = missing or []
    total, breakdown = compute_total(features, model.weights, outcome.score_delta)

    rules_by_id = {r.id: r for r in model.rules}
    fired = [rules_by_id[rid] for rid in outcome.fired if rid in rules_by_id]
    bonus_names = [r.name or r.id for r in fired if r.rule_type == RuleType.BONUS]
    penalty_names = [r.name or r.id for r in fired if r.rule_type == RuleType.PENALTY]

    needs_approval, approval_reason = _approval(total, outcome, model.approval_threshold)

    return MatchScore(
        total_score=total,
        features=features,
        score_breakdown=breakdown,
        reasons=_reasons(mentee, mentor, features, is_embedding_based, bonus_names),
        risks=_risks(mentee, mentor, features, outcome, missing, semantic_fallback, penalty_names),
        logistics=MatchLogistics(
            timezone_mentee=mentee.timezone,
            timezone_mentor=mentor.timezone,
            languages_shared=shared_languages(mentee, mentor),
            capacity_remaining=mentor.capacity_remaining,
        ),
        icebreaker=_icebreaker(mentee, mentor),
        constraint_violations=list(outcome.violations),
        is_eligible=not outcome.forced_exclude,
        needs_approval=needs_approval,
        approval_reason=approval_reason,
        is_embedding_based=is_embedding_based,
    )
