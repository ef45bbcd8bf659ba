"""
Feature extraction for one mentee/mentor pair.

Every feature lands in [0, 1]. A missing attribute degrades only its own
feature to 0 and is reported through the `missing` list so the scorer can
surface it as a risk.
"""

import re
from typing import List, Optional, Set, Tuple, Union

from match_types import (
    SENIORITY_RANK,
    TIMEZONE_LABELS,
    MatchingFeatures,
    MatchingModel,
    MenteeProfile,
    MentorProfile,
)
from semantic_scorer import SemanticScorer

# Tiers of seniority gap over which the fit decays from 1 to 0.
SENIORITY_DECAY_TIERS = 3
# At or below this many free slots a mentor starts to be penalised.
CAPACITY_SCARCITY_THRESHOLD = 2

_OFFSET_RE = re.compile(r"^(?:utc|gmt)?\s*([+-])\s*(\d{1,2})(?::?(\d{2}))?$")


# Helpers
def normalize_set(items) -> Set[str]:
    return {str(it).strip().lower() for it in (items or []) if str(it).strip()}


def parse_timezone(tz: Optional[Union[float, str]]) -> Optional[float]:
    """UTC offset in hours for a numeric offset, 'UTC+2', 'GMT-5:30', '+01:00' or a known label."""
    if tz is None:
        return None
    if isinstance(tz, (int, float)):
        return float(tz)
    text = str(tz).strip().lower()
    if not text:
        return None
    if text in TIMEZONE_LABELS:
        return float(TIMEZONE_LABELS[text])
    if text in ("utc", "gmt"):
        return 0.0
    m = _OFFSET_RE.match(text)
    if m:
        sign = -1 if m.group(1) == "-" else 1
        return sign * (int(m.group(2)) + int(m.group(3) or 0) / 60.0)
    try:
        return float(text)
    except ValueError:
        return None


def timezone_distance(tz1, tz2) -> Optional[float]:
    """Hours between two timezones, wrapping around the day. None if either is unknown."""
    a, b = parse_timezone(tz1), parse_timezone(tz2)
    if a is None or b is None:
        return None
    d = abs(a - b) % 24
    return min(d, 24 - d)


def shared_languages(mentee: MenteeProfile, mentor: MentorProfile) -> List[str]:
    return sorted(normalize_set(mentee.languages) & normalize_set(mentor.languages))


def shared_topics(mentee: MenteeProfile, mentor: MentorProfile) -> List[str]:
    return sorted(normalize_set(mentee.topics_sought) & normalize_set(mentor.topics_offered))


def seniority_gap(mentee: MenteeProfile, mentor: MentorProfile) -> Optional[int]:
    a = SENIORITY_RANK.get((mentor.seniority_band or "").strip().upper())
    b = SENIORITY_RANK.get((mentee.seniority_band or "").strip().upper())
    if a is None or b is None:
        return None
    return a - b


# Individual features
def topics_overlap(mentee: MenteeProfile, mentor: MentorProfile) -> float:
    sought = normalize_set(mentee.topics_sought)
    if not sought:
        return 0.0
    return len(sought & normalize_set(mentor.topics_offered)) / len(sought)


def industry_overlap(mentee: MenteeProfile, mentor: MentorProfile) -> Optional[float]:
    pairs = [(mentee.industry, mentor.industry), (mentee.department, mentor.department)]
    known = [(a, b) for a, b in pairs if a and b]
    if not known:
        return None
    for a, b in known:
        if str(a).strip().lower() == str(b).strip().lower():
            return 1.0
    return 0.0


def role_seniority_fit(gap: Optional[int]) -> Optional[float]:
    """1.0 when the mentor is at least one tier above, decaying linearly as the gap closes or inverts."""
    if gap is None:
        return None
    if gap >= 1:
        return 1.0
    return max(0.0, (gap + SENIORITY_DECAY_TIERS - 1) / SENIORITY_DECAY_TIERS)


def tz_overlap_bonus(distance: Optional[float], max_difference: float) -> Optional[float]:
    if distance is None:
        return None
    if max_difference <= 0:
        return 1.0 if distance == 0 else 0.0
    return max(0.0, 1.0 - distance / max_difference)


def language_bonus(shared_count: int, min_overlap: int) -> float:
    """1.0 when the pair shares more languages than the filter already requires."""
    return 1.0 if shared_count > min_overlap else 0.0


def capacity_penalty(capacity_remaining: int) -> float:
    if capacity_remaining > CAPACITY_SCARCITY_THRESHOLD:
        return 0.0
    return min(1.0, (CAPACITY_SCARCITY_THRESHOLD + 1 - capacity_remaining) / CAPACITY_SCARCITY_THRESHOLD)


def extract_features(mentee: MenteeProfile, mentor: MentorProfile, model: MatchingModel,
                     semantic: SemanticScorer) -> Tuple[MatchingFeatures, bool, List[str]]:
    """
    Compute all raw features for a pair.

    Returns the features, whether semantic similarity came from embeddings,
    and the list of attributes that were missing.
    """
    missing: List[str] = []

    if not mentee.topics_sought:
        missing.append("mentee topics")

    sem, is_embedding_based = semantic.similarity(mentee, mentor)
    if semantic.mode != "off" and not (mentee.goals_text or mentee.motivation):
        missing.append("mentee goals")

    industry = industry_overlap(mentee, mentor)
    if industry is None:
        missing.append("industry/department")

    seniority = role_seniority_fit(seniority_gap(mentee, mentor))
    if seniority is None:
        missing.append("seniority band")

    tz = tz_overlap_bonus(timezone_distance(mentee.timezone, mentor.timezone),
                          model.filters.max_timezone_difference)
    if tz is None:
        missing.append("timezone")

    if not mentee.languages or not mentor.languages:
        missing.append("languages")

    features = MatchingFeatures(
        topics_overlap=topics_overlap(mentee, mentor),
        semantic_similarity=sem,
        industry_overlap=industry or 0.0,
        role_seniority_fit=seniority or 0.0,
        tz_overlap_bonus=tz or 0.0,
        language_bonus=language_bonus(len(shared_languages(mentee, mentor)),
                                      model.filters.min_language_overlap),
        capacity_penalty=capacity_penalty(mentor.capacity_remaining),
    )
    return features, is_embedding_based, missing
