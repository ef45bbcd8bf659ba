"""
Rule engine

Evaluates a matching model's rules against one mentee/mentor pair. Each rule
tests a condition against a flat attribute map built from both profiles:

  "mentor.department", "mentee.languages", "mentor.<custom attribute>", ...
  "shared_languages", "shared_topics", "timezone_difference", "seniority_gap"

An unprefixed profile field compared with "same" / "different" checks the
mentor's value against the mentee's (e.g. department = same). Any other
unprefixed profile field refers to the mentor.
A missing attribute never satisfies a condition, negated operators included,
so a must_have rule on an attribute a mentor lacks excludes that mentor.

How a rule fires:
  must_have  - condition fails    -> pair excluded
  exclusion  - condition matches  -> pair excluded
  bonus      - condition matches  -> +|value| points
  penalty    - condition matches  -> -|value| points
A firing rule whose action is flag_approval forces human review instead.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from match_features import normalize_set, seniority_gap, shared_languages, shared_topics, timezone_distance
from match_types import (
    ConstraintViolation,
    MatchingRule,
    MenteeProfile,
    MentorProfile,
    RuleActionType,
    RuleCondition,
    RuleOperator,
    RuleType,
)
from matching_errors import RuleEvaluationError

DERIVED_FIELDS = ("shared_languages", "shared_topics", "timezone_difference", "seniority_gap")
RELATIVE_VALUES = ("same", "different")


@dataclass
class RuleOutcome:
    score_delta: float = 0.0
    violations: List[ConstraintViolation] = field(default_factory=list)
    forced_exclude: bool = False
    forced_approval: bool = False
    fired: List[str] = field(default_factory=list)


def _profile_attributes(prefix: str, profile, topics) -> Dict[str, Any]:
    attrs = {
        f"{prefix}.id": profile.id,
        f"{prefix}.role": profile.role,
        f"{prefix}.seniority_band": profile.seniority_band,
        f"{prefix}.timezone": profile.timezone,
        f"{prefix}.languages": list(profile.languages),
        f"{prefix}.industry": profile.industry,
        f"{prefix}.department": profile.department,
        f"{prefix}.topics": list(topics),
    }
    for k, v in profile.attributes.items():
        attrs[f"{prefix}.{k}"] = v
    return attrs


def build_attribute_map(mentee: MenteeProfile, mentor: MentorProfile) -> Dict[str, Any]:
    attrs = {}
    attrs.update(_profile_attributes("mentee", mentee, mentee.topics_sought))
    attrs.update(_profile_attributes("mentor", mentor, mentor.topics_offered))
    attrs["mentor.capacity_remaining"] = mentor.capacity_remaining
    attrs["mentor.mentoring_style"] = mentor.mentoring_style
    attrs["shared_languages"] = len(shared_languages(mentee, mentor))
    attrs["shared_topics"] = len(shared_topics(mentee, mentor))
    attrs["timezone_difference"] = timezone_distance(mentee.timezone, mentor.timezone)
    attrs["seniority_gap"] = seniority_gap(mentee, mentor)
    return attrs


# Comparison helpers
def _norm(v) -> str:
    return str(v).strip().lower()


def _is_blank(v) -> bool:
    return v is None or (isinstance(v, (str, list)) and len(v) == 0)


def _as_list(v) -> List[Any]:
    return list(v) if isinstance(v, (list, tuple, set)) else [v]


def _equal(a, b) -> bool:
    if not isinstance(a, bool) and not isinstance(b, bool):
        try:
            return float(a) == float(b)
        except (TypeError, ValueError):
            pass
    return _norm(a) == _norm(b)


def _number(v, rule_field: str) -> float:
    try:
        return float(v)
    except (TypeError, ValueError):
        raise RuleEvaluationError(f"field {rule_field!r}: {v!r} is not numeric")


def _contains(actual, value) -> bool:
    if isinstance(actual, list):
        return any(_equal(a, v) for a in actual for v in _as_list(value))
    return all(_norm(v) in _norm(actual) for v in _as_list(value))


def _is_in(actual, value) -> bool:
    return any(_equal(a, v) for a in _as_list(actual) for v in _as_list(value))


def _relative(condition: RuleCondition, attrs: Dict[str, Any]) -> bool:
    a = attrs.get(f"mentor.{condition.field}")
    b = attrs.get(f"mentee.{condition.field}")
    if _is_blank(a) or _is_blank(b):
        return False
    if isinstance(a, list) or isinstance(b, list):
        same = bool(normalize_set(_as_list(a)) & normalize_set(_as_list(b)))
    else:
        same = _equal(a, b)
    result = same if _norm(condition.value) == "same" else not same
    if condition.operator == RuleOperator.EQ:
        return result
    if condition.operator == RuleOperator.NE:
        return not result
    raise RuleEvaluationError(
        f"field {condition.field!r}: {condition.value!r} only supports '=' and '!='")


def evaluate_condition(condition: RuleCondition, attrs: Dict[str, Any]) -> bool:
    """True when the condition holds. Unknown attributes never satisfy a condition."""
    name = condition.field.strip()
    value = condition.value
    op = condition.operator

    if "." not in name and name not in DERIVED_FIELDS:
        if isinstance(value, str) and _norm(value) in RELATIVE_VALUES:
            return _relative(condition, attrs)
        name = f"mentor.{name}"

    actual = attrs.get(name)
    if _is_blank(actual):
        return False

    if op == RuleOperator.EQ:
        return _is_in(actual, value) if isinstance(actual, list) else _equal(actual, value)
    if op == RuleOperator.NE:
        return not (_is_in(actual, value) if isinstance(actual, list) else _equal(actual, value))
    if op == RuleOperator.GT:
        return _number(actual, name) > _number(value, name)
    if op == RuleOperator.LT:
        return _number(actual, name) < _number(value, name)
    if op == RuleOperator.GE:
        return _number(actual, name) >= _number(value, name)
    if op == RuleOperator.LE:
        return _number(actual, name) <= _number(value, name)
    if op == RuleOperator.CONTAINS:
        return _contains(actual, value)
    if op == RuleOperator.NOT_CONTAINS:
        return not _contains(actual, value)
    if op == RuleOperator.IN:
        return _is_in(actual, value)
    if op == RuleOperator.NOT_IN:
        return not _is_in(actual, value)
    raise RuleEvaluationError(f"unsupported operator {op!r}")


def _fires(rule: MatchingRule, holds: bool) -> bool:
    if rule.rule_type == RuleType.MUST_HAVE:
        return not holds
    return holds


def _describe(rule: MatchingRule) -> str:
    if rule.action.reason:
        return rule.action.reason
    c = rule.condition
    verb = "not satisfied" if rule.rule_type == RuleType.MUST_HAVE else "matched"
    return f"{rule.rule_type.value} rule '{rule.name or rule.id}' {verb} ({c.field} {c.operator.value} {c.value})"


def evaluate_rules(mentee: MenteeProfile, mentor: MentorProfile,
                   rules: Iterable[MatchingRule]) -> RuleOutcome:
    """Evaluate active rules in priority order (lowest number first, then id)."""
    outcome = RuleOutcome()
    active = sorted((r for r in rules if r.is_active), key=lambda r: (r.priority, r.id))
    if not active:
        return outcome

    attrs = build_attribute_map(mentee, mentor)
    for rule in active:
        try:
            holds = evaluate_condition(rule.condition, attrs)
        except RuleEvaluationError as e:
            raise RuleEvaluationError(f"rule {rule.id!r}: {e}") from e
        if not _fires(rule, holds):
            continue
        outcome.fired.append(rule.id)

        if rule.action.type == RuleActionType.FLAG_APPROVAL:
            outcome.forced_approval = True
            outcome.violations.append(ConstraintViolation(
                rule_id=rule.id, rule_name=rule.name, severity="warning", description=_describe(rule)))
            if rule.rule_type in (RuleType.MUST_HAVE, RuleType.EXCLUSION):
                continue

        if rule.rule_type in (RuleType.MUST_HAVE, RuleType.EXCLUSION):
            outcome.forced_exclude = True
            outcome.violations.append(ConstraintViolation(
                rule_id=rule.id, rule_name=rule.name, severity="error", description=_describe(rule)))
        elif rule.action.value is not None:
            points = abs(rule.action.value)
            outcome.score_delta += points if rule.rule_type == RuleType.BONUS else -points
    return outcome
