import json
import logging
import os
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Union

from dotenv import load_dotenv
from pydantic import ValidationError

from match_types import (
    CRITERIA,
    MatchingModel,
    MatchingRule,
    ModelStatus,
    RuleActionType,
    RuleOperator,
    RuleType,
)
from matching_errors import MatchingConfigError

load_dotenv()

logger = logging.getLogger(__name__)

SEMANTIC_MODES = ("off", "lexical", "embed")

# Actions each rule type may carry.
ALLOWED_ACTIONS = {
    RuleType.MUST_HAVE: {RuleActionType.EXCLUDE, RuleActionType.REQUIRE, RuleActionType.FLAG_APPROVAL},
    RuleType.EXCLUSION: {RuleActionType.EXCLUDE, RuleActionType.REQUIRE, RuleActionType.FLAG_APPROVAL},
    RuleType.BONUS: {RuleActionType.POINTS, RuleActionType.FLAG_APPROVAL},
    RuleType.PENALTY: {RuleActionType.POINTS, RuleActionType.FLAG_APPROVAL},
}

ALLOWED_TRANSITIONS = {
    (ModelStatus.DRAFT, ModelStatus.ACTIVE),
    (ModelStatus.DRAFT, ModelStatus.ARCHIVED),
    (ModelStatus.ACTIVE, ModelStatus.ARCHIVED),
}


@dataclass
class EngineSettings:
    semantic_mode: str = "lexical"
    embed_model: str = "all-MiniLM-L6-v2"
    max_workers: int = 4
    embed_retries: int = 3
    embed_backoff: float = 0.5

    def __post_init__(self):
        if self.semantic_mode not in SEMANTIC_MODES:
            raise MatchingConfigError(
                f"semantic_mode must be one of {SEMANTIC_MODES}, got {self.semantic_mode!r}")
        if self.max_workers < 1:
            raise MatchingConfigError("max_workers must be at least 1")
        if self.embed_retries < 1:
            raise MatchingConfigError("embed_retries must be at least 1")
        if self.embed_backoff < 0:
            raise MatchingConfigError("embed_backoff must not be negative")

    @classmethod
    def from_env(cls) -> "EngineSettings":
        try:
            return cls(
                semantic_mode=os.getenv("MATCHING_SEMANTIC_MODE", "lexical").strip().lower(),
                embed_model=os.getenv("MATCHING_EMBED_MODEL", "all-MiniLM-L6-v2"),
                max_workers=int(os.getenv("MATCHING_MAX_WORKERS", "4")),
                embed_retries=int(os.getenv("MATCHING_EMBED_RETRIES", "3")),
                embed_backoff=float(os.getenv("MATCHING_EMBED_BACKOFF", "0.5")),
            )
        except ValueError as e:
            if isinstance(e, MatchingConfigError):
                raise
            raise MatchingConfigError(f"Invalid engine setting in environment: {e}") from e


# Model loading and validation
def _check_rule(rule: MatchingRule) -> None:
    allowed = ALLOWED_ACTIONS[rule.rule_type]
    if rule.action.type not in allowed:
        raise MatchingConfigError(
            f"Rule {rule.id!r}: action {rule.action.type.value!r} is not valid for "
            f"{rule.rule_type.value} rules")
    if rule.rule_type in (RuleType.BONUS, RuleType.PENALTY) and rule.action.type == RuleActionType.POINTS:
        if rule.action.value is None:
            raise MatchingConfigError(f"Rule {rule.id!r}: points action requires a numeric value")
    if rule.condition.operator in (RuleOperator.IN, RuleOperator.NOT_IN):
        if not isinstance(rule.condition.value, list):
            raise MatchingConfigError(
                f"Rule {rule.id!r}: operator {rule.condition.operator.value!r} requires a list value")


def validate_matching_model(model: MatchingModel) -> MatchingModel:
    """Checks the cross-field constraints pydantic cannot express on a single field."""
    if sum(getattr(model.weights, c) for c in CRITERIA) <= 0:
        raise MatchingConfigError("At least one criterion weight must be positive")
    seen = set()
    for rule in model.rules:
        if rule.id in seen:
            raise MatchingConfigError(f"Duplicate rule id {rule.id!r}")
        seen.add(rule.id)
        _check_rule(rule)
    return model


def load_matching_model(source: Union[MatchingModel, Dict[str, Any], str, Path]) -> MatchingModel:
    """
    Build a validated MatchingModel from a model instance, a dict, a JSON string
    or a path to a JSON file. Any problem raises MatchingConfigError.
    """
    if isinstance(source, MatchingModel):
        data = source.model_dump()
    elif isinstance(source, dict):
        data = source
    else:
        text = str(source)
        path = Path(text)
        try:
            if not text.lstrip().startswith("{") and path.is_file():
                text = path.read_text(encoding="utf-8")
            data = json.loads(text)
        except (OSError, json.JSONDecodeError) as e:
            raise MatchingConfigError(f"Could not read matching model: {e}") from e
    try:
        model = MatchingModel.model_validate(data)
    except ValidationError as e:
        raise MatchingConfigError(f"Invalid matching model: {e}") from e
    return validate_matching_model(model)


# Lifecycle
def transition_model(model: MatchingModel, status: ModelStatus) -> MatchingModel:
    status = ModelStatus(status)
    if model.status == status:
        return model
    if (model.status, status) not in ALLOWED_TRANSITIONS:
        raise MatchingConfigError(
            f"Model {model.id!r} cannot move from {model.status.value} to {status.value}")
    return model.model_copy(update={"status": status})


def archive_model(model: MatchingModel) -> MatchingModel:
    return transition_model(model, ModelStatus.ARCHIVED)


def activate_model(models: List[MatchingModel], model_id: str) -> List[MatchingModel]:
    """Activate one model of a cohort, archiving whichever model was active before."""
    if not any(m.id == model_id for m in models):
        raise MatchingConfigError(f"Unknown matching model {model_id!r}")
    updated = []
    for m in models:
        if m.id == model_id:
            validate_matching_model(m)
            updated.append(transition_model(m, ModelStatus.ACTIVE))
        elif m.status == ModelStatus.ACTIVE:
            logger.info("Archiving previously active model %s v%d", m.id, m.version)
            updated.append(archive_model(m))
        else:
            updated.append(m)
    return updated


def new_model_version(model: MatchingModel, new_id: str = None) -> MatchingModel:
    return model.model_copy(
        update={
            "id": new_id or str(uuid.uuid4()),
            "version": model.version + 1,
            "status": ModelStatus.DRAFT,
        },
        deep=True,
    )


def get_active_model(models: List[MatchingModel]) -> MatchingModel:
    active = [m for m in models if m.status == ModelStatus.ACTIVE]
    if len(active) != 1:
        raise MatchingConfigError(f"Expected exactly one active matching model, found {len(active)}")
    return active[0]
