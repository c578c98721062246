"""Rule tables deciding whether and how a task is run collaboratively.

Each table is an ordered list of ``(name, predicate, outcome)`` rules
evaluated top to bottom; the first matching rule wins. Keeping the rules as
data makes them individually testable and easy to audit.
"""

from collections.abc import Callable
from typing import NamedTuple

from ..schemas.unified_models import (
    CollaborationStrategyType,
    TaskCore,
    TaskPriority,
    TaskType,
)
from .errors import ValidationError


COLLABORATION_KEYWORDS: tuple[str, ...] = (
    "review",
    "validate",
    "compare",
    "multiple perspectives",
    "complex",
    "comprehensive",
    "end-to-end",
    "integrate",
    "coordinate",
    "collaborate",
    "multiple agents",
    "cross-functional",
    "full stack",
)

# Metadata key that pins a strategy for a task
STRATEGY_OVERRIDE_KEY = "collaboration_strategy"


class Rule(NamedTuple):
    """One entry of a rule table."""

    name: str
    predicate: Callable[[TaskCore], bool]
    outcome: object


def matched_keywords(task: TaskCore) -> list[str]:
    """Collaboration keywords present in the lower-cased description."""
    description = task.description.lower()
    return [keyword for keyword in COLLABORATION_KEYWORDS if keyword in description]


def _mentions(*words: str) -> Callable[[TaskCore], bool]:
    def predicate(task: TaskCore) -> bool:
        description = task.description.lower()
        return all(word in description for word in words)

    return predicate


COLLABORATION_RULES: list[Rule] = [
    Rule("keyword", lambda task: bool(matched_keywords(task)), True),
    Rule("critical_priority", lambda task: task.priority == TaskPriority.CRITICAL, True),
    Rule(
        "high_priority_with_keyword",
        lambda task: task.priority == TaskPriority.HIGH and bool(matched_keywords(task)),
        True,
    ),
]

STRATEGY_RULES: list[Rule] = [
    Rule(
        "design_task",
        lambda task: task.type == TaskType.DESIGN,
        CollaborationStrategyType.CONSENSUS,
    ),
    Rule("architecture", _mentions("architecture"), CollaborationStrategyType.CONSENSUS),
    Rule(
        "frontend_and_backend",
        _mentions("frontend", "backend"),
        CollaborationStrategyType.PARALLEL,
    ),
    Rule(
        "critical_priority",
        lambda task: task.priority == TaskPriority.CRITICAL,
        CollaborationStrategyType.HIERARCHICAL,
    ),
]


def first_match(rules: list[Rule], task: TaskCore, default: object) -> tuple[str, object]:
    """Evaluate a rule table and return the winning rule name and outcome."""
    for rule in rules:
        if rule.predicate(task):
            return rule.name, rule.outcome
    return "default", default


def requires_collaboration(task: TaskCore) -> bool:
    """Whether the task should be executed by a collaboration session."""
    _, outcome = first_match(COLLABORATION_RULES, task, False)
    return bool(outcome)


def parse_strategy(value: object) -> CollaborationStrategyType:
    """Parse a strategy name, raising ValidationError for unknown values."""
    if isinstance(value, CollaborationStrategyType):
        return value
    if isinstance(value, dict):
        # Accept the {"type": ..., "config": {...}} shape as well
        value = value.get("type")
    try:
        return CollaborationStrategyType(str(value).lower())
    except ValueError as e:
        allowed = ", ".join(s.value for s in CollaborationStrategyType)
        raise ValidationError(
            f"Unknown collaboration strategy {value!r}; expected one of: {allowed}"
        ) from e


def determine_collaboration_strategy(task: TaskCore) -> CollaborationStrategyType:
    """Pick the collaboration strategy for a task.

    An explicit ``collaboration_strategy`` entry in the task metadata wins;
    otherwise the first matching rule of STRATEGY_RULES decides, falling back
    to sequential.
    """
    override = task.metadata.get(STRATEGY_OVERRIDE_KEY)
    if override is not None:
        return parse_strategy(override)

    _, outcome = first_match(STRATEGY_RULES, task, CollaborationStrategyType.SEQUENTIAL)
    return outcome
