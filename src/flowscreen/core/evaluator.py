"""Pure evaluation functions over a flow definition and a set of answers.

Nothing here raises on a malformed flow: dangling edge targets, unknown
question ids and missing scoring degrade to ``None`` or zero so that
navigation keeps working while a flow is being edited.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from ..schemas.application import SavedAnswer
from ..schemas.flow import (
    CONSENT_QUESTION_ID,
    QUESTION_NODE_TYPES,
    AnswerMembership,
    ConsentNode,
    EdgeCondition,
    FlowDefinition,
    FlowQuestion,
    FormNode,
    ScoreRange,
    ScoringRules,
    stringify_answer,
)

_MISSING = object()


@dataclass(slots=True)
class ScoreResult:
    score_total: float = 0
    score_breakdown: dict[str, float] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class Outcome:
    status: str
    stage: str


def required_question_ids(flow: FlowDefinition) -> list[str]:
    """Required question, field and consent ids in first-seen order, deduplicated."""
    seen: dict[str, None] = {}
    for node in flow.nodes:
        if isinstance(node, QUESTION_NODE_TYPES):
            for question in node.config.questions:
                if question.required:
                    seen.setdefault(question.id)
        elif isinstance(node, FormNode):
            for form_field in node.config.fields:
                if form_field.required:
                    seen.setdefault(form_field.id)
        elif isinstance(node, ConsentNode) and node.config.required:
            seen.setdefault(CONSENT_QUESTION_ID)
    return list(seen)


def score_answers(flow: FlowDefinition, answers: Iterable[SavedAnswer]) -> ScoreResult:
    """Score every submitted answer and total the breakdown."""
    questions = _question_index(flow)
    breakdown: dict[str, float] = {}

    for answer in answers:
        if answer.question_id == CONSENT_QUESTION_ID:
            breakdown[answer.question_id] = 0
            continue
        question = questions.get(answer.question_id)
        breakdown[answer.question_id] = _score_one(question, answer.value) if question else 0

    return ScoreResult(
        score_total=sum(breakdown.values()),
        score_breakdown=breakdown,
    )


def missing_required(flow: FlowDefinition, answers: Iterable[SavedAnswer]) -> list[str]:
    by_question = answers_by_question(answers)
    return [
        question_id
        for question_id in required_question_ids(flow)
        if not is_filled(by_question.get(question_id))
    ]


def resolve_next_node(
    flow: FlowDefinition,
    current_node_key: str,
    answers: Iterable[SavedAnswer],
    score_total: float,
) -> str | None:
    """Return the target of the first satisfied outgoing edge.

    Edges are tried by descending priority; equal priorities keep their
    declaration order. ``None`` means no edge matched.
    """
    by_question = answers_by_question(answers)
    outgoing = [edge for edge in flow.edges if edge.from_ == current_node_key]
    # sorted() is stable, so declaration order breaks priority ties.
    for edge in sorted(outgoing, key=lambda edge: -edge.priority):
        if _match_condition(score_total, by_question, edge.condition):
            return edge.to
    return None


def resolve_outcome(score_total: float, rules: ScoringRules) -> Outcome:
    if score_total >= rules.pass_threshold:
        return Outcome(status="screening", stage="Pass")
    if score_total >= rules.reserve_threshold:
        return Outcome(status="reserve", stage="Reserve")
    return Outcome(status="rejected", stage="Reject")


def is_filled(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    return True


def answers_by_question(answers: Iterable[SavedAnswer]) -> dict[str, Any]:
    """Map question id to value; a later answer for the same id wins."""
    return {answer.question_id: answer.value for answer in answers}


def _question_index(flow: FlowDefinition) -> dict[str, FlowQuestion]:
    index: dict[str, FlowQuestion] = {}
    for node in flow.nodes:
        if not isinstance(node, QUESTION_NODE_TYPES):
            continue
        for question in node.config.questions:
            index.setdefault(question.id, question)
    return index


def _score_one(question: FlowQuestion, value: Any) -> float:
    if question.scoring is not None:
        if isinstance(value, (list, tuple)):
            return sum(question.scoring.get(stringify_answer(item), 0) for item in value)
        return question.scoring.get(stringify_answer(value), 0)
    if question.correct and question.score:
        return question.score if stringify_answer(value) == question.correct else 0
    return 0


def _match_condition(
    score_total: float,
    by_question: Mapping[str, Any],
    condition: EdgeCondition | None,
) -> bool:
    if condition is None:
        return True
    if condition.score_total is not None and not _match_score(score_total, condition.score_total):
        return False
    if condition.answers is not None and not _match_answers(by_question, condition.answers):
        return False
    return True


def _match_score(score_total: float, test: ScoreRange) -> bool:
    if test.gte is not None and not score_total >= test.gte:
        return False
    if test.gt is not None and not score_total > test.gt:
        return False
    if test.lte is not None and not score_total <= test.lte:
        return False
    if test.lt is not None and not score_total < test.lt:
        return False
    if test.between is not None:
        low, high = test.between
        if score_total < low or score_total > high:
            return False
    return True


def _match_answers(by_question: Mapping[str, Any], expectations: Mapping[str, Any]) -> bool:
    for question_id, expected in expectations.items():
        actual = by_question.get(question_id, _MISSING)
        if actual is _MISSING:
            return False

        if isinstance(expected, AnswerMembership):
            if isinstance(actual, (list, tuple)):
                if not any(_contains(expected.values, item) for item in actual):
                    return False
            elif not _contains(expected.values, actual):
                return False
            continue

        if isinstance(actual, (list, tuple)):
            if not _contains(actual, expected):
                return False
            continue

        if not _same_value(actual, expected):
            return False
    return True


def _contains(collection: Iterable[Any], value: Any) -> bool:
    return any(_same_value(item, value) for item in collection)


def _same_value(left: Any, right: Any) -> bool:
    # Booleans never equal numbers (True != 1 here).
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


__all__ = [
    "ScoreResult",
    "Outcome",
    "required_question_ids",
    "score_answers",
    "missing_required",
    "resolve_next_node",
    "resolve_outcome",
    "is_filled",
    "answers_by_question",
]
