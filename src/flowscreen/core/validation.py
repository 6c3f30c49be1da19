"""Authoring-time checks for flow definitions.

The evaluator tolerates broken flows; this pass is what keeps them from
being published in the first place.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from ..errors import FlowDefinitionError
from ..schemas.flow import (
    CONSENT_QUESTION_ID,
    QUESTION_NODE_TYPES,
    EndNode,
    FlowDefinition,
    FormNode,
    ScoringRules,
)

Severity = Literal["error", "warning"]


@dataclass(slots=True, frozen=True)
class FlowIssue:
    severity: Severity
    code: str
    message: str

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


def validate_flow(flow: FlowDefinition, rules: ScoringRules | None = None) -> list[FlowIssue]:
    issues: list[FlowIssue] = []

    if not flow.nodes:
        issues.append(FlowIssue("error", "empty_flow", "flow has no nodes"))

    node_keys: set[str] = set()
    for node in flow.nodes:
        if node.key in node_keys:
            issues.append(FlowIssue("error", "duplicate_node_key", f"node key {node.key!r} is used more than once"))
        node_keys.add(node.key)

    answer_ids: dict[str, str] = {}
    for node in flow.nodes:
        if isinstance(node, QUESTION_NODE_TYPES):
            ids = [question.id for question in node.config.questions]
        elif isinstance(node, FormNode):
            ids = [form_field.id for form_field in node.config.fields]
        else:
            continue
        for answer_id in ids:
            if answer_id == CONSENT_QUESTION_ID:
                issues.append(
                    FlowIssue("error", "reserved_id", f"{answer_id!r} in node {node.key!r} is reserved for consent")
                )
            elif answer_id in answer_ids:
                issues.append(
                    FlowIssue(
                        "error",
                        "duplicate_question_id",
                        f"{answer_id!r} appears in nodes {answer_ids[answer_id]!r} and {node.key!r}",
                    )
                )
            else:
                answer_ids[answer_id] = node.key

    sources: set[str] = set()
    for idx, edge in enumerate(flow.edges):
        sources.add(edge.from_)
        if edge.from_ not in node_keys:
            issues.append(FlowIssue("error", "unknown_edge_source", f"edge #{idx} starts at unknown node {edge.from_!r}"))
        if edge.to not in node_keys:
            issues.append(FlowIssue("error", "unknown_edge_target", f"edge #{idx} points to unknown node {edge.to!r}"))
        score_test = edge.condition.score_total if edge.condition else None
        if score_test is not None and score_test.between is not None:
            low, high = score_test.between
            if low > high:
                issues.append(FlowIssue("error", "reversed_range", f"edge #{idx} has between [{low}, {high}]"))
        if edge.condition and edge.condition.answers:
            for question_id in edge.condition.answers:
                if question_id not in answer_ids:
                    issues.append(
                        FlowIssue(
                            "warning",
                            "unknown_condition_question",
                            f"edge #{idx} tests unknown question {question_id!r}",
                        )
                    )

    for node in flow.nodes:
        if not isinstance(node, EndNode) and node.key not in sources:
            issues.append(FlowIssue("warning", "dead_end", f"node {node.key!r} has no outgoing edges"))

    if rules is not None and rules.reserve_threshold > rules.pass_threshold:
        issues.append(
            FlowIssue(
                "error",
                "threshold_order",
                f"reserve_threshold {rules.reserve_threshold} exceeds pass_threshold {rules.pass_threshold}",
            )
        )

    return issues


def ensure_valid_flow(flow: FlowDefinition, rules: ScoringRules | None = None) -> list[FlowIssue]:
    """Raise ``FlowDefinitionError`` on any error; return remaining warnings."""
    issues = validate_flow(flow, rules)
    errors = [issue for issue in issues if issue.severity == "error"]
    if errors:
        raise FlowDefinitionError(errors)
    return issues


__all__ = ["FlowIssue", "validate_flow", "ensure_valid_flow"]
