"""Pydantic models describing screening flows: nodes, questions, edges and scoring rules."""

from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Annotated, Any, Literal, Union

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_serializer,
    model_validator,
)

CONSENT_QUESTION_ID = "consent_accepted"

def stringify_answer(value: Any) -> str:
    """Render an answer value the way it appears in a JSON document.

    Scoring maps and ``correct`` values are keyed by these strings, so
    ``True`` becomes ``"true"`` and ``5.0`` becomes ``"5"``.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join("" if item is None else stringify_answer(item) for item in value)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return str(value)


class FlowQuestion(BaseModel):
    """Screening or test question with optional scoring."""

    id: str = Field(min_length=1)
    text: str = ""
    required: bool = False
    scoring: dict[str, float] | None = None
    correct: str | None = None
    score: float | None = None

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("scoring", mode="before")
    @classmethod
    def _stringify_scoring_keys(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {stringify_answer(key): points for key, points in value.items()}
        return value

    @field_validator("correct", mode="before")
    @classmethod
    def _stringify_correct(cls, value: Any) -> Any:
        if value is None:
            return None
        return stringify_answer(value)

    @model_validator(mode="after")
    def _single_scoring_mode(self) -> "FlowQuestion":
        if self.scoring is not None and (self.correct is not None or self.score is not None):
            raise ValueError(
                f"question {self.id!r} mixes a scoring map with correct/score scoring"
            )
        return self


class FlowField(BaseModel):
    """Form field. Never scored."""

    id: str = Field(min_length=1)
    label: str = ""
    required: bool = False

    model_config = ConfigDict(extra="forbid", frozen=True)


class _NodeConfig(BaseModel):
    # Presentational keys (titles, body copy) ride along untouched.
    model_config = ConfigDict(extra="allow", frozen=True)


class EmptyConfig(_NodeConfig):
    pass


class QuestionsConfig(_NodeConfig):
    questions: tuple[FlowQuestion, ...] = ()


class FieldsConfig(_NodeConfig):
    fields: tuple[FlowField, ...] = ()


class ConsentConfig(_NodeConfig):
    required: bool = False


class _FlowNodeBase(BaseModel):
    key: str = Field(min_length=1)

    model_config = ConfigDict(extra="forbid", frozen=True)


class IntroNode(_FlowNodeBase):
    type: Literal["intro"] = "intro"
    config: EmptyConfig = Field(default_factory=EmptyConfig)


class ScreeningNode(_FlowNodeBase):
    type: Literal["screening"] = "screening"
    config: QuestionsConfig = Field(default_factory=QuestionsConfig)


class TestNode(_FlowNodeBase):
    __test__ = False  # not a pytest class

    type: Literal["test"] = "test"
    config: QuestionsConfig = Field(default_factory=QuestionsConfig)


class FormNode(_FlowNodeBase):
    type: Literal["form"] = "form"
    config: FieldsConfig = Field(default_factory=FieldsConfig)


class ConsentNode(_FlowNodeBase):
    type: Literal["consent"] = "consent"
    config: ConsentConfig = Field(default_factory=ConsentConfig)


class EndNode(_FlowNodeBase):
    type: Literal["end"] = "end"
    config: EmptyConfig = Field(default_factory=EmptyConfig)


FlowNode = Annotated[
    Union[IntroNode, ScreeningNode, TestNode, FormNode, ConsentNode, EndNode],
    Field(discriminator="type"),
]

QUESTION_NODE_TYPES = (ScreeningNode, TestNode)


class ScoreRange(BaseModel):
    """Cumulative score test; every bound that is set must hold."""

    gte: float | None = Field(default=None, alias=">=")
    gt: float | None = Field(default=None, alias=">")
    lte: float | None = Field(default=None, alias="<=")
    lt: float | None = Field(default=None, alias="<")
    between: tuple[float, float] | None = None

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)


class AnswerMembership(BaseModel):
    """``{"in": [...]}`` expectation on a single answer."""

    values: tuple[Any, ...] = Field(alias="in")

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    @model_serializer
    def _serialize(self) -> dict[str, Any]:
        return {"in": list(self.values)}


class EdgeCondition(BaseModel):
    """Conjunction of an optional score test and optional answer tests."""

    score_total: ScoreRange | None = None
    answers: dict[str, Any] | None = None

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("answers", mode="before")
    @classmethod
    def _parse_membership(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        parsed: dict[str, Any] = {}
        for question_id, expected in value.items():
            if isinstance(expected, dict) and set(expected) == {"in"}:
                expected = AnswerMembership.model_validate(expected)
            parsed[question_id] = expected
        return parsed


class FlowEdge(BaseModel):
    """Directed, optionally conditional transition between two nodes."""

    from_: str = Field(alias="from", min_length=1)
    to: str = Field(min_length=1)
    condition: EdgeCondition | None = None
    priority: int | float = 0

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    @field_validator("priority", mode="before")
    @classmethod
    def _default_priority(cls, value: Any) -> Any:
        return 0 if value is None else value


class FlowDefinition(BaseModel):
    """Directed graph of screening steps for a job."""

    nodes: tuple[FlowNode, ...] = ()
    edges: tuple[FlowEdge, ...] = ()

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("edges", mode="before")
    @classmethod
    def _missing_edges(cls, value: Any) -> Any:
        return () if value is None else value

    def node(self, key: str | None) -> FlowNode | None:
        if key is None:
            return None
        for node in self.nodes:
            if node.key == key:
                return node
        return None

    def node_index(self, key: str) -> int | None:
        for idx, node in enumerate(self.nodes):
            if node.key == key:
                return idx
        return None

    def to_document(self) -> dict[str, Any]:
        """Return the JSON-ready document form using wire key names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ScoringRules(BaseModel):
    """Thresholds classifying a final score into pass/reserve/reject."""

    pass_threshold: float = 70
    reserve_threshold: float = 55

    model_config = ConfigDict(extra="ignore", frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {key: item for key, item in value.items() if item is not None}
        return value


def default_flow_definition() -> FlowDefinition:
    """Flow used when a job is published without a custom definition."""
    return FlowDefinition.model_validate(
        {
            "nodes": [
                {"key": "intro", "type": "intro", "config": {}},
                {
                    "key": "screening",
                    "type": "screening",
                    "config": {
                        "questions": [
                            {
                                "id": "q_city",
                                "text": "Your city / time zone?",
                                "required": True,
                                "scoring": {"MSK": 5, "UTC+3": 5, "UTC+1": 3, "Other": 1},
                            }
                        ]
                    },
                },
                {
                    "key": "form",
                    "type": "form",
                    "config": {
                        "fields": [
                            {"id": "full_name", "label": "Full name", "required": True},
                            {"id": "phone", "label": "Phone", "required": True},
                            {"id": "email", "label": "Email", "required": False},
                        ]
                    },
                },
                {"key": "consent", "type": "consent", "config": {"required": True}},
                {"key": "end_pass", "type": "end", "config": {}},
                {"key": "end_reserve", "type": "end", "config": {}},
                {"key": "end_reject", "type": "end", "config": {}},
            ],
            "edges": [
                {"from": "intro", "to": "screening"},
                {"from": "screening", "to": "form"},
                {"from": "form", "to": "consent"},
                {
                    "from": "consent",
                    "to": "end_pass",
                    "condition": {"score_total": {">=": 70}},
                    "priority": 10,
                },
                {
                    "from": "consent",
                    "to": "end_reserve",
                    "condition": {"score_total": {">=": 55, "<": 70}},
                    "priority": 5,
                },
                {
                    "from": "consent",
                    "to": "end_reject",
                    "condition": {"score_total": {"<": 55}},
                    "priority": 0,
                },
            ],
        }
    )


def default_scoring_rules() -> ScoringRules:
    return ScoringRules()


def load_flow_document(path: str | Path) -> tuple[FlowDefinition, ScoringRules]:
    """Load a flow file (YAML or JSON).

    The document is either a bare flow (``nodes``/``edges``) or a mapping
    with ``flow`` and optional ``scoring_rules`` keys.
    """
    path = Path(path)
    with path.open("r", encoding="utf-8") as handle:
        if path.suffix.lower() == ".json":
            raw = json.load(handle)
        else:
            raw = yaml.safe_load(handle)
    if not isinstance(raw, dict):
        raise ValueError(f"Flow document must be a mapping: {path}")
    if "flow" in raw:
        flow = FlowDefinition.model_validate(raw["flow"])
        rules = ScoringRules.model_validate(raw.get("scoring_rules") or {})
    else:
        flow = FlowDefinition.model_validate(raw)
        rules = ScoringRules()
    return flow, rules


__all__ = [
    "CONSENT_QUESTION_ID",
    "FlowQuestion",
    "FlowField",
    "EmptyConfig",
    "QuestionsConfig",
    "FieldsConfig",
    "ConsentConfig",
    "IntroNode",
    "ScreeningNode",
    "TestNode",
    "FormNode",
    "ConsentNode",
    "EndNode",
    "FlowNode",
    "QUESTION_NODE_TYPES",
    "ScoreRange",
    "AnswerMembership",
    "EdgeCondition",
    "FlowEdge",
    "FlowDefinition",
    "ScoringRules",
    "default_flow_definition",
    "default_scoring_rules",
    "load_flow_document",
    "stringify_answer",
]
