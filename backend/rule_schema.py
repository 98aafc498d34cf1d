"""
Smart Folder Rule Schema

Defines the rule document stored on smart folders: a top-level combinator
over groups, each group a combinator over leaf conditions.

    {
        "groupLogic": "and",
        "groups": [
            {"logic": "or", "conditions": [
                {"field": "group", "operator": "equals", "value": "Sports"},
                {"field": "name", "operator": "contains", "value": "ESPN"}
            ]}
        ]
    }

Pure data: evaluation lives in rule_engine.RuleEngine.
"""
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class RuleDecodeError(ValueError):
    """Raised when a serialized rule document cannot be decoded."""


class RuleOperator(str, Enum):
    """Comparison operators. String comparisons are case-insensitive."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IN = "in"
    NOT_IN = "not_in"
    IS_TRUE = "is_true"
    IS_FALSE = "is_false"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"


class RuleField(str, Enum):
    """Channel attributes a condition can test."""
    NAME = "name"
    GROUP = "group"
    COUNTRY = "country"
    LANGUAGE = "language"
    TVG_ID = "tvg_id"
    IS_FAVORITE = "is_favorite"
    IS_HIDDEN = "is_hidden"
    HEALTH_STATUS = "health_status"


class RuleLogic(str, Enum):
    AND = "and"
    OR = "or"


# Operators that compare against `values` instead of `value`
SET_OPERATORS = frozenset({RuleOperator.IN, RuleOperator.NOT_IN})
# Operators that need no comparison value at all
UNARY_OPERATORS = frozenset({
    RuleOperator.IS_TRUE, RuleOperator.IS_FALSE,
    RuleOperator.IS_EMPTY, RuleOperator.IS_NOT_EMPTY,
})


def _enum_value(enum_cls, raw, what: str):
    try:
        return enum_cls(raw)
    except ValueError:
        raise RuleDecodeError(f"Unknown {what}: {raw!r}") from None


@dataclass
class RuleCondition:
    """A single leaf test: <field> <operator> <value | values>."""
    field: RuleField
    operator: RuleOperator
    value: Optional[str] = None
    values: Optional[list] = None

    def to_dict(self) -> dict:
        result = {"field": self.field.value, "operator": self.operator.value}
        if self.value is not None:
            result["value"] = self.value
        if self.values is not None:
            result["values"] = list(self.values)
        return result

    @classmethod
    def from_dict(cls, data: dict) -> "RuleCondition":
        if isinstance(data, RuleCondition):
            return data
        if not isinstance(data, dict):
            raise RuleDecodeError(f"Condition must be an object, got {type(data).__name__}")
        if "field" not in data or "operator" not in data:
            raise RuleDecodeError("Condition requires 'field' and 'operator'")

        values = data.get("values")
        if values is not None and not isinstance(values, list):
            raise RuleDecodeError("'values' must be a list")

        value = data.get("value")
        if isinstance(value, (dict, list)):
            raise RuleDecodeError("'value' must be a scalar")

        return cls(
            field=_enum_value(RuleField, data["field"], "rule field"),
            operator=_enum_value(RuleOperator, data["operator"], "rule operator"),
            value=str(value) if value is not None else None,
            values=[str(v) for v in values] if values is not None else None,
        )

    def validate(self) -> list[str]:
        """Return a list of problems (empty if the condition is usable)."""
        errors = []
        if self.operator in SET_OPERATORS:
            if not self.values:
                errors.append(f"{self.operator.value} requires a non-empty 'values' list")
        elif self.operator not in UNARY_OPERATORS:
            if self.value is None:
                errors.append(f"{self.operator.value} requires a 'value'")
        return errors

    # Convenience constructors for common conditions

    @classmethod
    def name_contains(cls, text: str) -> "RuleCondition":
        return cls(RuleField.NAME, RuleOperator.CONTAINS, value=text)

    @classmethod
    def group_equals(cls, group: str) -> "RuleCondition":
        return cls(RuleField.GROUP, RuleOperator.EQUALS, value=group)

    @classmethod
    def country_equals(cls, country: str) -> "RuleCondition":
        return cls(RuleField.COUNTRY, RuleOperator.EQUALS, value=country)

    @classmethod
    def language_equals(cls, language: str) -> "RuleCondition":
        return cls(RuleField.LANGUAGE, RuleOperator.EQUALS, value=language)

    @classmethod
    def is_favorite(cls) -> "RuleCondition":
        return cls(RuleField.IS_FAVORITE, RuleOperator.IS_TRUE)

    @classmethod
    def is_healthy(cls) -> "RuleCondition":
        return cls(RuleField.HEALTH_STATUS, RuleOperator.IN, values=["ok", "unknown"])

    @classmethod
    def is_dead(cls) -> "RuleCondition":
        return cls(RuleField.HEALTH_STATUS, RuleOperator.EQUALS, value="dead")


@dataclass
class RuleGroup:
    """Conditions combined with one logic operator."""
    conditions: list = field(default_factory=list)
    logic: RuleLogic = RuleLogic.AND

    def to_dict(self) -> dict:
        return {
            "logic": self.logic.value,
            "conditions": [c.to_dict() for c in self.conditions],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RuleGroup":
        if isinstance(data, RuleGroup):
            return data
        if not isinstance(data, dict):
            raise RuleDecodeError(f"Group must be an object, got {type(data).__name__}")
        conditions = data.get("conditions", [])
        if not isinstance(conditions, list):
            raise RuleDecodeError("'conditions' must be a list")
        return cls(
            conditions=[RuleCondition.from_dict(c) for c in conditions],
            logic=_enum_value(RuleLogic, data.get("logic", "and"), "rule logic"),
        )


@dataclass
class FolderRules:
    """Complete rule document for a smart folder."""
    groups: list = field(default_factory=list)
    group_logic: RuleLogic = RuleLogic.AND

    @classmethod
    def all(cls, conditions: list) -> "FolderRules":
        """Single group where every condition must hold."""
        return cls(groups=[RuleGroup(conditions=list(conditions), logic=RuleLogic.AND)])

    @classmethod
    def any(cls, conditions: list) -> "FolderRules":
        """Single group where at least one condition must hold."""
        return cls(groups=[RuleGroup(conditions=list(conditions), logic=RuleLogic.OR)])

    def to_dict(self) -> dict:
        return {
            "groups": [g.to_dict() for g in self.groups],
            "groupLogic": self.group_logic.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FolderRules":
        if not isinstance(data, dict):
            raise RuleDecodeError(f"Rules must be an object, got {type(data).__name__}")
        groups = data.get("groups", [])
        if not isinstance(groups, list):
            raise RuleDecodeError("'groups' must be a list")
        return cls(
            groups=[RuleGroup.from_dict(g) for g in groups],
            group_logic=_enum_value(RuleLogic, data.get("groupLogic", "and"), "rule logic"),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, text: str) -> "FolderRules":
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as e:
            raise RuleDecodeError(f"Invalid rule JSON: {e}") from e
        return cls.from_dict(data)

    def validate(self) -> list[str]:
        errors = []
        for gi, group in enumerate(self.groups):
            for ci, condition in enumerate(group.conditions):
                errors.extend(f"groups[{gi}].conditions[{ci}]: {e}" for e in condition.validate())
        return errors
