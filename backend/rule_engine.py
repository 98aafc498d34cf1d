"""
Smart Folder Rule Engine

Evaluates FolderRules documents against a channel's evaluation context.

Absent-field polarity: a missing field disproves positive claims
(equals, contains, starts_with, ends_with, in) and trivially satisfies
their negated forms (not_equals, not_contains, not_in).
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from catalog_schema import Channel, StreamHealthStatus
from rule_schema import FolderRules, RuleCondition, RuleField, RuleGroup, RuleLogic, RuleOperator

logger = logging.getLogger(__name__)

# Best-first; a channel with one healthy mirror reports healthy
_HEALTH_PRECEDENCE = (
    StreamHealthStatus.OK,
    StreamHealthStatus.UNKNOWN,
    StreamHealthStatus.FLAKY,
)


@dataclass
class RuleEvaluationContext:
    """
    Everything a rule may look at for one channel.

    streams may be None when the caller skipped the stream lookup; health
    conditions then see "unknown".
    """
    channel: Channel
    streams: Optional[list] = None
    is_favorite: bool = False
    is_hidden: bool = False

    @property
    def best_health_status(self) -> StreamHealthStatus:
        if not self.streams:
            return StreamHealthStatus.UNKNOWN
        statuses = {s.health_status for s in self.streams}
        for status in _HEALTH_PRECEDENCE:
            if status in statuses:
                return status
        return StreamHealthStatus.DEAD


def _flag(value: bool) -> str:
    return "true" if value else "false"


# Field -> resolver; every RuleField must have an entry
FIELD_RESOLVERS: dict[RuleField, Callable[[RuleEvaluationContext], Optional[str]]] = {
    RuleField.NAME: lambda ctx: ctx.channel.name,
    RuleField.GROUP: lambda ctx: ctx.channel.group,
    RuleField.COUNTRY: lambda ctx: ctx.channel.country,
    RuleField.LANGUAGE: lambda ctx: ctx.channel.language,
    RuleField.TVG_ID: lambda ctx: ctx.channel.tvg_id,
    RuleField.IS_FAVORITE: lambda ctx: _flag(ctx.is_favorite),
    RuleField.IS_HIDDEN: lambda ctx: _flag(ctx.is_hidden),
    RuleField.HEALTH_STATUS: lambda ctx: ctx.best_health_status.value,
}


def resolve_field(field_name: RuleField, context: RuleEvaluationContext) -> Optional[str]:
    return FIELD_RESOLVERS[field_name](context)


def _lower(value: Optional[str]) -> Optional[str]:
    return value.lower() if value is not None else None


def _combine(results, logic: RuleLogic) -> bool:
    # all() of nothing is True, any() of nothing is False
    if logic == RuleLogic.AND:
        return all(results)
    return any(results)


class RuleEngine:
    """
    Stateless evaluator for smart folder rules.

    Usage:
        engine = RuleEngine()
        engine.evaluate(rules, RuleEvaluationContext(channel=ch, is_favorite=True))
    """

    def evaluate(self, rules: FolderRules, context: RuleEvaluationContext) -> bool:
        return _combine(
            (self.evaluate_group(group, context) for group in rules.groups),
            rules.group_logic,
        )

    def evaluate_group(self, group: RuleGroup, context: RuleEvaluationContext) -> bool:
        return _combine(
            (self.evaluate_condition(condition, context) for condition in group.conditions),
            group.logic,
        )

    def evaluate_condition(self, condition: RuleCondition, context: RuleEvaluationContext) -> bool:
        raw = resolve_field(condition.field, context)
        field_value = _lower(raw)
        value = _lower(condition.value)
        op = condition.operator

        if op == RuleOperator.EQUALS:
            return field_value is not None and value is not None and field_value == value
        if op == RuleOperator.NOT_EQUALS:
            return not (field_value is not None and value is not None and field_value == value)

        if op == RuleOperator.CONTAINS:
            if field_value is None or value is None:
                return False
            return value in field_value
        if op == RuleOperator.NOT_CONTAINS:
            if field_value is None or value is None:
                return True
            return value not in field_value
        if op == RuleOperator.STARTS_WITH:
            if field_value is None or value is None:
                return False
            return field_value.startswith(value)
        if op == RuleOperator.ENDS_WITH:
            if field_value is None or value is None:
                return False
            return field_value.endswith(value)

        if op == RuleOperator.IN:
            if field_value is None or condition.values is None:
                return False
            return field_value in {v.lower() for v in condition.values}
        if op == RuleOperator.NOT_IN:
            if field_value is None or condition.values is None:
                return True
            return field_value not in {v.lower() for v in condition.values}

        if op == RuleOperator.IS_TRUE:
            return raw == "true"
        if op == RuleOperator.IS_FALSE:
            return raw == "false"

        if op == RuleOperator.IS_EMPTY:
            return raw is None or not raw.strip()
        if op == RuleOperator.IS_NOT_EMPTY:
            return raw is not None and bool(raw.strip())

        logger.warning("[RULES] Unhandled operator: %s", op)
        return False

    def filter(
        self,
        channels: list,
        rules: FolderRules,
        context_provider: Callable[[Channel], RuleEvaluationContext],
    ) -> list:
        """Channels matching the rules, in input order."""
        return [ch for ch in channels if self.evaluate(rules, context_provider(ch))]
