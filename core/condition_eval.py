from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict, Mapping

logger = logging.getLogger(__name__)

# (expression, memory view) -> bool
ConditionPolicy = Callable[[str, Mapping[str, Any]], bool]


class ConditionEvaluator:
    """Default condition policy: JSON rules over session memory.

    An expression is either a field name (true when that memory entry is
    non-empty) or a JSON rule::

        {"field": "email", "operator": "contains", "value": "@"}
        {"and": [rule, ...]}  {"or": [rule, ...]}  {"not": rule}
        [rule, ...]            # any of

    Fields are looked up by node id or node name; dotted paths descend into
    nested values.
    """

    def __init__(self):
        self.operators: Dict[str, Callable[[Any, Any], bool]] = {
            'equals': lambda f, v: f == v,
            'not_equals': lambda f, v: f != v,
            'greater_than': lambda f, v: self._compare(f, v, lambda a, b: a > b),
            'less_than': lambda f, v: self._compare(f, v, lambda a, b: a < b),
            'contains': self._contains,
            'not_contains': lambda f, v: not self._contains(f, v),
            'regex_match': self._regex_match,
            'exists': lambda f, _: f is not None,
            'not_exists': lambda f, _: f is None,
            'in_list': lambda f, v: isinstance(v, list) and f in v,
            'not_in_list': lambda f, v: not (isinstance(v, list) and f in v),
            'length_equals': lambda f, v: self._length(f, v, lambda a, b: a == b),
            'length_greater': lambda f, v: self._length(f, v, lambda a, b: a > b),
            'length_less': lambda f, v: self._length(f, v, lambda a, b: a < b),
            'is_empty': lambda f, _: self._is_empty(f),
            'is_not_empty': lambda f, _: not self._is_empty(f),
        }

    def __call__(self, expression: str, memory: Mapping[str, Any]) -> bool:
        return self.evaluate(expression, memory)

    def evaluate(self, expression: str, memory: Mapping[str, Any]) -> bool:
        if expression is None or not str(expression).strip():
            return False
        try:
            rule = self._parse(expression)
            return bool(self._evaluate_rule(rule, dict(memory)))
        except Exception as e:
            logger.error(f"Error evaluating condition {expression!r}: {e}")
            return False

    def _parse(self, expression: Any) -> Any:
        if not isinstance(expression, str):
            return expression
        text = expression.strip()
        if text[:1] in ('{', '['):
            return json.loads(text)
        if text in ('true', 'false'):
            return text == 'true'
        return {'field': text, 'operator': 'is_not_empty'}

    def _evaluate_rule(self, rule: Any, context: Dict[str, Any]) -> bool:
        if isinstance(rule, bool):
            return rule
        if isinstance(rule, list):
            return any(self._evaluate_rule(r, context) for r in rule)
        if isinstance(rule, str):
            return self._evaluate_rule(self._parse(rule), context)
        if not isinstance(rule, dict):
            return False

        if 'and' in rule:
            return all(self._evaluate_rule(r, context) for r in rule['and'])
        if 'or' in rule:
            return any(self._evaluate_rule(r, context) for r in rule['or'])
        if 'not' in rule:
            return not self._evaluate_rule(rule['not'], context)

        field = rule.get('field')
        if not field:
            return False
        operator = rule.get('operator', 'equals')
        if operator not in self.operators:
            logger.warning(f"Unknown operator: {operator}")
            return False
        return self.operators[operator](self._lookup(context, field), rule.get('value'))

    def _lookup(self, data: Dict[str, Any], path: str) -> Any:
        if path in data:
            return data[path]
        current: Any = data
        for key in path.split('.'):
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return None
        return current

    # 연산자 helpers
    def _compare(self, field_value: Any, target: Any, op: Callable[[float, float], bool]) -> bool:
        try:
            return op(float(field_value), float(target))
        except (ValueError, TypeError):
            return False

    def _length(self, field_value: Any, target: Any, op: Callable[[int, int], bool]) -> bool:
        if field_value is None:
            return False
        try:
            return op(len(field_value), int(target))
        except (ValueError, TypeError):
            return False

    def _contains(self, field_value: Any, target: Any) -> bool:
        if field_value is None:
            return False
        return str(target) in str(field_value)

    def _regex_match(self, field_value: Any, pattern: str) -> bool:
        if field_value is None:
            return False
        try:
            return bool(re.search(pattern, str(field_value)))
        except re.error:
            return False

    def _is_empty(self, field_value: Any) -> bool:
        if field_value is None:
            return True
        if isinstance(field_value, str):
            return not field_value.strip()
        if isinstance(field_value, (list, dict)):
            return len(field_value) == 0
        return False
