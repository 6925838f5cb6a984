"""Template interpolation via an ordered chain of resolvers.

A template is any value: strings may contain ``${path}`` or ``{{path}}``
expressions, while lists and mappings are resolved item by item. Each resolver
claims one shape of template; the chain tries them in order and the first to
claim wins, recursing back through the chain for nested values.

Resolution is a pure function of ``(template, context)``: a template with no
expressions comes back unchanged, and a path that does not exist yields
``None`` (or an empty string inside a larger string) instead of raising.
"""

import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from typing import Any

from ensemble_conductor.core.execution.filters import apply_filters

ResolutionContext = Mapping[str, Any]
Interpolate = Callable[[Any, ResolutionContext], Any]

_FULL_DOLLAR = re.compile(r"^\$\{([^}]*)\}$")
_FULL_HANDLEBAR = re.compile(r"^\{\{([^}]*)\}\}$")
_ANY_EXPRESSION = re.compile(r"\$\{([^}]*)\}|\{\{([^}]*)\}\}")
_SINGLE_PIPE = re.compile(r"(?<!\|)\|(?!\|)")


class InterpolationResolver(ABC):
    """One link in the resolver chain."""

    @abstractmethod
    def can_resolve(self, template: Any) -> bool:
        """Return True if this resolver handles ``template``."""

    @abstractmethod
    def resolve(
        self, template: Any, context: ResolutionContext, interpolate: Interpolate
    ) -> Any:
        """Resolve ``template``, delegating nested values to ``interpolate``."""


def _lookup(path: str, context: ResolutionContext) -> Any:
    value: Any = context
    for part in path.split("."):
        part = part.strip()
        if isinstance(value, Mapping) and part in value:
            value = value[part]
        elif isinstance(value, (list, tuple)) and part.lstrip("-").isdigit():
            index = int(part)
            if -len(value) <= index < len(value):
                value = value[index]
            else:
                return None
        else:
            return None
    return value


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


class StringResolver(InterpolationResolver):
    """Resolves ``${...}`` and ``{{...}}`` expressions inside strings.

    A string that is exactly one expression resolves to the raw value of any
    type; otherwise every expression is replaced by its string form.
    Expressions support ``a || b`` fallbacks and ``| filter`` chains.
    """

    def can_resolve(self, template: Any) -> bool:
        return isinstance(template, str) and bool(_ANY_EXPRESSION.search(template))

    def resolve(
        self, template: Any, context: ResolutionContext, interpolate: Interpolate
    ) -> Any:
        full = _FULL_DOLLAR.match(template) or _FULL_HANDLEBAR.match(template)
        if full:
            return self.evaluate(full.group(1), context)

        def replace(match: re.Match[str]) -> str:
            dollar, handlebar = match.group(1), match.group(2)
            expression = dollar if dollar is not None else handlebar
            value = self.evaluate(expression, context)
            return "" if value is None else str(value)

        return _ANY_EXPRESSION.sub(replace, template)

    def evaluate(self, expression: str, context: ResolutionContext) -> Any:
        """Evaluate a single expression body such as ``input.name | upper``."""
        expression = expression.strip()
        if not expression:
            return None

        parts = _SINGLE_PIPE.split(expression)
        value = self._evaluate_alternatives(parts[0], context)
        filters = [f.strip() for f in parts[1:] if f.strip()]
        if filters:
            value = apply_filters(value, filters)
        return value

    def _evaluate_alternatives(
        self, expression: str, context: ResolutionContext
    ) -> Any:
        value = None
        for alternative in expression.split("||"):
            value = self._evaluate_operand(alternative.strip(), context)
            if not _is_missing(value):
                return value
        return value

    def _evaluate_operand(self, operand: str, context: ResolutionContext) -> Any:
        if len(operand) >= 2 and operand[0] == operand[-1] and operand[0] in "'\"":
            return operand[1:-1]
        return _lookup(operand, context)


class ListResolver(InterpolationResolver):
    """Resolves each item of a list or tuple."""

    def can_resolve(self, template: Any) -> bool:
        return isinstance(template, (list, tuple))

    def resolve(
        self, template: Any, context: ResolutionContext, interpolate: Interpolate
    ) -> Any:
        resolved = [interpolate(item, context) for item in template]
        return tuple(resolved) if isinstance(template, tuple) else resolved


class MappingResolver(InterpolationResolver):
    """Resolves each value of a mapping."""

    def can_resolve(self, template: Any) -> bool:
        return isinstance(template, Mapping)

    def resolve(
        self, template: Any, context: ResolutionContext, interpolate: Interpolate
    ) -> Any:
        return {key: interpolate(value, context) for key, value in template.items()}


class PassthroughResolver(InterpolationResolver):
    """Returns anything else (numbers, booleans, None, plain strings) as-is."""

    def can_resolve(self, template: Any) -> bool:
        return True

    def resolve(
        self, template: Any, context: ResolutionContext, interpolate: Interpolate
    ) -> Any:
        return template


class Interpolator:
    """Runs a template through the resolver chain."""

    def __init__(self, resolvers: list[InterpolationResolver] | None = None) -> None:
        self._resolvers = resolvers or [
            StringResolver(),
            ListResolver(),
            MappingResolver(),
            PassthroughResolver(),
        ]

    def resolve(self, template: Any, context: ResolutionContext) -> Any:
        for resolver in self._resolvers:
            if resolver.can_resolve(template):
                return resolver.resolve(template, context, self.resolve)
        return template


_default_interpolator = Interpolator()


def get_interpolator() -> Interpolator:
    """Return the shared default interpolator."""
    return _default_interpolator
