"""Named response checks and the ``status == 200`` expression syntax."""

from __future__ import annotations

import operator
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from stampede._internal.errors import ConfigError

if TYPE_CHECKING:
    from collections.abc import Callable

    from stampede.engine.executor import HttpResponse

_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<=": operator.le,
    ">=": operator.ge,
    "<": operator.lt,
    ">": operator.gt,
}

_EXPRESSION = re.compile(
    r"^\s*(?P<field>status|latency_ms)\s*(?P<op>==|!=|<=|>=|<|>)\s*(?P<value>\d+(?:\.\d+)?)\s*$"
)


@dataclass(frozen=True)
class Check:
    """A named boolean predicate evaluated against every response.

    The predicate may return False or raise ``CheckFailure`` to fail the
    check; any other exception marks the check as errored.

    Attributes:
        name: Label used in the summary, e.g. ``"status 200"``.
        predicate: Callable receiving an ``HttpResponse``.
    """

    name: str
    predicate: Callable[[HttpResponse], bool]


def parse_check(expression: str, name: str | None = None) -> Check:
    """Build a Check from ``<field> <op> <number>``.

    Supported fields are ``status`` and ``latency_ms``; operators are
    ``== != < <= > >=``.

    Args:
        expression: e.g. ``"status == 200"`` or ``"latency_ms < 500"``.
        name: Check name. Defaults to the normalized expression.

    Raises:
        ConfigError: If the expression does not parse.
    """
    match = _EXPRESSION.match(expression)
    if match is None:
        msg = (
            f"Invalid check expression: {expression!r} "
            "(expected e.g. 'status == 200' or 'latency_ms < 500')"
        )
        raise ConfigError(msg)

    field_name = match.group("field")
    op_symbol = match.group("op")
    compare = _OPERATORS[op_symbol]
    expected = float(match.group("value"))

    def _predicate(response: HttpResponse) -> bool:
        actual = response.status if field_name == "status" else response.latency_ms
        return compare(float(actual), expected)

    label = name or f"{field_name} {op_symbol} {match.group('value')}"
    return Check(name=label, predicate=_predicate)


def status_is(code: int) -> Check:
    """Shorthand for the common ``status <code>`` check."""
    return Check(name=f"status {code}", predicate=lambda r: r.status == code)


def build_checks(raw_checks: object) -> tuple[Check, ...]:
    """Normalize user-supplied checks into a tuple of unique-named Checks.

    Accepts Check instances, expression strings, or a mapping of
    ``name -> expression``.

    Raises:
        ConfigError: On malformed entries or duplicate names.
    """
    checks: list[Check] = []
    if raw_checks is None:
        return ()
    if isinstance(raw_checks, dict):
        for check_name, expr in raw_checks.items():
            if not isinstance(expr, str):
                msg = f"checks[{check_name!r}] must be an expression string"
                raise ConfigError(msg)
            checks.append(parse_check(expr, name=str(check_name)))
    elif isinstance(raw_checks, list | tuple):
        for i, item in enumerate(raw_checks):
            if isinstance(item, Check):
                checks.append(item)
            elif isinstance(item, str):
                checks.append(parse_check(item))
            else:
                msg = f"checks[{i}] must be a Check or an expression string, got {item!r}"
                raise ConfigError(msg)
    else:
        msg = f"checks must be a list or mapping, got {type(raw_checks).__name__}"
        raise ConfigError(msg)

    seen: set[str] = set()
    for check in checks:
        if check.name in seen:
            msg = f"Duplicate check name: {check.name!r}"
            raise ConfigError(msg)
        seen.add(check.name)
    return tuple(checks)
