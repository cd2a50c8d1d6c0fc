"""Ordered fallback over named strategies that return tagged results."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, List, Sequence, TypeVar, Union

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    source: str = ""


@dataclass(frozen=True)
class Err:
    reason: str
    source: str = ""


Result = Union[Ok[Any], Err]


@dataclass(frozen=True)
class Strategy:
    name: str
    run: Callable[[], Result]


def first_ok(strategies: Sequence[Strategy]) -> Result:
    """
    Try each strategy in order and return the first Ok, tagged with the
    strategy's name. A strategy that raises counts as an Err. When every
    strategy fails, the returned Err carries all of their reasons.
    """
    reasons: List[str] = []
    for strategy in strategies:
        try:
            outcome = strategy.run()
        except Exception as exc:
            outcome = Err(str(exc) or exc.__class__.__name__)

        if isinstance(outcome, Ok):
            return Ok(outcome.value, source=strategy.name)

        reasons.append(f"{strategy.name}: {outcome.reason}")
        logger.debug("Strategy %s failed: %s", strategy.name, outcome.reason)

    if not reasons:
        return Err("no strategies to try")
    return Err("; ".join(reasons), source=strategies[-1].name)
