# skip.py
# Skip predicates are plain functions of a RunContext. They are evaluated
# once per job spec, before any of its steps run.
from __future__ import annotations

from typing import Optional

from .model import RunContext, SkipPredicate

SKIP_CI_MARKER = "[skip ci]"


def should_skip(predicate: Optional[SkipPredicate], context: RunContext) -> bool:
    """Evaluate a skip predicate. No predicate means the job always runs."""
    if predicate is None:
        return False
    return bool(predicate(context))


def commit_message_contains(marker: str) -> SkipPredicate:
    """
    Skip when the triggering commit message contains `marker`.

    Example:
        job("rstar", ..., skip_if=commit_message_contains("[skip ci]"))
    """
    if not marker:
        raise ValueError("commit_message_contains() needs a non-empty marker")

    def predicate(ctx: RunContext) -> bool:
        return marker in (ctx.commit_message or "")

    predicate.__name__ = f"commit_message_contains({marker!r})"
    return predicate


def skip_ci() -> SkipPredicate:
    return commit_message_contains(SKIP_CI_MARKER)


def not_(predicate: SkipPredicate) -> SkipPredicate:
    def inverted(ctx: RunContext) -> bool:
        return not predicate(ctx)

    inverted.__name__ = f"not_({getattr(predicate, '__name__', 'predicate')})"
    return inverted


def any_of(*predicates: SkipPredicate) -> SkipPredicate:
    def combined(ctx: RunContext) -> bool:
        return any(p(ctx) for p in predicates)

    combined.__name__ = "any_of(" + ", ".join(getattr(p, "__name__", "predicate") for p in predicates) + ")"
    return combined


def all_of(*predicates: SkipPredicate) -> SkipPredicate:
    def combined(ctx: RunContext) -> bool:
        return all(p(ctx) for p in predicates)

    combined.__name__ = "all_of(" + ", ".join(getattr(p, "__name__", "predicate") for p in predicates) + ")"
    return combined


def describe(predicate: Optional[SkipPredicate]) -> str:
    if predicate is None:
        return "never"
    return getattr(predicate, "__name__", repr(predicate))
