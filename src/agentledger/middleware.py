"""
Audit middleware: wrap an agent action so every call leaves an on-chain
trail.

Usage:
    from agentledger.middleware import audited

    @audited(ledger, "trade")
    async def execute_trade(asset: str, amount: float) -> dict:
        ...

Each call logs ``pre:trade`` before running and ``post:trade`` afterwards.
The post record carries ``ok``, the exception type name on failure, and the
pre record's signature so the two can be paired. Ledger failures are logged
and ignored; the wrapped action always runs and its exceptions propagate.
"""
from __future__ import annotations

import inspect
import logging
from functools import wraps
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from agentledger.errors import AgentLedgerError
from agentledger.ledger import AgentLedger, LogResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Keep pre/post memos well under the size ceiling.
MAX_ARG_CHARS = 64


def _describe_args(args: tuple, kwargs: Dict[str, Any]) -> Dict[str, Any]:
    def short(value: Any) -> str:
        text = repr(value)
        return text if len(text) <= MAX_ARG_CHARS else text[: MAX_ARG_CHARS - 3] + "..."

    described: Dict[str, Any] = {}
    if args:
        described["args"] = [short(a) for a in args]
    if kwargs:
        described["kwargs"] = {k: short(v) for k, v in kwargs.items()}
    return described


async def _safe_log(ledger: AgentLedger, action: str, data: Dict[str, Any]) -> Optional[LogResult]:
    try:
        result = await ledger.log(action, data)
    except (AgentLedgerError, TypeError, ValueError) as e:
        logger.warning("audit record %r not written: %s", action, e)
        return None
    if not result.success:
        logger.warning("audit record %r not written: %s", action, result.error)
    return result


def audited(
    ledger: AgentLedger,
    action: Optional[str] = None,
    *,
    include_args: bool = False,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorate an async callable with pre/post audit records.

    Args:
        ledger: ledger to write to
        action: action name (defaults to the function name)
        include_args: add truncated reprs of the call arguments to the
            pre record
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"audited() needs an async function, got {func!r}")
        name = action or func.__name__

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            pre_data = _describe_args(args, kwargs) if include_args else {}
            pre = await _safe_log(ledger, f"pre:{name}", pre_data)
            post_data: Dict[str, Any] = {
                "pre": pre.signature if pre is not None and pre.success else None,
            }
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                post_data.update(ok=False, error=type(e).__name__)
                await _safe_log(ledger, f"post:{name}", post_data)
                raise
            post_data["ok"] = True
            await _safe_log(ledger, f"post:{name}", post_data)
            return result

        return wrapper

    return decorator


__all__ = [
    "audited",
]
