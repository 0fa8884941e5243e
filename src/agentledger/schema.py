"""
Memo schema registry and record validation.

A record is valid only if every check passes; there is no partial credit.
Validation looks at the decoded object alone. It never considers which
wallet signed the transaction: the ``agent`` field is advisory metadata
that any wallet can claim.

v0: "1" is the only version.
"""
from __future__ import annotations

from typing import Any, FrozenSet, List, Mapping

# ---------------------------------------------------------------------------
# Version registry
# ---------------------------------------------------------------------------

MEMO_VERSION = "1"

# Required fields for a record of MEMO_VERSION.
REQUIRED_FIELDS: FrozenSet[str] = frozenset({"v", "agent", "action", "ts"})

KNOWN_VERSIONS: FrozenSet[str] = frozenset({MEMO_VERSION})


def memo_errors(candidate: Any) -> List[str]:
    """Validate a decoded memo candidate.

    Returns a list of error messages (empty = valid).
    """
    if not isinstance(candidate, Mapping):
        return [f"Memo is not an object: {type(candidate).__name__}"]

    errors: List[str] = []
    for field in sorted(REQUIRED_FIELDS):
        if field not in candidate:
            errors.append(f"Missing required field: {field}")
    if errors:
        return errors

    version = candidate["v"]
    if not isinstance(version, str) or version not in KNOWN_VERSIONS:
        errors.append(f"Unsupported memo version: {version!r}")

    agent = candidate["agent"]
    if not isinstance(agent, str) or not agent:
        errors.append("Field 'agent' must be a non-empty string")

    if not isinstance(candidate["action"], str):
        errors.append("Field 'action' must be a string")

    ts = candidate["ts"]
    # bool is an int subclass
    if not isinstance(ts, int) or isinstance(ts, bool):
        errors.append("Field 'ts' must be an integer (Unix seconds)")

    if "data" in candidate and not isinstance(candidate["data"], Mapping):
        errors.append("Field 'data' must be an object")

    return errors


def is_valid_memo(candidate: Any) -> bool:
    """True if ``candidate`` is a well-formed memo of the supported version."""
    return not memo_errors(candidate)


__all__ = [
    "MEMO_VERSION",
    "REQUIRED_FIELDS",
    "KNOWN_VERSIONS",
    "memo_errors",
    "is_valid_memo",
]
