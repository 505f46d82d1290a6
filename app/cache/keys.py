"""Query cache key builders.

Keys look like ``tasks:<identity>:<kind>`` and, in strict mode, end with a
digest of the query parameters: ``tasks:<identity>:<kind>:<digest>``. The
identity comes before the kind so every entry of one user shares a prefix.
"""

import hashlib
import json
from enum import Enum
from typing import Any, Mapping

CACHE_KEY_SEP = ":"
CACHE_PREFIX_TASKS = "tasks"


class QueryKind(str, Enum):
    LIST_ALL = "list-all"
    LIST_BY_STATUS = "list-by-status"
    LIST_BY_PRIORITY = "list-by-priority"
    SEARCH_BY_TITLE = "search-by-title"


class KeyMode(str, Enum):
    STRICT = "strict"
    # kind + identity only; different filter values for one kind share an entry
    LEGACY = "legacy"


def _validate_key_component(value: str, name: str) -> None:
    if not value:
        raise ValueError(f"Cache key component {name!r} must not be empty")
    if CACHE_KEY_SEP in value:
        raise ValueError(
            f"Cache key component {name!r} must not contain separator {CACHE_KEY_SEP!r}"
        )


def _params_digest(params: Mapping[str, Any]) -> str:
    canonical = json.dumps(dict(params), sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:32]


def identity_prefix(identity: str) -> str:
    """Prefix shared by every query key of one identity."""
    _validate_key_component(identity, "identity")
    return f"{CACHE_PREFIX_TASKS}{CACHE_KEY_SEP}{identity}{CACHE_KEY_SEP}"


def query_key(
    kind: QueryKind,
    identity: str,
    params: Mapping[str, Any] | None = None,
    mode: KeyMode | str = KeyMode.STRICT,
) -> str:
    key = f"{identity_prefix(identity)}{QueryKind(kind).value}"
    if KeyMode(mode) is KeyMode.LEGACY or not params:
        return key
    return f"{key}{CACHE_KEY_SEP}{_params_digest(params)}"
