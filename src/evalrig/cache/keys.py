"""Content-addressed cache keys for model calls."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Literal

from pydantic_core import to_jsonable_python

CallType = Literal["generate", "stream"]


def generate_cache_key(
    model: Any,
    params: Any,
    call_type: CallType,
    call_params: Any,
    trial_count: int | None,
) -> str:
    """Hash a model call into a cache key.

    ``trial_count`` comes from the unit context, so the same call made
    under a different trial configuration gets a different key.

    Returns:
        SHA-256 hex digest of the canonical JSON of all five fields.
    """
    cache_object = {
        "model": model,
        "params": params,
        "callType": call_type,
        "callParams": call_params,
        "trialCount": trial_count,
    }
    canonical = json.dumps(
        to_jsonable_python(cache_object, fallback=repr),
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
