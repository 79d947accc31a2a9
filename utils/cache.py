"""
Lightweight hashing helpers.

- Stable fingerprint helper (lru_cache) for repeated keys.
- Deterministic configuration identifiers for the candidate pool.
"""

import json
from functools import lru_cache
from hashlib import sha256
from typing import Any, Dict

import numpy as np


@lru_cache(maxsize=256)
def fingerprint(key: str) -> str:
    """
    Deterministically hash a string key (cached to avoid repeated hashing).
    """
    return sha256(key.encode("utf-8")).hexdigest()


class NumpyEncoder(json.JSONEncoder):
    """Handles serialization of NumPy types to JSON."""
    def default(self, obj):
        if isinstance(obj, np.integer):
            return int(obj)
        elif isinstance(obj, np.floating):
            return float(obj)
        elif isinstance(obj, np.bool_):
            return bool(obj)
        elif isinstance(obj, np.ndarray):
            return obj.tolist()
        return json.JSONEncoder.default(self, obj)


def config_signature(params: Dict[str, Any]) -> str:
    """Canonical JSON form of a resolved parameter mapping."""
    return json.dumps(params, sort_keys=True, cls=NumpyEncoder)


def config_hash(params: Dict[str, Any], length: int = 10) -> str:
    """Short deterministic id for a resolved parameter mapping."""
    return fingerprint(config_signature(params))[:length]
