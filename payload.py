import json
import random
from typing import Any, Dict

PROP_KEYS = 4
PROP_DRAWS = 3
PROP_MAX_VALUE = 100


def generate_payload(rng: Any = random) -> Dict[str, Any]:
    """Build one synthetic message body.

    Draws ``PROP_DRAWS`` ``propN`` keys independently, so two draws may land on
    the same key and the later value wins. ``rng`` only needs ``randrange``.
    """
    payload: Dict[str, Any] = {"foo": "bar"}
    for _ in range(PROP_DRAWS):
        key = f"prop{rng.randrange(PROP_KEYS)}"
        payload[key] = rng.randrange(PROP_MAX_VALUE)
    return payload


def encode_payload(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")
