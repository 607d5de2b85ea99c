from __future__ import annotations

import json
from typing import Any


def json_safe(value: Any) -> Any:
    """Normalise a value to what a JSON column stores and reads back."""
    return json.loads(json.dumps(value, default=str))
