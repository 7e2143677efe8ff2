from __future__ import annotations

import json
from typing import Any


def emit(event: str, **fields: Any) -> None:
    """Print one JSON event line to stdout."""
    print(json.dumps({"event": event, **fields}, default=str), flush=True)
