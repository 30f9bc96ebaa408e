from __future__ import annotations

from datetime import datetime
from uuid import uuid4


def generate_id(prefix: str, now: datetime) -> str:
    """Build ids like ``INC-1760864400000-3f9a1c2b7``: epoch millis plus random hex."""
    millis = int(now.timestamp() * 1000)
    return f"{prefix}-{millis}-{uuid4().hex[:9]}"
