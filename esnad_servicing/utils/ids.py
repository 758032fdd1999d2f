"""Short prefixed identifiers for finances, goals and notices"""

import uuid


def generate_aid(prefix: str) -> str:
    """e.g. generate_aid("f") -> "f-3b1c9e0a7d42" """
    return f"{prefix}-{uuid.uuid4().hex[:12]}"
