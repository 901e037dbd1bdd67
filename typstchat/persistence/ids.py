from __future__ import annotations

import secrets
import string
from datetime import datetime, timezone
from typing import Optional

_ALPHABET = string.ascii_lowercase + string.digits


def generate_conversation_id(now: Optional[datetime] = None) -> str:
    """Return a new conversation id such as ``2025-01-31_14-05-09_k3x9q2``.

    Ids sort lexically by creation time. Clients may compare them but should
    not parse them.
    """
    now = now or datetime.now(timezone.utc)
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(6))
    return f"{now:%Y-%m-%d}_{now:%H-%M-%S}_{suffix}"
