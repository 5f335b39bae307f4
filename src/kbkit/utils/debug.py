"""Low-level tracing for kbkit's filesystem layer.

The backup, atomic-write and manifest helpers call ``debug()`` for
step-by-step tracing that is too noisy for the structlog events emitted by
the engine. Output goes to stderr so it never mixes with data written to
stdout.

Usage:
    from kbkit.utils.debug import debug

    debug("Captured snapshot", path=path, existed_before=True)
    # [DEBUG] Captured snapshot path=/kb/a.md existed_before=True

Environment:
    KBKIT_DEBUG: Set to '1', 'true', 'yes' (case-insensitive) to enable
                 tracing. Any other value or unset disables it.
"""

import os
import sys
from typing import Any

# Read once at import time
_DEBUG_ENABLED = os.environ.get("KBKIT_DEBUG", "").lower() in (
    "1",
    "true",
    "yes",
)


def debug(msg: Any, **fields: Any) -> None:
    """Write a trace line to stderr if KBKIT_DEBUG is enabled.

    Args:
        msg: Message; converted to string
        **fields: Context appended as ``key=value`` pairs, in call order
    """
    if not _DEBUG_ENABLED:
        return
    line = f"[DEBUG] {msg}"
    if fields:
        line += " " + " ".join(f"{key}={value}" for key, value in fields.items())
    print(line, file=sys.stderr)
