"""
Append-only request log: one JSON line per inbound webhook, one file per destination.

Never read back by the relay. A failed write is logged and dropped; it must not
change the HTTP response.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from relay.logging_setup import get_logger

log = get_logger()


def make_entry(payload: Any) -> Dict[str, Any]:
    return {"timestamp": datetime.now(timezone.utc).isoformat(), "payload": payload}


def append_log(path: Path | str, payload: Any) -> bool:
    """Returns True when the line was written."""
    path = Path(path)
    try:
        line = json.dumps(make_entry(payload), default=str, ensure_ascii=False)
        path.parent.mkdir(parents=True, exist_ok=True)
        # single write() per entry so concurrent appends don't interleave mid-line
        with open(path, "a", encoding="utf-8") as f:
            f.write(line + "\n")
    except (OSError, TypeError, ValueError) as e:
        log.warning("request_log_failed", file=str(path), err=str(e))
        return False
    log.debug("request_logged", file=str(path))
    return True
