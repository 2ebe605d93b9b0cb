from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bowlbuilder.config import Settings
from bowlbuilder.services.exceptions import RepoError
from bowlbuilder.services.store_repo import _append_line

logger = logging.getLogger(__name__)


class MetricsLogger:
    """JSONL timings for backend round trips, one object per line:

      {"ts": ..., "kind": "latency", "name": "recalc_totals",
       "duration_ms": 41.2, "corr": "<order id>", "extra": {...}}
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        settings = settings or Settings()
        self.path = os.path.join(settings.data_dir, settings.metrics_file)

    def log_latency(self, name: str, duration_ms: float, corr_id: Optional[str] = None, **extra: Any) -> None:
        entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "kind": "latency",
            "name": name,
            "duration_ms": round(float(duration_ms), 3),
        }
        if corr_id:
            entry["corr"] = corr_id
        if extra:
            entry["extra"] = extra
        try:
            _append_line(self.path, json.dumps(entry, ensure_ascii=False, separators=(",", ":")))
        except RepoError as e:
            # a lost sample never fails the ordering flow
            logger.debug("Dropped metric %s: %s", name, e)
