from __future__ import annotations

import logging
import uuid
from typing import Dict, Optional

from .session import BowlSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """In-process map of live bowl-building sessions, keyed by an opaque id."""

    def __init__(self) -> None:
        self._sessions: Dict[str, BowlSession] = {}

    def add(self, session: BowlSession) -> str:
        sid = uuid.uuid4().hex
        self._sessions[sid] = session
        logger.debug("Opened session %s for user %s", sid, session.user_id)
        return sid

    def get(self, sid: str) -> Optional[BowlSession]:
        return self._sessions.get(sid)

    def close(self, sid: str) -> bool:
        session = self._sessions.pop(sid, None)
        if session is None:
            return False
        session.close()
        logger.debug("Closed session %s", sid)
        return True

    def close_all(self) -> None:
        for sid in list(self._sessions):
            self.close(sid)

    def __len__(self) -> int:
        return len(self._sessions)
