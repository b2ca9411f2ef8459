# aeq_core/session_store.py

"""Lưu phiên trong bộ nhớ (dev/test). Có thể dùng `store.put` làm hook persist của kernel."""

from __future__ import annotations

import copy
import uuid
from typing import Dict, Optional

from .schema import SessionSnapshot


def new_session(session_id: Optional[str] = None) -> SessionSnapshot:
    return SessionSnapshot(id=session_id or f"sess_{uuid.uuid4().hex[:12]}")


class MemoryStore:
    def __init__(self) -> None:
        self._sessions: Dict[str, SessionSnapshot] = {}

    def get(self, session_id: str) -> Optional[SessionSnapshot]:
        s = self._sessions.get(session_id)
        return copy.deepcopy(s) if s is not None else None

    def put(self, session: SessionSnapshot) -> None:
        self._sessions[session.id] = copy.deepcopy(session)

    def create(self, session_id: Optional[str] = None) -> SessionSnapshot:
        s = new_session(session_id)
        self.put(s)
        return s

    def __len__(self) -> int:
        return len(self._sessions)
