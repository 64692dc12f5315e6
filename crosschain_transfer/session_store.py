"""
Session storage

The state machine reads and writes sessions through a SessionStore; any
durable backend can implement the two methods.
"""

from typing import Dict, Optional, Protocol

from .models import TransferSession


class SessionStore(Protocol):
    def get(self, session_id: str) -> Optional[TransferSession]: ...

    def put(self, session_id: str, session: TransferSession): ...


class InMemorySessionStore:
    """Process-local sessions keyed by id"""

    def __init__(self):
        self._sessions: Dict[str, TransferSession] = {}

    def get(self, session_id: str) -> Optional[TransferSession]:
        return self._sessions.get(session_id)

    def put(self, session_id: str, session: TransferSession):
        self._sessions[session_id] = session

    def __len__(self):
        return len(self._sessions)
