"""Per-session history of earlier requests, fed back into later prompts."""

from collections import OrderedDict, deque
from typing import Deque, Optional, Protocol, Tuple

from ..models import ReferenceMaterial


class KnowledgeSource(Protocol):
    """Retrieves reference material for a request."""

    async def retrieve(self, text: str) -> ReferenceMaterial:
        ...


class SessionHistory:
    """Keeps the last ``max_turns`` (request, summary) pairs of each session.

    At most ``max_sessions`` sessions are remembered; the least recently used
    one is dropped first.
    """

    def __init__(self, max_turns: int = 5, max_sessions: int = 1000):
        self.max_turns = max_turns
        self.max_sessions = max_sessions
        self._sessions: "OrderedDict[str, Deque[Tuple[str, str]]]" = OrderedDict()

    def append(self, session_id: Optional[str], request: str, summary: str) -> None:
        if not session_id:
            return
        turns = self._sessions.get(session_id)
        if turns is None:
            turns = deque(maxlen=self.max_turns)
            self._sessions[session_id] = turns
        self._sessions.move_to_end(session_id)
        turns.append((request, summary))
        while len(self._sessions) > self.max_sessions:
            self._sessions.popitem(last=False)

    def render(self, session_id: Optional[str]) -> Optional[str]:
        turns = self._sessions.get(session_id) if session_id else None
        if not turns:
            return None
        return "\n".join(f"User: {request}\nResult: {summary}" for request, summary in turns)

    def __len__(self) -> int:
        return len(self._sessions)
