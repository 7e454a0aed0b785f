from typing import Dict, List, Any
from datetime import datetime
import asyncio
from collections import defaultdict


class RuntimeMemory:
    """Conversation history for active sessions"""

    def __init__(self, max_messages: int = 100):
        self.conversations: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self.turn_counts: Dict[str, int] = defaultdict(int)
        self.max_messages = max_messages
        self._lock = asyncio.Lock()

    async def add_to_conversation(self, session_id: str, message: Dict[str, Any]):
        """Add a message to conversation history"""

        async with self._lock:
            entry = dict(message)
            entry.setdefault("timestamp", datetime.utcnow().isoformat())

            self.conversations[session_id].append(entry)
            self.turn_counts[session_id] += 1

            if len(self.conversations[session_id]) > self.max_messages:
                self.conversations[session_id] = self.conversations[session_id][-self.max_messages:]

    async def get_conversation_history(self, session_id: str) -> List[Dict[str, Any]]:
        """Retained messages, oldest first"""

        async with self._lock:
            return list(self.conversations.get(session_id, []))

    async def turn_count(self, session_id: str) -> int:
        """Messages ever added to the session, including trimmed ones"""

        async with self._lock:
            return self.turn_counts.get(session_id, 0)

    async def get_turns_since(self, session_id: str, index: int) -> List[Dict[str, Any]]:
        """Messages added at or after an absolute turn index"""

        async with self._lock:
            history = self.conversations.get(session_id, [])
            offset = self.turn_counts.get(session_id, 0) - len(history)
            return list(history[max(index - offset, 0):])

    async def clear_session(self, session_id: str):
        """Clear all data for a session"""

        async with self._lock:
            self.conversations.pop(session_id, None)
            self.turn_counts.pop(session_id, None)
