from typing import Deque, Dict, List, Any
from collections import deque
import asyncio
from datetime import datetime

import structlog

logger = structlog.get_logger(__name__)


class UsageLedger:
    """Per-user credit ledger reconciled with usage reported by peer nodes

    Balances and per-user usage totals are kept for the life of the
    process. Only the most recent max_entries reconciliations are retained
    for inspection.
    """

    def __init__(self, max_entries: int = 1000):
        self.balances: Dict[str, float] = {}
        self.usage: Dict[str, float] = {}
        self.entries: Deque[Dict[str, Any]] = deque(maxlen=max_entries)
        self._lock = asyncio.Lock()

    async def set_balance(self, user_id: str, credits: float):
        async with self._lock:
            self.balances[user_id] = credits

    async def get_balance(self, user_id: str) -> float:
        async with self._lock:
            return self.balances.get(user_id, 0.0)

    async def reconcile(self, user_id: str, credits_used: float, node_slug: str, reference: str = "") -> float:
        """Debit credits consumed on a peer node and return the new balance"""

        async with self._lock:
            balance = self.balances.get(user_id, 0.0) - credits_used
            self.balances[user_id] = balance
            self.usage[user_id] = self.usage.get(user_id, 0.0) + credits_used
            self.entries.append({
                "user_id": user_id,
                "credits": credits_used,
                "node": node_slug,
                "reference": reference,
                "recorded_at": datetime.utcnow().isoformat()
            })

        logger.info("Usage reconciled", user_id=user_id, node=node_slug, credits_used=credits_used, balance=balance)
        return balance

    async def get_usage(self, user_id: str) -> float:
        async with self._lock:
            return self.usage.get(user_id, 0.0)

    async def recent_entries(self, user_id: str) -> List[Dict[str, Any]]:
        """Retained reconciliations for one user, oldest first"""

        async with self._lock:
            return [dict(e) for e in self.entries if e["user_id"] == user_id]
