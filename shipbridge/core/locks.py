"""
Per-order lock manager.

Quote replacement and shipment creation for the same order are serialized
inside one process. Cross-process exclusion comes from the database: the
unique constraint on shipments.order_id and SELECT ... FOR UPDATE on the
order row.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Dict


class OrderLockManager:
    """
    One asyncio.Lock per order id.

    A lock is dropped as soon as no task holds or waits on it, so the
    table only ever contains orders with work in flight.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, order_id: str):
        # No await between lookup and registration: atomic on the event loop
        lock = self._locks.setdefault(order_id, asyncio.Lock())
        self._users[order_id] = self._users.get(order_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[order_id] -= 1
            if not self._users[order_id]:
                del self._users[order_id]
                del self._locks[order_id]


# Process-wide manager shared by all controller instances
order_locks = OrderLockManager()
