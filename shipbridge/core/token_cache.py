"""
Bearer token cache with single-flight refresh.

The warehouse source issues client-credentials tokens with a stated lifetime.
The cache hands out the current token until it is within the refresh margin
of expiry; then exactly one caller performs the refresh while concurrent
callers wait on the lock and reuse the fresh token.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class IssuedToken:
    """A freshly issued access token and its lifetime in seconds."""
    access_token: str
    expires_in: int


TokenFetcher = Callable[[], Awaitable[IssuedToken]]


class TokenCache:
    """
    Holds one access token and its expiry.

    Args:
        refresh_margin_seconds: refresh this long before the stated expiry
        clock: returns the current aware datetime (injectable for tests)
    """

    def __init__(
        self,
        refresh_margin_seconds: int = 300,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._margin = timedelta(seconds=refresh_margin_seconds)
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: Optional[datetime] = None
        self._lock = asyncio.Lock()
        self.refresh_count = 0

    @property
    def expires_at(self) -> Optional[datetime]:
        return self._expires_at

    def _is_fresh(self) -> bool:
        if not self._token or not self._expires_at:
            return False
        return self._clock() < self._expires_at - self._margin

    def invalidate(self) -> None:
        """Drop the cached token so the next caller refreshes."""
        self._token = None
        self._expires_at = None

    async def get_token(self, fetch: TokenFetcher) -> str:
        """Return a valid token, refreshing through `fetch` at most once per expiry."""
        if self._is_fresh():
            return self._token

        async with self._lock:
            # Another waiter may have refreshed while we were queued
            if self._is_fresh():
                return self._token

            issued = await fetch()
            self._token = issued.access_token
            self._expires_at = self._clock() + timedelta(seconds=issued.expires_in)
            self.refresh_count += 1
            logger.info(f"Access token refreshed, expires in {issued.expires_in}s")
            return self._token
