import asyncio
import logging
from typing import Tuple

from core.errors import AppError
from db.stores.blacklist_store import BlacklistStore
from db.stores.refresh_token_store import RefreshTokenStore

logger = logging.getLogger(__name__)


async def purge_expired_tokens(blacklist: BlacklistStore, refresh_tokens: RefreshTokenStore) -> Tuple[int, int]:
    """Drop expired blacklist entries and expired/revoked refresh tokens."""
    blacklisted = await blacklist.gc()
    refreshed = await refresh_tokens.gc()
    if blacklisted or refreshed:
        logger.info(f"Token cleanup removed {blacklisted} blacklist entries and {refreshed} refresh tokens")
    return blacklisted, refreshed


async def token_cleanup_loop(blacklist: BlacklistStore, refresh_tokens: RefreshTokenStore, interval_seconds: int) -> None:
    """Run ``purge_expired_tokens`` every ``interval_seconds`` until cancelled."""
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            await purge_expired_tokens(blacklist, refresh_tokens)
        except asyncio.CancelledError:
            break
        except AppError as e:
            logger.warning(f"Token cleanup error: {e.code}")
