"""
Maintenance - Periodic sweeps of expired rows and stuck billing events.

Correctness never depends on these sweeps: expired cache entries are misses
and expired invites are rejected at read time. Sweeps only reclaim storage
and retry billing events whose transition failed.
"""

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from governance.models.domain import SweepResult
from governance.services.billing_events import BillingEventLedger
from governance.services.cache import ResponseCache
from governance.services.invites import InviteService

logger = get_logger(__name__)


async def sweep_expired(session: AsyncSession) -> SweepResult:
    """Purge expired cache entries and stale invites."""
    cache_entries = await ResponseCache(session).purge_expired()
    invites = await InviteService(session).purge_stale_invites()

    result = SweepResult(cache_entries=cache_entries, invites=invites)
    logger.info("sweep_completed", cache_entries=cache_entries, invites=invites)
    return result


async def retry_billing_events(session: AsyncSession, limit: int = 100) -> int:
    """Re-apply billing events left unprocessed by a failed transition."""
    applied = await BillingEventLedger(session).process_pending(limit=limit)
    logger.info("billing_retry_completed", applied=applied)
    return applied
