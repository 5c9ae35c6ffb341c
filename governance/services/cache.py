"""
Response Cache - Tenant-scoped AI response cache keyed by request fingerprint.

NO DICTIONARIES - Entries are returned as CacheEntryData.

Semantics:
- Entries are isolated per tenant; the same key in two tenants never collides.
- An entry with now >= expires_at is a miss and is evicted on read.
- Writes are upserts on (tenant_id, cache_key); the last writer wins.
- Concurrent misses for the same (tenant, key) within this process are
  collapsed by SingleFlight so the paid call runs once.
"""

import hashlib
import json
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from governance.config import settings
from governance.db.models import CacheEntry
from governance.models.domain import CacheEntryData, CacheStats, ComputedResponse
from governance.observability.metrics import metrics
from governance.services.single_flight import SingleFlight, single_flight

logger = get_logger(__name__)

# Matches ai_cache.cache_key VARCHAR(128); fingerprints are 64 hex chars
MAX_CACHE_KEY_LENGTH = 128


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _normalize(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    return value


def fingerprint(request: Any) -> str:
    """
    SHA-256 hex digest of the canonical JSON form of a request.

    Keys are sorted, separators are compact and string values are stripped,
    so semantically identical requests map to the same key.
    """
    canonical = json.dumps(
        _normalize(request),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def entry_to_domain(entry: CacheEntry) -> CacheEntryData:
    """Convert ORM cache entry to domain model."""
    return CacheEntryData(
        tenant_id=entry.tenant_id,
        cache_key=entry.cache_key,
        response_data=entry.response_data,
        model_used=entry.model_used,
        tokens_used=entry.tokens_used,
        cost_usd=entry.cost_usd,
        ttl_seconds=entry.ttl_seconds,
        created_at=entry.created_at,
        expires_at=entry.expires_at,
    )


class ResponseCache:
    """
    AI response cache backed by PostgreSQL.

    Usage:
        cache = ResponseCache(session)
        key = fingerprint({"prompt": prompt, "preferences": prefs})
        entry = await cache.get_or_compute(tenant_id, key, call_model)
    """

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = _utc_now,
        flights: SingleFlight = single_flight,
    ) -> None:
        self.session = session
        self._clock = clock
        self.flights = flights

    async def get(self, tenant_id: UUID, cache_key: str) -> CacheEntryData | None:
        """Return the live entry for (tenant_id, cache_key), or None on miss."""
        entry = await self._find_entry(tenant_id, cache_key)
        if entry is None:
            metrics.record_cache_lookup(hit=False)
            return None

        now = self._clock()
        if now >= entry.expires_at:
            await self._evict(entry.id, now)
            metrics.record_cache_lookup(hit=False)
            logger.debug("cache_entry_expired", tenant_id=str(tenant_id), cache_key=cache_key)
            return None

        metrics.record_cache_lookup(hit=True)
        return entry_to_domain(entry)

    async def put(
        self,
        tenant_id: UUID,
        cache_key: str,
        response_data: Any,
        model_used: str,
        tokens_used: int = 0,
        cost_usd: Decimal = Decimal("0"),
        ttl_seconds: int | None = None,
    ) -> CacheEntryData:
        """
        Store a response, replacing any existing entry for the key.

        Raises:
            ValueError: Empty or overlong key, non-positive or oversized TTL, negative
                tokens or cost
        """
        ttl = settings.cache_default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if not cache_key:
            raise ValueError("cache_key cannot be empty")
        if len(cache_key) > MAX_CACHE_KEY_LENGTH:
            raise ValueError(f"cache_key longer than {MAX_CACHE_KEY_LENGTH} characters")
        if ttl <= 0:
            raise ValueError(f"ttl_seconds must be positive: {ttl}")
        if ttl > settings.cache_max_ttl_seconds:
            raise ValueError(
                f"ttl_seconds {ttl} exceeds maximum {settings.cache_max_ttl_seconds}"
            )
        if tokens_used < 0 or cost_usd < 0:
            raise ValueError("tokens_used and cost_usd cannot be negative")

        now = self._clock()
        expires_at = now + timedelta(seconds=ttl)
        cost = Decimal(cost_usd)

        stmt = pg_insert(CacheEntry).values(
            id=uuid4(),
            tenant_id=tenant_id,
            cache_key=cache_key,
            response_data=response_data,
            model_used=model_used,
            tokens_used=tokens_used,
            cost_usd=cost,
            ttl_seconds=ttl,
            created_at=now,
            expires_at=expires_at,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_cache_tenant_key",
            set_={
                "response_data": stmt.excluded.response_data,
                "model_used": stmt.excluded.model_used,
                "tokens_used": stmt.excluded.tokens_used,
                "cost_usd": stmt.excluded.cost_usd,
                "ttl_seconds": stmt.excluded.ttl_seconds,
                "created_at": stmt.excluded.created_at,
                "expires_at": stmt.excluded.expires_at,
            },
        )
        await self.session.execute(stmt)
        await self.session.commit()

        metrics.cache_writes_total.inc()
        logger.debug(
            "cache_entry_written",
            tenant_id=str(tenant_id),
            cache_key=cache_key,
            ttl_seconds=ttl,
        )

        return CacheEntryData(
            tenant_id=tenant_id,
            cache_key=cache_key,
            response_data=response_data,
            model_used=model_used,
            tokens_used=tokens_used,
            cost_usd=cost,
            ttl_seconds=ttl,
            created_at=now,
            expires_at=expires_at,
        )

    async def get_or_compute(
        self,
        tenant_id: UUID,
        cache_key: str,
        compute: Callable[[], Awaitable[ComputedResponse]],
        ttl_seconds: int | None = None,
    ) -> CacheEntryData:
        """
        Read-through lookup.

        On a miss, compute() runs once per (tenant, key) across concurrent
        callers in this process and its result is written through.
        """
        cached = await self.get(tenant_id, cache_key)
        if cached is not None:
            return cached

        async def fill() -> CacheEntryData:
            # Another process may have filled the key since our miss
            existing = await self.get(tenant_id, cache_key)
            if existing is not None:
                return existing
            computed = await compute()
            return await self.put(
                tenant_id,
                cache_key,
                computed.response_data,
                computed.model_used,
                tokens_used=computed.tokens_used,
                cost_usd=computed.cost_usd,
                ttl_seconds=ttl_seconds,
            )

        return await self.flights.do((tenant_id, cache_key), fill)

    async def purge_expired(self) -> int:
        """Delete every expired entry across tenants. Returns the number removed."""
        now = self._clock()
        result = await self.session.execute(
            delete(CacheEntry).where(CacheEntry.expires_at <= now)
        )
        await self.session.commit()

        removed = result.rowcount or 0
        metrics.cache_evictions_total.labels(trigger="sweep").inc(removed)
        logger.info("cache_purged", removed=removed)
        return removed

    async def stats(self, tenant_id: UUID) -> CacheStats:
        """Live entry count and the tokens/cost those entries represent."""
        stmt = select(
            func.count(CacheEntry.id),
            func.coalesce(func.sum(CacheEntry.tokens_used), 0),
            func.coalesce(func.sum(CacheEntry.cost_usd), 0),
        ).where(
            CacheEntry.tenant_id == tenant_id,
            CacheEntry.expires_at > self._clock(),
        )
        result = await self.session.execute(stmt)
        count, tokens, cost = result.one()
        return CacheStats(
            tenant_id=tenant_id,
            live_entries=int(count),
            tokens_saved=int(tokens),
            cost_saved_usd=Decimal(str(cost)),
        )

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _find_entry(self, tenant_id: UUID, cache_key: str) -> CacheEntry | None:
        # Upserts bypass the identity map; refresh any row loaded earlier in the session
        stmt = (
            select(CacheEntry)
            .where(
                CacheEntry.tenant_id == tenant_id,
                CacheEntry.cache_key == cache_key,
            )
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _evict(self, entry_id: UUID, now: datetime) -> None:
        # Conditional on expiry so a concurrent refresh of the key survives
        await self.session.execute(
            delete(CacheEntry).where(CacheEntry.id == entry_id, CacheEntry.expires_at <= now)
        )
        await self.session.commit()
        metrics.cache_evictions_total.labels(trigger="read").inc()
