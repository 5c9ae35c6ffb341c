"""
Billing Event Ledger - Idempotent ingestion of billing-provider events.

NO DICTIONARIES - Provider payloads are opaque JSONB; everything derived
from them is typed.

Correctness rests on two database mechanisms:
- The unique constraint on external_event_id. Ingestion always attempts the
  insert and converts the IntegrityError of a replay into DUPLICATE; there is
  no check-then-insert.
- A conditional claim (UPDATE ... SET processed = true WHERE processed = false)
  committed together with the state transition, so each event changes tenant
  state at most once even when several workers process it.

Signature verification happens upstream; events reaching this module are trusted.
"""

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from governance.db.models import BillingEvent, Subscription, Tenant
from governance.exceptions import DataIntegrityError, GovernanceError, ResourceNotFoundError
from governance.models.api import IngestOutcome, PlanTier, SubscriptionStatus, TenantStatus
from governance.models.domain import BillingEventData
from governance.observability.metrics import metrics

logger = get_logger(__name__)

# Failures recorded on the event and retried later by process_pending()
_RETRYABLE_ERRORS = (
    GovernanceError,
    SQLAlchemyError,
    LookupError,
    ValueError,
    TypeError,
    OverflowError,
    OSError,
)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _provider_object(payload: dict[str, Any]) -> dict[str, Any]:
    """The provider object lives at data.object in webhook envelopes."""
    data = payload.get("data")
    if isinstance(data, dict) and isinstance(data.get("object"), dict):
        return data["object"]
    return payload


def _metadata(obj: dict[str, Any]) -> dict[str, Any]:
    metadata = obj.get("metadata")
    return metadata if isinstance(metadata, dict) else {}


def _timestamp(value: Any) -> datetime | None:
    """Provider timestamps are unix seconds."""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), UTC)


def _plan_from(obj: dict[str, Any]) -> PlanTier | None:
    plan = _metadata(obj).get("plan")
    return PlanTier(plan) if plan else None


class BillingEventLedger:
    """
    Billing event ingestion and processing.

    Transitions by event type:
    - checkout.session.completed: store the provider customer id on the tenant
    - customer.subscription.created: upsert subscription, set plan, activate tenant
    - customer.subscription.updated: sync subscription; canceled downgrades to free
    - customer.subscription.deleted: cancel subscription, downgrade to free
    - invoice.payment_succeeded: activate tenant
    - invoice.payment_failed: suspend tenant
    - anything else: marked processed with no state change
    """

    def __init__(
        self, session: AsyncSession, clock: Callable[[], datetime] = _utc_now
    ) -> None:
        self.session = session
        self._clock = clock

    def _handlers(self) -> dict[str, Callable[[dict[str, Any]], Awaitable[None]]]:
        return {
            "checkout.session.completed": self._on_checkout_completed,
            "customer.subscription.created": self._on_subscription_created,
            "customer.subscription.updated": self._on_subscription_updated,
            "customer.subscription.deleted": self._on_subscription_deleted,
            "invoice.payment_succeeded": self._on_payment_succeeded,
            "invoice.payment_failed": self._on_payment_failed,
        }

    async def ingest(
        self, external_event_id: str, event_type: str, payload: dict[str, Any]
    ) -> IngestOutcome:
        """
        Record an event exactly once and apply its transition.

        Both outcomes are success: DUPLICATE means the event was already
        recorded and nothing happens now.
        """
        if not external_event_id:
            raise ValueError("external_event_id cannot be empty")

        event = BillingEvent(
            id=uuid4(),
            external_event_id=external_event_id,
            event_type=event_type,
            payload=payload,
            processed=False,
            created_at=self._clock(),
        )
        self.session.add(event)

        try:
            await self.session.flush()
        except IntegrityError as e:
            await self.session.rollback()
            existing = await self._find_event(external_event_id)
            if existing is None:
                raise DataIntegrityError(
                    f"Billing event {external_event_id} rejected but not found: {e}"
                ) from e
            metrics.record_billing_event(event_type, IngestOutcome.DUPLICATE.value)
            logger.info(
                "billing_event_duplicate",
                external_event_id=external_event_id,
                event_type=event_type,
            )
            return IngestOutcome.DUPLICATE

        await self.session.commit()
        metrics.record_billing_event(event_type, IngestOutcome.ACCEPTED.value)
        logger.info(
            "billing_event_accepted", external_event_id=external_event_id, event_type=event_type
        )

        await self.process(external_event_id)
        return IngestOutcome.ACCEPTED

    async def process(self, external_event_id: str) -> bool:
        """
        Claim and apply one event.

        Returns True if this call applied the transition, False if the event
        was already processed or the transition failed (recorded for retry).
        """
        claimed = await self._claim(external_event_id)
        if claimed is None:
            return False

        event_type, payload = claimed
        try:
            await self._apply(event_type, payload)
            await self.session.commit()
        except _RETRYABLE_ERRORS as e:
            await self.session.rollback()
            await self._record_failure(external_event_id, str(e))
            metrics.record_billing_processing(event_type, success=False)
            logger.error(
                "billing_event_processing_failed",
                external_event_id=external_event_id,
                event_type=event_type,
                error=str(e),
            )
            return False

        metrics.record_billing_processing(event_type, success=True)
        logger.info(
            "billing_event_processed", external_event_id=external_event_id, event_type=event_type
        )
        return True

    async def process_pending(self, limit: int = 100) -> int:
        """Retry unprocessed events, oldest first. Returns how many were applied."""
        stmt = (
            select(BillingEvent.external_event_id)
            .where(BillingEvent.processed.is_(False))
            .order_by(BillingEvent.created_at)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        pending = list(result.scalars().all())

        applied = 0
        for external_event_id in pending:
            if await self.process(external_event_id):
                applied += 1
        return applied

    async def get_event(self, external_event_id: str) -> BillingEventData:
        """
        Raises:
            ResourceNotFoundError: No event with that id
        """
        event = await self._find_event(external_event_id)
        if event is None:
            raise ResourceNotFoundError("BillingEvent", external_event_id)
        return BillingEventData(
            external_event_id=event.external_event_id,
            event_type=event.event_type,
            processed=event.processed,
            processing_error=event.processing_error,
            created_at=event.created_at,
            processed_at=event.processed_at,
        )

    # ========================================================================
    # Transitions
    # ========================================================================

    async def _apply(self, event_type: str, payload: dict[str, Any]) -> None:
        handler = self._handlers().get(event_type)
        if handler is None:
            logger.info("billing_event_ignored", event_type=event_type)
            return
        await handler(_provider_object(payload))

    async def _on_checkout_completed(self, obj: dict[str, Any]) -> None:
        tenant = await self._resolve_tenant(obj)
        customer = obj.get("customer")
        if customer:
            tenant.stripe_customer_id = str(customer)

    async def _on_subscription_created(self, obj: dict[str, Any]) -> None:
        tenant = await self._resolve_tenant(obj)
        plan = _plan_from(obj)
        if plan is None:
            raise ValueError(f"Subscription {obj.get('id')} has no plan in metadata")

        await self._upsert_subscription(tenant, obj, plan)
        tenant.plan = plan.value
        tenant.stripe_subscription_id = str(obj["id"])
        if obj.get("customer"):
            tenant.stripe_customer_id = str(obj["customer"])
        self._set_tenant_status(tenant, TenantStatus.ACTIVE)

    async def _on_subscription_updated(self, obj: dict[str, Any]) -> None:
        tenant = await self._resolve_tenant(obj)
        plan = _plan_from(obj) or PlanTier(tenant.plan)
        subscription = await self._upsert_subscription(tenant, obj, plan)

        if subscription.status == SubscriptionStatus.CANCELED.value:
            tenant.plan = PlanTier.FREE.value
        elif _plan_from(obj) is not None:
            tenant.plan = plan.value

    async def _on_subscription_deleted(self, obj: dict[str, Any]) -> None:
        tenant = await self._resolve_tenant(obj)
        subscription = await self._find_subscription(str(obj["id"]))
        if subscription is not None:
            subscription.status = SubscriptionStatus.CANCELED.value
        tenant.plan = PlanTier.FREE.value

    async def _on_payment_succeeded(self, obj: dict[str, Any]) -> None:
        tenant = await self._resolve_tenant(obj)
        self._set_tenant_status(tenant, TenantStatus.ACTIVE)

    async def _on_payment_failed(self, obj: dict[str, Any]) -> None:
        tenant = await self._resolve_tenant(obj)
        self._set_tenant_status(tenant, TenantStatus.SUSPENDED)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _claim(self, external_event_id: str) -> tuple[str, dict[str, Any]] | None:
        stmt = (
            update(BillingEvent)
            .where(
                BillingEvent.external_event_id == external_event_id,
                BillingEvent.processed.is_(False),
            )
            .values(processed=True, processed_at=self._clock(), processing_error=None)
            .returning(BillingEvent.event_type, BillingEvent.payload)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        row = result.one_or_none()
        if row is None:
            return None
        return row[0], row[1]

    async def _record_failure(self, external_event_id: str, error: str) -> None:
        stmt = (
            update(BillingEvent)
            .where(BillingEvent.external_event_id == external_event_id)
            .values(processing_error=error[:2000])
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
        await self.session.commit()

    async def _find_event(self, external_event_id: str) -> BillingEvent | None:
        # Claims and failures are written with Core updates; refresh any loaded row
        stmt = (
            select(BillingEvent)
            .where(BillingEvent.external_event_id == external_event_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_subscription(self, stripe_subscription_id: str) -> Subscription | None:
        stmt = select(Subscription).where(
            Subscription.stripe_subscription_id == stripe_subscription_id
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _resolve_tenant(self, obj: dict[str, Any]) -> Tenant:
        """Tenant from metadata, falling back to the subscription the object references."""
        metadata = _metadata(obj)
        tenant_ref = metadata.get("tenantId") or metadata.get("tenant_id")

        if tenant_ref:
            tenant_id = UUID(str(tenant_ref))
        else:
            subscription_ref = obj.get("id") if obj.get("object") == "subscription" else None
            subscription_ref = subscription_ref or obj.get("subscription")
            if not subscription_ref:
                raise ResourceNotFoundError("Tenant", "no tenant reference in billing event")
            subscription = await self._find_subscription(str(subscription_ref))
            if subscription is None:
                raise ResourceNotFoundError("Subscription", str(subscription_ref))
            tenant_id = subscription.tenant_id

        tenant = await self.session.get(Tenant, tenant_id)
        if tenant is None:
            raise ResourceNotFoundError("Tenant", str(tenant_id))
        return tenant

    async def _upsert_subscription(
        self, tenant: Tenant, obj: dict[str, Any], plan: PlanTier
    ) -> Subscription:
        stripe_subscription_id = str(obj["id"])
        status = SubscriptionStatus(obj.get("status", SubscriptionStatus.ACTIVE.value))

        subscription = await self._find_subscription(stripe_subscription_id)
        if subscription is None:
            subscription = Subscription(
                id=uuid4(),
                tenant_id=tenant.id,
                stripe_subscription_id=stripe_subscription_id,
            )
            self.session.add(subscription)

        subscription.stripe_customer_id = obj.get("customer")
        subscription.plan = plan.value
        subscription.status = status.value
        subscription.current_period_start = _timestamp(obj.get("current_period_start"))
        subscription.current_period_end = _timestamp(obj.get("current_period_end"))
        subscription.cancel_at_period_end = bool(obj.get("cancel_at_period_end", False))
        return subscription

    @staticmethod
    def _set_tenant_status(tenant: Tenant, status: TenantStatus) -> None:
        # Deleted is terminal; billing events never revive a tenant
        if tenant.status == TenantStatus.DELETED.value:
            logger.warning("billing_event_for_deleted_tenant", tenant_id=str(tenant.id))
            return
        tenant.status = status.value
