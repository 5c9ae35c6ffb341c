"""
Hypothesis Property-Based Tests for governance models and pure helpers.

Uses Hypothesis to generate random valid/invalid inputs and verify:
- Domain model invariants (dataclass validation)
- API model validation (Pydantic validators)
- Period windows and request fingerprints
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from pydantic import ValidationError

from governance.models.api import (
    CreateInviteRequest,
    MembershipRole,
    RecordUsageRequest,
)
from governance.models.domain import QuotaDecision, UsageIntent
from governance.services.authorization import role_satisfies
from governance.services.cache import fingerprint
from governance.services.periods import QuotaPeriod

# ============================================================================
# Hypothesis Strategies - Reusable data generators
# ============================================================================

aware_datetimes = st.datetimes(
    min_value=datetime(2000, 1, 1),
    max_value=datetime(2100, 1, 1),
    timezones=st.just(UTC),
)

costs = st.decimals(
    min_value=Decimal("0"), max_value=Decimal("1000"), places=6, allow_nan=False
)

json_scalars = st.one_of(
    st.none(),
    st.booleans(),
    st.integers(min_value=-(10**9), max_value=10**9),
    st.text(max_size=20),
)

json_values = st.recursive(
    json_scalars,
    lambda children: st.one_of(
        st.lists(children, max_size=4),
        st.dictionaries(st.text(max_size=8), children, max_size=4),
    ),
    max_leaves=12,
)

roles = st.sampled_from(list(MembershipRole))


# ============================================================================
# Period Windows
# ============================================================================


class TestPeriodProperties:
    @given(moment=aware_datetimes, period=st.sampled_from(list(QuotaPeriod)))
    def test_window_contains_moment(self, moment: datetime, period: QuotaPeriod):
        start, end = period.window(moment)
        assert start <= moment < end

    @given(moment=aware_datetimes)
    def test_day_window_is_24_hours(self, moment: datetime):
        start, end = QuotaPeriod.DAY.window(moment)
        assert end - start == timedelta(days=1)
        assert (start.hour, start.minute, start.second) == (0, 0, 0)

    @given(moment=aware_datetimes)
    def test_month_end_is_next_month_start(self, moment: datetime):
        _, end = QuotaPeriod.MONTH.window(moment)
        next_start, _ = QuotaPeriod.MONTH.window(end)
        assert next_start == end
        assert end.day == 1

    @given(moment=aware_datetimes)
    def test_day_nested_in_month(self, moment: datetime):
        day_start, day_end = QuotaPeriod.DAY.window(moment)
        month_start, month_end = QuotaPeriod.MONTH.window(moment)
        assert month_start <= day_start < day_end <= month_end


# ============================================================================
# Fingerprints
# ============================================================================


class TestFingerprintProperties:
    @given(request=st.dictionaries(st.text(max_size=8), json_values, max_size=6))
    def test_insertion_order_irrelevant(self, request: dict):
        reordered = dict(reversed(list(request.items())))
        assert fingerprint(request) == fingerprint(reordered)

    @given(request=json_values)
    def test_deterministic(self, request):
        assert fingerprint(request) == fingerprint(request)

    @given(text=st.text(max_size=30))
    def test_padding_ignored(self, text: str):
        assert fingerprint({"prompt": text}) == fingerprint({"prompt": f"  {text}\t"})


# ============================================================================
# Domain Invariants
# ============================================================================


class TestQuotaDecisionProperties:
    @given(
        used=st.integers(min_value=0, max_value=10_000),
        limit=st.integers(min_value=1, max_value=10_000),
    )
    def test_remaining_bounded(self, used: int, limit: int):
        allowed = used < limit
        decision = QuotaDecision(
            allowed=allowed,
            action="meal_generation",
            used=used,
            limit=limit,
            reset_at=None if allowed else datetime(2030, 1, 1, tzinfo=UTC),
            reason=None if allowed else "quota_exceeded",
        )
        assert 0 <= decision.remaining <= limit
        assert (decision.remaining > 0) == allowed


class TestUsageIntentProperties:
    @given(tokens=st.integers(min_value=0, max_value=10**7), cost=costs)
    def test_valid_inputs_accepted(self, tokens: int, cost: Decimal):
        intent = UsageIntent(
            tenant_id=uuid4(),
            user_id="u",
            action="meal_generation",
            tokens_used=tokens,
            cost_usd=cost,
        )
        assert intent.tokens_used == tokens

    @given(tokens=st.integers(max_value=-1))
    def test_negative_tokens_rejected(self, tokens: int):
        with pytest.raises(ValueError):
            UsageIntent(
                tenant_id=uuid4(),
                user_id="u",
                action="meal_generation",
                tokens_used=tokens,
                cost_usd=Decimal("0"),
            )


class TestRoleProperties:
    @given(held=roles)
    def test_every_role_satisfies_viewer(self, held: MembershipRole):
        assert role_satisfies(held, MembershipRole.VIEWER)

    @given(required=roles)
    def test_owner_satisfies_all(self, required: MembershipRole):
        assert role_satisfies(MembershipRole.OWNER, required)

    @given(held=roles)
    def test_only_owner_satisfies_owner(self, held: MembershipRole):
        assert role_satisfies(held, MembershipRole.OWNER) == (held == MembershipRole.OWNER)


# ============================================================================
# API Model Validation
# ============================================================================


class TestApiModelProperties:
    @given(local=st.from_regex(r"[a-z0-9]{1,10}", fullmatch=True))
    @settings(max_examples=30)
    def test_invite_email_lowercased(self, local: str):
        request = CreateInviteRequest(email=f"{local.upper()}@Example.COM")
        assert request.email == f"{local}@example.com"

    @given(role=roles)
    def test_invite_role_never_owner(self, role: MembershipRole):
        if role == MembershipRole.OWNER:
            with pytest.raises(ValidationError):
                CreateInviteRequest(email="a@example.com", role=role)
        else:
            assert CreateInviteRequest(email="a@example.com", role=role).role == role

    @given(tokens=st.integers(max_value=-1))
    def test_usage_request_rejects_negative_tokens(self, tokens: int):
        with pytest.raises(ValidationError):
            RecordUsageRequest(action="meal_generation", tokens_used=tokens)
