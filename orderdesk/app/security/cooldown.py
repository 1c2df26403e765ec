"""Per-identity cooldowns for gated actions.

Two stores share the same decision rule (:func:`decide`):

``RedisCooldownStore``
    Advisory fast path checked before any database work. It is cheap and can
    be bypassed by a client that rotates its session token.

``SqlCooldownStore``
    Authoritative store written in the same transaction that persists the
    gated action. :meth:`SqlCooldownStore.acquire` performs check-and-record
    as one conditional upsert so two concurrent requests from the same
    identity cannot both be admitted.

An action is allowed strictly when ``now >= expires_at``; a request landing
exactly on the boundary of an unexpired entry is denied.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from config import MAX_COOLDOWN_SECS

from ..errors import RateLimitExceeded
from ..models import RateLimitEntry
from ..routes_metrics import rate_limit_denied_total
from ..utils.clock import as_utc, utcnow
from ..utils.ratelimits import ACTION_KINDS, Policy
from ..utils.sql import upsert

logger = logging.getLogger("orderdesk.ratelimit")


@dataclass(frozen=True)
class CooldownDecision:
    """Outcome of a cooldown check.

    ``remaining`` is the whole number of seconds until the cooldown lapses and
    is ``None`` when the action is allowed.
    """

    allowed: bool
    remaining: int | None = None


@dataclass(frozen=True)
class Identity:
    """Who is performing a gated action.

    ``session_token`` is the durable per-session token a browser sends in
    ``X-Session-Id``; ``network_address`` is the client address as observed by
    the server. The authoritative check prefers the address when present.
    """

    session_token: str | None = None
    network_address: str | None = None

    @property
    def advisory(self) -> str:
        return self.session_token or self.network_address or "anonymous"

    @property
    def authoritative(self) -> str:
        return self.network_address or self.session_token or "anonymous"


def _validate(action_kind: str, cooldown_seconds: int) -> None:
    if action_kind not in ACTION_KINDS:
        raise ValueError(f"unknown action kind {action_kind!r}")
    if cooldown_seconds <= 0 or cooldown_seconds > MAX_COOLDOWN_SECS:
        raise ValueError(
            f"cooldown must be between 1 and {MAX_COOLDOWN_SECS} seconds"
        )


def decide(expires_at: datetime | None, now: datetime) -> CooldownDecision:
    """Return the decision for an entry expiring at ``expires_at``."""
    expires_at = as_utc(expires_at)
    if expires_at is None or now >= expires_at:
        return CooldownDecision(allowed=True)
    remaining = math.ceil((expires_at - now).total_seconds())
    return CooldownDecision(allowed=False, remaining=max(remaining, 1))


def cooldown_message(remaining: int) -> str:
    """Return a human readable "please wait" message for ``remaining`` seconds."""
    if remaining < 60:
        unit = "second" if remaining == 1 else "seconds"
        return f"Please wait {remaining} {unit} before trying again."
    minutes, seconds = divmod(remaining, 60)
    m_unit = "minute" if minutes == 1 else "minutes"
    s_unit = "second" if seconds == 1 else "seconds"
    return f"Please wait {minutes} {m_unit} and {seconds} {s_unit} before trying again."


class RedisCooldownStore:
    """Advisory cooldowns kept in Redis.

    Each key holds the expiry instant as a UNIX timestamp with a TTL matching
    the cooldown, so stale keys disappear on their own.
    """

    def __init__(self, redis: Redis, prefix: str = "cooldown") -> None:
        self.redis = redis
        self.prefix = prefix

    def _key(self, identity: str, action_kind: str) -> str:
        return f"{self.prefix}:{action_kind}:{identity}"

    async def check(
        self,
        identity: str,
        action_kind: str,
        cooldown_seconds: int,
        now: datetime | None = None,
    ) -> CooldownDecision:
        _validate(action_kind, cooldown_seconds)
        now = now or utcnow()
        raw = await self.redis.get(self._key(identity, action_kind))
        if raw is None:
            return CooldownDecision(allowed=True)
        if isinstance(raw, bytes):
            raw = raw.decode()
        expires_at = datetime.fromtimestamp(float(raw), tz=timezone.utc)
        return decide(expires_at, now)

    async def record(
        self,
        identity: str,
        action_kind: str,
        cooldown_seconds: int,
        now: datetime | None = None,
    ) -> None:
        _validate(action_kind, cooldown_seconds)
        now = now or utcnow()
        expires_at = now + timedelta(seconds=cooldown_seconds)
        await self.redis.set(
            self._key(identity, action_kind),
            str(expires_at.timestamp()),
            px=cooldown_seconds * 1000,
        )

    async def clear(self, identity: str, action_kind: str) -> None:
        await self.redis.delete(self._key(identity, action_kind))


class SqlCooldownStore:
    """Authoritative cooldowns in the ``rate_limit_entries`` table."""

    async def check(
        self,
        session: AsyncSession,
        identity: str,
        action_kind: str,
        cooldown_seconds: int,
        now: datetime | None = None,
    ) -> CooldownDecision:
        """Return the decision without recording anything."""
        _validate(action_kind, cooldown_seconds)
        now = now or utcnow()
        result = await session.execute(
            select(RateLimitEntry.expires_at).where(
                RateLimitEntry.identity == identity,
                RateLimitEntry.action_kind == action_kind,
            )
        )
        return decide(result.scalar_one_or_none(), now)

    async def record(
        self,
        session: AsyncSession,
        identity: str,
        action_kind: str,
        cooldown_seconds: int,
        now: datetime | None = None,
    ) -> None:
        """Replace any entry for the pair with one expiring after the cooldown."""
        _validate(action_kind, cooldown_seconds)
        now = now or utcnow()
        expires_at = now + timedelta(seconds=cooldown_seconds)
        stmt = upsert(session, RateLimitEntry).values(
            identity=identity, action_kind=action_kind, created_at=now, expires_at=expires_at
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[RateLimitEntry.identity, RateLimitEntry.action_kind],
            set_={"created_at": now, "expires_at": expires_at},
        )
        await session.execute(stmt)

    async def acquire(
        self,
        session: AsyncSession,
        identity: str,
        action_kind: str,
        cooldown_seconds: int,
        now: datetime | None = None,
    ) -> CooldownDecision:
        """Check and record in a single conditional write.

        The upsert only overwrites an existing entry whose expiry has passed.
        A returned row means the action was admitted and recorded; no row
        means a live entry blocked it, and its expiry is read back to report
        the remaining cooldown. Runs inside the caller's transaction.
        """
        _validate(action_kind, cooldown_seconds)
        now = now or utcnow()
        expires_at = now + timedelta(seconds=cooldown_seconds)
        stmt = upsert(session, RateLimitEntry).values(
            identity=identity, action_kind=action_kind, created_at=now, expires_at=expires_at
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[RateLimitEntry.identity, RateLimitEntry.action_kind],
            set_={"created_at": now, "expires_at": expires_at},
            where=RateLimitEntry.expires_at <= now,
        ).returning(RateLimitEntry.expires_at)
        result = await session.execute(stmt)
        if result.first() is not None:
            return CooldownDecision(allowed=True)
        decision = await self.check(session, identity, action_kind, cooldown_seconds, now)
        if decision.allowed:  # pragma: no cover - entry vanished between statements
            return CooldownDecision(allowed=False, remaining=1)
        return decision


async def purge_expired(
    session: AsyncSession, older_than: timedelta, now: datetime | None = None
) -> int:
    """Delete entries that expired more than ``older_than`` ago.

    Expiry is evaluated on every read, so this only reclaims space and may run
    on any cadence.
    """
    now = now or utcnow()
    result = await session.execute(
        delete(RateLimitEntry).where(RateLimitEntry.expires_at < now - older_than)
    )
    await session.commit()
    return result.rowcount or 0


class CooldownGate:
    """Enforce a :class:`Policy` at both tiers.

    ``redis`` may be ``None``, in which case only the authoritative tier runs.
    """

    def __init__(self, redis: Redis | None, store: SqlCooldownStore | None = None) -> None:
        self.advisory = RedisCooldownStore(redis) if redis is not None else None
        self.store = store or SqlCooldownStore()

    async def precheck(self, identity: Identity, policy: Policy, now: datetime) -> None:
        """Raise :class:`RateLimitExceeded` if the advisory tier denies."""
        if self.advisory is None:
            return
        try:
            decision = await self.advisory.check(
                identity.advisory, policy.action_kind, policy.cooldown_secs, now
            )
        except RedisError as exc:
            logger.warning("advisory cooldown unavailable: %s", exc)
            return
        if not decision.allowed:
            logger.info(
                "advisory cooldown hit action=%s remaining=%s",
                policy.action_kind,
                decision.remaining,
            )
            rate_limit_denied_total.labels(action_kind=policy.action_kind, tier="advisory").inc()
            raise RateLimitExceeded(decision.remaining or 1, policy.action_kind)

    async def acquire(
        self, session: AsyncSession, identity: Identity, policy: Policy, now: datetime
    ) -> None:
        """Authoritatively admit ``identity`` or raise :class:`RateLimitExceeded`."""
        decision = await self.store.acquire(
            session, identity.authoritative, policy.action_kind, policy.cooldown_secs, now
        )
        if not decision.allowed:
            logger.info(
                "cooldown denied action=%s remaining=%s",
                policy.action_kind,
                decision.remaining,
            )
            rate_limit_denied_total.labels(
                action_kind=policy.action_kind, tier="authoritative"
            ).inc()
            raise RateLimitExceeded(decision.remaining or 1, policy.action_kind)

    async def remember(self, identity: Identity, policy: Policy, now: datetime) -> None:
        """Mirror an admitted action into the advisory tier."""
        if self.advisory is None:
            return
        try:
            await self.advisory.record(
                identity.advisory, policy.action_kind, policy.cooldown_secs, now
            )
        except RedisError as exc:
            logger.warning("advisory cooldown not recorded: %s", exc)
