"""Ledger Service for coin balance operations.

Features:
- Append-only coin ledger with a gapless per-user sequence
- Cached balance on the user row, checked against the ledger on every append
- SHA-256 integrity hash per entry
- Redis read-through cache for balance lookups
- Reconciliation that freezes the user on drift instead of correcting it
"""

import hashlib
import logging
from typing import Any

from redis.asyncio import Redis
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from streakledger.clock import Clock
from streakledger.middleware.prometheus import (
    record_cache_access,
    record_coins,
    record_ledger_inconsistency,
)
from streakledger.middleware.sentry import capture_ledger_error
from streakledger.models.ledger import LedgerEntry, LedgerReason
from streakledger.models.user import User
from streakledger.stores.ledger import LedgerStore
from streakledger.utils.db import user_transaction
from streakledger.utils.errors import (
    ConcurrentModificationError,
    ConflictError,
    InsufficientBalanceError,
    InternalInconsistencyError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class LedgerService:
    """Ledger service for coin balance operations.

    Appends only flush. The caller owns the transaction, so a ledger entry
    commits or rolls back together with the business write it settles.
    Concurrent appends for one user are serialized by the version column of
    the user row and by the unique (user_id, sequence) constraint.
    """

    BALANCE_CACHE_TTL = 300
    BALANCE_KEY_PREFIX = "ledger:balance:"
    GENERATION_KEY_PREFIX = "ledger:balance-gen:"

    # Cache the balance only if no invalidation happened since it was read
    GUARDED_SET_SCRIPT = """
    local generation = redis.call("get", KEYS[2]) or ""
    if generation == ARGV[1] then
        return redis.call("setex", KEYS[1], ARGV[2], ARGV[3])
    else
        return 0
    end
    """

    def __init__(
        self,
        session: AsyncSession,
        redis: Redis | None = None,
        clock: Clock | None = None,
        cache_ttl: int | None = None,
    ) -> None:
        self.session = session
        self.store = LedgerStore(session)
        self._redis = redis
        self.clock = clock or Clock()
        if cache_ttl is not None:
            self.BALANCE_CACHE_TTL = cache_ttl

    async def get_user(self, user_id: str, *, fresh: bool = False) -> User:
        """Load a user. ``fresh`` re-reads a row already in the session."""
        user = await self.session.get(User, user_id, populate_existing=fresh)
        if not user:
            raise NotFoundError("User", user_id)
        return user

    async def get_balance(self, user_id: str) -> int:
        """Get user's coin balance.

        A cache miss reads the user row and writes it back to the cache,
        unless the balance was invalidated while the row was being read.

        Args:
            user_id: User ID

        Returns:
            Current coin balance
        """
        cache_key = f"{self.BALANCE_KEY_PREFIX}{user_id}"
        generation_key = f"{self.GENERATION_KEY_PREFIX}{user_id}"
        generation = None
        if self._redis is not None:
            cached, generation = await self._redis.mget(cache_key, generation_key)
            record_cache_access("balance", cached is not None)
            if cached is not None:
                return int(cached)

        user = await self.get_user(user_id, fresh=True)

        if self._redis is not None:
            await self._redis.eval(
                self.GUARDED_SET_SCRIPT,
                2,
                cache_key,
                generation_key,
                generation or "",
                self.BALANCE_CACHE_TTL,
                str(user.coin_balance),
            )

        return user.coin_balance

    async def invalidate_balance_cache(self, user_id: str) -> None:
        """Drop the cached balance. Callers invalidate again after commit."""
        if self._redis is not None:
            await self._redis.incr(f"{self.GENERATION_KEY_PREFIX}{user_id}")
            await self._redis.delete(f"{self.BALANCE_KEY_PREFIX}{user_id}")

    async def append(
        self,
        user: User,
        amount: int,
        reason: LedgerReason,
        *,
        reference_id: str | None = None,
        description: str | None = None,
    ) -> LedgerEntry:
        """Append a ledger entry and move the cached balance with it.

        Args:
            user: User row loaded in this session
            amount: Signed amount (positive = credit, negative = debit)
            reason: Why the coins moved
            reference_id: Business object this entry settles
            description: Optional description

        Returns:
            LedgerEntry record

        Raises:
            ValidationError: amount is zero
            InsufficientBalanceError: debit exceeds balance
            InternalInconsistencyError: user frozen, or cached balance drifted
            ConflictError: the reference was already settled, or a concurrent
                append took the same sequence number
        """
        user_id = user.id
        if amount == 0:
            raise ValidationError("Amount cannot be zero")

        if user.ledger_frozen:
            raise InternalInconsistencyError(user_id, user.coin_balance, None)

        last = await self.store.last_entry(user_id)
        ledger_balance = last.balance_after if last else 0
        if ledger_balance != user.coin_balance:
            await self._recheck_concurrent(user)
            last = await self.store.last_entry(user_id)
            ledger_balance = last.balance_after if last else 0
        if ledger_balance != user.coin_balance:
            raise await self.freeze(
                user_id,
                cached_balance=user.coin_balance,
                ledger_balance=ledger_balance,
                operation="append",
                amount=amount,
            )

        balance_before = user.coin_balance
        balance_after = balance_before + amount
        if balance_after < 0:
            raise InsufficientBalanceError(balance_before, abs(amount))

        sequence = last.sequence + 1 if last else 1
        entry = LedgerEntry(
            user_id=user_id,
            sequence=sequence,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_after,
            reason=reason,
            reference_id=reference_id,
            description=description,
            integrity_hash=self._compute_integrity_hash(
                user_id=user_id,
                sequence=sequence,
                reason=reason,
                amount=amount,
                balance_before=balance_before,
                balance_after=balance_after,
                reference_id=reference_id,
            ),
            created_at=self.clock.now(),
        )

        user.coin_balance = balance_after
        self.store.add(entry)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise ConflictError(
                "Ledger entry already recorded",
                details={
                    "userId": user_id,
                    "reason": reason.value,
                    "referenceId": reference_id,
                    "sequence": sequence,
                },
            ) from e

        await self.invalidate_balance_cache(user_id)
        record_coins(amount, reason.value)

        logger.info(
            f"Ledger append: user={user_id[:8]}... #{sequence} "
            f"reason={reason.value} amount={amount:+,} "
            f"balance={balance_before:,} -> {balance_after:,}"
        )

        return entry

    async def credit(
        self,
        user: User,
        amount: int,
        reason: LedgerReason,
        *,
        reference_id: str | None = None,
        description: str | None = None,
    ) -> LedgerEntry:
        if amount <= 0:
            raise ValidationError("Credit amount must be positive")

        return await self.append(
            user,
            amount,
            reason,
            reference_id=reference_id,
            description=description,
        )

    async def debit(
        self,
        user: User,
        amount: int,
        reason: LedgerReason,
        *,
        reference_id: str | None = None,
        description: str | None = None,
    ) -> LedgerEntry:
        if amount <= 0:
            raise ValidationError("Debit amount must be positive")

        return await self.append(
            user,
            -amount,
            reason,
            reference_id=reference_id,
            description=description,
        )

    async def adjust(
        self,
        user_id: str,
        amount: int,
        *,
        reference_id: str,
        description: str | None = None,
    ) -> LedgerEntry:
        """Operator correction or funding, committed as its own unit of work.

        Raises:
            ConflictError: the reference was already used for an adjustment
            InsufficientBalanceError: a negative adjustment exceeds the balance
        """
        async with user_transaction(self.session, user_id):
            user = await self.get_user(user_id, fresh=True)
            entry = await self.append(
                user,
                amount,
                LedgerReason.ADMIN_ADJUST,
                reference_id=reference_id,
                description=description,
            )

        await self.invalidate_balance_cache(user_id)
        logger.warning(f"Admin balance adjustment: user={user_id} amount={amount:+,}")
        return entry

    async def has_entry(
        self, user_id: str, reason: LedgerReason, reference_id: str
    ) -> bool:
        return await self.store.find_by_reference(user_id, reason, reference_id) is not None

    async def get_entries(
        self,
        user_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
        reason: LedgerReason | None = None,
    ) -> list[LedgerEntry]:
        """Get user's ledger history, newest first.

        Args:
            user_id: User ID
            limit: Max entries to return
            offset: Pagination offset
            reason: Optional filter by reason

        Returns:
            List of entries
        """
        return await self.store.list_entries(
            user_id, limit=limit, offset=offset, reason=reason
        )

    async def _recheck_concurrent(self, user: User) -> None:
        """Tell a concurrent writer apart from real drift.

        Every append bumps the user row version. If the version moved since
        the row was read, the mismatch came from a concurrent commit.
        """
        seen_version = user.version
        await self.session.refresh(user)
        if user.version != seen_version:
            raise ConcurrentModificationError(user.id)

    async def freeze(
        self,
        user_id: str,
        *,
        cached_balance: int,
        ledger_balance: int | None,
        operation: str,
        amount: int = 0,
        extra: dict[str, Any] | None = None,
    ) -> InternalInconsistencyError:
        """Freeze the user's balance and report the inconsistency.

        Whatever the session holds is rolled back first; the freeze is
        committed on its own so it survives the failed operation.

        Returns:
            The InternalInconsistencyError for the caller to raise
        """
        error = InternalInconsistencyError(user_id, cached_balance, ledger_balance)

        await self.session.rollback()
        user = await self.session.get(User, user_id)
        if user is not None and not user.ledger_frozen:
            user.ledger_frozen = True
            await self.session.commit()
        await self.invalidate_balance_cache(user_id)

        logger.error(
            f"Ledger inconsistency: user={user_id} operation={operation} "
            f"cached={cached_balance} ledger={ledger_balance}, balance frozen"
        )
        record_ledger_inconsistency()
        capture_ledger_error(
            error,
            user_id=user_id,
            operation=operation,
            amount=amount,
            extra={
                "cached_balance": cached_balance,
                "ledger_balance": ledger_balance,
                **(extra or {}),
            },
        )

        return error

    async def reconcile(self, user_id: str) -> dict[str, Any]:
        """Check one user's cached balance against the ledger.

        The sum of all entry amounts, the last entry's balance_after and the
        cached balance must agree, and every entry must pass its integrity
        check. Drift is never corrected here.

        Raises:
            InternalInconsistencyError: after freezing the user
        """
        user = await self.get_user(user_id, fresh=True)
        ledger_sum = await self.store.sum_amounts(user_id)
        if ledger_sum != user.coin_balance:
            await self._recheck_concurrent(user)
            ledger_sum = await self.store.sum_amounts(user_id)

        cached_balance = user.coin_balance
        last = await self.store.last_entry(user_id)
        last_balance = last.balance_after if last else 0

        result = await self.session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.user_id == user_id)
            .order_by(LedgerEntry.sequence)
        )
        entries = list(result.scalars().all())
        tampered = [e.sequence for e in entries if not self.verify_integrity(e)]
        gaps = [
            e.sequence
            for expected, e in enumerate(entries, start=1)
            if e.sequence != expected
        ]

        if ledger_sum != cached_balance or last_balance != cached_balance or tampered or gaps:
            raise await self.freeze(
                user_id,
                cached_balance=cached_balance,
                ledger_balance=ledger_sum,
                operation="reconcile",
                extra={
                    "last_balance_after": last_balance,
                    "tampered_sequences": tampered,
                    "sequence_gaps": gaps,
                },
            )

        return {
            "user_id": user_id,
            "balance": cached_balance,
            "ledger_sum": ledger_sum,
            "entries": len(entries),
            "frozen": user.ledger_frozen,
            "consistent": True,
        }

    async def reconcile_all(self, batch_size: int = 500) -> dict[str, Any]:
        """Reconcile every user. Safe to re-run; frozen users stay frozen."""
        checked = 0
        inconsistent: list[str] = []
        offset = 0

        while True:
            result = await self.session.execute(
                select(User.id).order_by(User.id).offset(offset).limit(batch_size)
            )
            user_ids = [row[0] for row in result.fetchall()]
            if not user_ids:
                break

            for user_id in user_ids:
                try:
                    await self.reconcile(user_id)
                except InternalInconsistencyError:
                    inconsistent.append(user_id)
                except ConcurrentModificationError:
                    logger.info(f"Reconciliation skipped, user busy: user={user_id[:8]}...")
                checked += 1

            offset += batch_size

        logger.info(
            f"Ledger reconciliation: checked={checked} inconsistent={len(inconsistent)}"
        )
        return {"checked": checked, "inconsistent": inconsistent}

    @staticmethod
    def _compute_integrity_hash(
        user_id: str,
        sequence: int,
        reason: LedgerReason,
        amount: int,
        balance_before: int,
        balance_after: int,
        reference_id: str | None,
    ) -> str:
        """Compute SHA-256 integrity hash for a ledger entry."""
        data = (
            f"{user_id}:{sequence}:{reason.value}:{amount}:"
            f"{balance_before}:{balance_after}:{reference_id or ''}"
        )
        return hashlib.sha256(data.encode()).hexdigest()

    @staticmethod
    def verify_integrity(entry: LedgerEntry) -> bool:
        """Verify ledger entry integrity hash."""
        expected = LedgerService._compute_integrity_hash(
            user_id=entry.user_id,
            sequence=entry.sequence,
            reason=entry.reason,
            amount=entry.amount,
            balance_before=entry.balance_before,
            balance_after=entry.balance_after,
            reference_id=entry.reference_id,
        )
        return entry.integrity_hash == expected
