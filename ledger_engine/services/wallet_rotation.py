"""
Wallet Rotation Allocator.

Hands out payment addresses from a pool so that every available address
is shown about equally often. Selection and the shown-count bump happen in
a single statement, so concurrent checkouts never both read the same
"least shown" wallet and lose an increment.
"""

from typing import List, Optional, Tuple

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from ledger_engine.core.clock import Clock, SystemClock, EPOCH
from ledger_engine.core.config import Settings, settings as default_settings
from ledger_engine.core.exceptions import NoWalletsAvailableError, NotFoundError, ValidationError
from ledger_engine.models import Wallet, WalletStatus
from .types import HealthStatus, RotationStats, WalletAllocation, WalletHealth


logger = structlog.get_logger(__name__)


class WalletRotationService:
    """Least-shown-first allocation over the wallet pool."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Optional[Clock] = None,
        config: Optional[Settings] = None
    ):
        self.session_factory = session_factory
        self.clock = clock or SystemClock()
        self.config = config or default_settings
        self.logger = logger.bind(service="wallet_rotation")

    async def pick(self, network: str, currency: str) -> WalletAllocation:
        """
        Allocate the least-shown available wallet.

        Ties break on oldest last_shown_at, then lowest id.

        Raises:
            NoWalletsAvailableError: no available wallet for network/currency
        """
        now = self.clock.now()
        candidate = aliased(Wallet)
        next_id = (
            select(candidate.id)
            .where(
                candidate.network == network,
                candidate.currency == currency,
                candidate.status == WalletStatus.AVAILABLE.value
            )
            .order_by(candidate.shown_count, candidate.last_shown_at, candidate.id)
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )
        stmt = (
            update(Wallet)
            .where(Wallet.id == next_id)
            .values(shown_count=Wallet.shown_count + 1, last_shown_at=now, updated_at=now)
            .returning(Wallet.id, Wallet.address, Wallet.network, Wallet.currency, Wallet.shown_count)
        )

        async with self.session_factory() as session:
            row = (await session.execute(stmt)).one_or_none()
            await session.commit()

        if row is None:
            self.logger.error("No wallets available", network=network, currency=currency)
            raise NoWalletsAvailableError(network, currency)

        self.logger.debug(
            "Wallet allocated",
            wallet_id=row.id,
            network=network,
            currency=currency,
            shown_count=row.shown_count
        )
        return WalletAllocation(
            wallet_id=row.id,
            address=row.address,
            network=row.network,
            currency=row.currency,
            shown_count=row.shown_count,
        )

    async def rotation_stats(self, network: str, currency: str) -> RotationStats:
        """Shown-count spread over the available wallets of a pool."""
        async with self.session_factory() as session:
            total = (await session.execute(
                select(func.count(Wallet.id)).where(
                    Wallet.network == network,
                    Wallet.currency == currency
                )
            )).scalar_one()

            row = (await session.execute(
                select(
                    func.count(Wallet.id),
                    func.min(Wallet.shown_count),
                    func.max(Wallet.shown_count),
                    func.avg(Wallet.shown_count),
                ).where(
                    Wallet.network == network,
                    Wallet.currency == currency,
                    Wallet.status == WalletStatus.AVAILABLE.value
                )
            )).one()

        available, min_shown, max_shown, avg_shown = row
        return RotationStats(
            network=network,
            currency=currency,
            total_wallets=total,
            available_wallets=available,
            min_shown=min_shown or 0,
            max_shown=max_shown or 0,
            avg_shown=float(avg_shown or 0),
        )

    async def check_health(self, network: str, currency: str) -> WalletHealth:
        """Advisory pool health. Never blocks allocation."""
        stats = await self.rotation_stats(network, currency)
        issues: List[str] = []
        status = HealthStatus.HEALTHY

        if stats.available_wallets == 0:
            issues.append("NO_AVAILABLE_WALLETS")
            status = HealthStatus.CRITICAL
        elif stats.available_wallets < self.config.wallet_min_available:
            issues.append("LOW_AVAILABLE_WALLETS")
            status = HealthStatus.WARNING

        if stats.rotation_balance > self.config.wallet_rotation_threshold:
            issues.append("UNBALANCED_ROTATION")
            if status is HealthStatus.HEALTHY:
                status = HealthStatus.WARNING

        if issues:
            self.logger.warning(
                "Wallet pool unhealthy",
                network=network,
                currency=currency,
                status=status.value,
                issues=issues,
                available=stats.available_wallets,
                rotation_balance=stats.rotation_balance
            )
        return WalletHealth(status=status, issues=issues, stats=stats)

    async def rebalance(self, network: str, currency: str) -> int:
        """
        Pull over-shown wallets back to the pool minimum.

        Only wallets more than the rotation threshold above the minimum are
        reset. Returns the number of wallets changed.
        """
        stats = await self.rotation_stats(network, currency)
        if stats.available_wallets == 0 or stats.rotation_balance <= self.config.wallet_rotation_threshold:
            return 0

        ceiling = stats.min_shown + self.config.wallet_rotation_threshold
        async with self.session_factory() as session:
            result = await session.execute(
                update(Wallet)
                .where(
                    Wallet.network == network,
                    Wallet.currency == currency,
                    Wallet.status == WalletStatus.AVAILABLE.value,
                    Wallet.shown_count > ceiling
                )
                .values(shown_count=stats.min_shown, updated_at=self.clock.now())
            )
            await session.commit()

        self.logger.info(
            "Wallet rotation rebalanced",
            network=network,
            currency=currency,
            wallets_reset=result.rowcount,
            reset_to=stats.min_shown
        )
        return result.rowcount

    async def add_wallet(
        self,
        address: str,
        network: str,
        currency: str,
        label: Optional[str] = None
    ) -> Wallet:
        address = address.strip()
        if not address:
            raise ValidationError("Wallet address must not be empty")

        wallet = Wallet(
            address=address,
            network=network,
            currency=currency,
            label=label,
            status=WalletStatus.AVAILABLE.value,
            shown_count=0,
            last_shown_at=EPOCH,
        )
        async with self.session_factory() as session:
            session.add(wallet)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ValidationError(
                    f"Wallet {address} already exists", {"address": address}
                ) from e

        self.logger.info("Wallet added", wallet_id=wallet.id, network=network, currency=currency)
        return wallet

    async def disable_wallet(self, wallet_id: int) -> Wallet:
        """Take a wallet out of rotation. Wallets are never deleted."""
        async with self.session_factory() as session:
            wallet = await session.get(Wallet, wallet_id)
            if wallet is None:
                raise NotFoundError(f"Wallet {wallet_id} not found", {"wallet_id": wallet_id})
            wallet.status = WalletStatus.DISABLED.value
            await session.commit()

        self.logger.info("Wallet disabled", wallet_id=wallet_id)
        return wallet

    async def list_wallets(self, network: Optional[str] = None, currency: Optional[str] = None) -> List[Wallet]:
        stmt = select(Wallet).order_by(Wallet.network, Wallet.currency, Wallet.id)
        if network:
            stmt = stmt.where(Wallet.network == network)
        if currency:
            stmt = stmt.where(Wallet.currency == currency)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def pools(self) -> List[Tuple[str, str]]:
        """Distinct (network, currency) pairs present in the wallet table."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Wallet.network, Wallet.currency)
                .distinct()
                .order_by(Wallet.network, Wallet.currency)
            )
            return [(row.network, row.currency) for row in result.all()]
