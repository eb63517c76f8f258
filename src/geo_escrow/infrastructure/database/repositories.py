"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the stores in stores.py. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, or_, select, update

from geo_escrow.domain.enums import TransferStatus
from geo_escrow.domain.ports import ANY_CLAIM, AuditRecord
from geo_escrow.infrastructure.database.orm_models import (
    AuditEntry,
    PayeeAccount,
    Transfer,
)

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession


class TransferRepository:
    """Data access for transfers."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, transfer: Transfer) -> Transfer:
        """Insert a new transfer."""
        self._session.add(transfer)
        await self._session.flush()
        return transfer

    async def get_by_id(self, transfer_id: uuid.UUID) -> Transfer | None:
        """Fetch a transfer by its UUID."""
        result = await self._session.execute(
            select(Transfer).where(Transfer.id == transfer_id)
        )
        return result.scalar_one_or_none()

    async def find_by_payment_reference(self, reference: str) -> Transfer | None:
        """Fetch the transfer funded by a gateway payment reference."""
        result = await self._session.execute(
            select(Transfer).where(Transfer.payment_reference == reference)
        )
        return result.scalar_one_or_none()

    async def conditional_update_status(
        self,
        transfer_id: uuid.UUID,
        expected_status: TransferStatus,
        new_status: TransferStatus,
        expected_claim: Any = ANY_CLAIM,
        **fields: Any,
    ) -> bool:
        """Compare-and-swap the status in a single UPDATE.

        Returns True only if the row still had ``expected_status`` (and the
        expected release claim, when given) at write time.
        """
        conditions = [
            Transfer.id == transfer_id,
            Transfer.status == expected_status.value,
        ]
        if expected_claim is not ANY_CLAIM:
            if expected_claim is None:
                conditions.append(Transfer.release_attempt_id.is_(None))
            else:
                conditions.append(Transfer.release_attempt_id == expected_claim)

        result = await self._session.execute(
            update(Transfer)
            .where(*conditions)
            .values(status=new_status.value, updated_at=datetime.now(UTC), **fields)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def update_fields(self, transfer_id: uuid.UUID, **fields: Any) -> None:
        """Write non-status columns (references, resolved payee id)."""
        await self._session.execute(
            update(Transfer)
            .where(Transfer.id == transfer_id)
            .values(updated_at=datetime.now(UTC), **fields)
            .execution_options(synchronize_session=False)
        )

    async def claim_release(
        self,
        transfer_id: uuid.UUID,
        attempt_id: str,
        now: datetime,
        stale_before: datetime,
    ) -> bool:
        """Take the release claim on a held transfer if nobody holds a live one."""
        result = await self._session.execute(
            update(Transfer)
            .where(
                Transfer.id == transfer_id,
                Transfer.status == TransferStatus.HELD.value,
                or_(
                    Transfer.release_attempt_id.is_(None),
                    Transfer.release_claimed_at < stale_before,
                ),
            )
            .values(release_attempt_id=attempt_id, release_claimed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release_claim(self, transfer_id: uuid.UUID, attempt_id: str) -> bool:
        """Drop a claim, but only if ``attempt_id`` still holds it."""
        result = await self._session.execute(
            update(Transfer)
            .where(
                Transfer.id == transfer_id,
                Transfer.release_attempt_id == attempt_id,
            )
            .values(release_attempt_id=None, release_claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def find_expirable(
        self, cutoff: datetime, stale_before: datetime
    ) -> list[Transfer]:
        """Held transfers whose time-lock elapsed before ``cutoff``, unclaimed."""
        result = await self._session.execute(
            select(Transfer)
            .where(
                Transfer.status == TransferStatus.HELD.value,
                Transfer.release_not_before.is_not(None),
                Transfer.release_not_before <= cutoff,
                or_(
                    Transfer.release_attempt_id.is_(None),
                    Transfer.release_claimed_at < stale_before,
                ),
            )
            .order_by(Transfer.release_not_before.asc())
        )
        return list(result.scalars().all())

    async def find_refund_pending(self) -> list[Transfer]:
        """Funded transfers returned to the payer whose refund never went through."""
        result = await self._session.execute(
            select(Transfer)
            .where(
                Transfer.status.in_(
                    [TransferStatus.EXPIRED.value, TransferStatus.CANCELED.value]
                ),
                and_(
                    Transfer.held_at.is_not(None),
                    Transfer.payment_reference.is_not(None),
                    Transfer.refund_reference.is_(None),
                ),
            )
            .order_by(Transfer.resolved_at.asc())
        )
        return list(result.scalars().all())


class AuditRepository:
    """Data access for the append-only audit log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(self, record: AuditRecord) -> AuditEntry:
        """Append a new audit entry. This is the ONLY write operation allowed."""
        entry = AuditEntry(
            transfer_id=record.transfer_id,
            event_type=record.event_type.value,
            actor_id=record.actor_id,
            metadata_json=record.metadata or None,
            occurred_at=record.timestamp,
        )
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def get_by_transfer(self, transfer_id: uuid.UUID) -> list[AuditEntry]:
        """Fetch all entries for a transfer in chronological order."""
        result = await self._session.execute(
            select(AuditEntry)
            .where(AuditEntry.transfer_id == transfer_id)
            .order_by(AuditEntry.occurred_at.asc())
        )
        return list(result.scalars().all())


class PayeeAccountRepository:
    """Data access for payee settlement accounts."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, account: PayeeAccount) -> PayeeAccount:
        self._session.add(account)
        await self._session.flush()
        return account

    async def get_by_principal_id(self, principal_id: str) -> PayeeAccount | None:
        result = await self._session.execute(
            select(PayeeAccount).where(PayeeAccount.principal_id == principal_id)
        )
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> PayeeAccount | None:
        result = await self._session.execute(
            select(PayeeAccount).where(PayeeAccount.email == email.lower())
        )
        return result.scalar_one_or_none()

    async def get_by_identifier(self, identifier: str) -> PayeeAccount | None:
        """Look up by principal id first, then by case-insensitive email."""
        account = await self.get_by_principal_id(identifier)
        if account is None:
            account = await self.get_by_email(identifier)
        return account

    async def set_destination(self, principal_id: str, destination_reference: str) -> bool:
        """Attach a connected account to a payee that has none yet."""
        result = await self._session.execute(
            update(PayeeAccount)
            .where(
                and_(
                    PayeeAccount.principal_id == principal_id,
                    PayeeAccount.destination_reference.is_(None),
                )
            )
            .values(destination_reference=destination_reference, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_onboarded(self, destination_reference: str) -> bool:
        """Flag the account owning ``destination_reference`` as able to receive funds."""
        result = await self._session.execute(
            update(PayeeAccount)
            .where(PayeeAccount.destination_reference == destination_reference)
            .values(onboarded=True, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
