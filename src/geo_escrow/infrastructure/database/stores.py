"""SQL implementations of the TransferStore, AuditSink, DestinationResolver
and PayeeDirectory ports.

Each call runs in its own short transaction taken from the session factory:

    - A conditional status update is committed the moment it succeeds, so the
      compare-and-swap is visible to concurrent requests immediately.
    - An audit append is durable before the engine raises a denial, even
      though the request itself ends in an error response.

Objects handed back are detached (expire_on_commit=False) and read-only as
far as callers are concerned; every write goes through a store method.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from geo_escrow.domain.enums import AuditEventType
from geo_escrow.domain.ports import ANY_CLAIM, AuditRecord, PayeeAccountInfo
from geo_escrow.infrastructure.database.orm_models import PayeeAccount
from geo_escrow.infrastructure.database.repositories import (
    AuditRepository,
    PayeeAccountRepository,
    TransferRepository,
)
from geo_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import uuid
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from geo_escrow.domain.enums import TransferStatus
    from geo_escrow.infrastructure.database.orm_models import Transfer

logger = get_logger(__name__)


class SqlTransferStore:
    """TransferStore backed by the transfers table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, transfer: Transfer) -> Transfer:
        async with self._session_factory() as session, session.begin():
            return await TransferRepository(session).create(transfer)

    async def get_by_id(self, transfer_id: uuid.UUID) -> Transfer | None:
        async with self._session_factory() as session:
            return await TransferRepository(session).get_by_id(transfer_id)

    async def find_by_payment_reference(self, reference: str) -> Transfer | None:
        async with self._session_factory() as session:
            return await TransferRepository(session).find_by_payment_reference(reference)

    async def conditional_update_status(
        self,
        transfer_id: uuid.UUID,
        expected_status: TransferStatus,
        new_status: TransferStatus,
        *,
        expected_claim: Any = ANY_CLAIM,
        **fields: Any,
    ) -> bool:
        async with self._session_factory() as session, session.begin():
            swapped = await TransferRepository(session).conditional_update_status(
                transfer_id,
                expected_status,
                new_status,
                expected_claim=expected_claim,
                **fields,
            )
        logger.debug(
            "store.conditional_update",
            transfer_id=str(transfer_id),
            expected=expected_status.value,
            new=new_status.value,
            swapped=swapped,
        )
        return swapped

    async def update_fields(self, transfer_id: uuid.UUID, **fields: Any) -> None:
        async with self._session_factory() as session, session.begin():
            await TransferRepository(session).update_fields(transfer_id, **fields)

    async def claim_release(
        self,
        transfer_id: uuid.UUID,
        attempt_id: str,
        now: datetime,
        stale_before: datetime,
    ) -> bool:
        async with self._session_factory() as session, session.begin():
            return await TransferRepository(session).claim_release(
                transfer_id, attempt_id, now, stale_before
            )

    async def release_claim(self, transfer_id: uuid.UUID, attempt_id: str) -> bool:
        async with self._session_factory() as session, session.begin():
            return await TransferRepository(session).release_claim(transfer_id, attempt_id)

    async def find_expirable(self, cutoff: datetime, stale_before: datetime) -> list[Transfer]:
        async with self._session_factory() as session:
            return await TransferRepository(session).find_expirable(cutoff, stale_before)

    async def find_refund_pending(self) -> list[Transfer]:
        async with self._session_factory() as session:
            return await TransferRepository(session).find_refund_pending()


class SqlAuditSink:
    """AuditSink that commits every entry on its own."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append(self, record: AuditRecord) -> None:
        async with self._session_factory() as session, session.begin():
            await AuditRepository(session).append(record)

    async def list_for_transfer(self, transfer_id: uuid.UUID) -> list[AuditRecord]:
        async with self._session_factory() as session:
            entries = await AuditRepository(session).get_by_transfer(transfer_id)
        return [
            AuditRecord(
                event_type=AuditEventType(e.event_type),
                transfer_id=e.transfer_id,
                actor_id=e.actor_id,
                timestamp=e.occurred_at,
                metadata=e.metadata_json or {},
            )
            for e in entries
        ]


class SqlDestinationResolver:
    """DestinationResolver and PayeeDirectory over the payee_accounts table.

    A destination only resolves once the account is onboarded (the gateway
    reported it can receive payouts).
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def resolve(self, payee_identifier: str) -> str | None:
        async with self._session_factory() as session:
            account = await PayeeAccountRepository(session).get_by_identifier(payee_identifier)
        if account is None or not account.onboarded:
            return None
        return account.destination_reference

    async def resolve_principal(self, payee_identifier: str) -> str | None:
        async with self._session_factory() as session:
            account = await PayeeAccountRepository(session).get_by_identifier(payee_identifier)
        return account.principal_id if account else None

    async def activate(self, account_reference: str) -> bool:
        async with self._session_factory() as session, session.begin():
            return await PayeeAccountRepository(session).mark_onboarded(account_reference)

    async def get_account(self, principal_id: str) -> PayeeAccountInfo | None:
        async with self._session_factory() as session:
            account = await PayeeAccountRepository(session).get_by_principal_id(principal_id)
        return _account_info(account) if account else None

    async def get_account_by_email(self, email: str) -> PayeeAccountInfo | None:
        async with self._session_factory() as session:
            account = await PayeeAccountRepository(session).get_by_email(email)
        return _account_info(account) if account else None

    async def register(
        self, principal_id: str, email: str, destination_reference: str
    ) -> PayeeAccountInfo:
        """Create the payee's account row, or attach the destination to an existing one."""
        async with self._session_factory() as session, session.begin():
            repo = PayeeAccountRepository(session)
            account = await repo.get_by_principal_id(principal_id)
            if account is None:
                account = await repo.create(
                    PayeeAccount(
                        principal_id=principal_id,
                        email=email.lower(),
                        destination_reference=destination_reference,
                        onboarded=False,
                    )
                )
            elif account.destination_reference is None:
                await repo.set_destination(principal_id, destination_reference)
                account.destination_reference = destination_reference
        logger.info(
            "payee.registered",
            principal_id=principal_id,
            destination_reference=account.destination_reference,
        )
        return _account_info(account)


def _account_info(account: PayeeAccount) -> PayeeAccountInfo:
    return PayeeAccountInfo(
        principal_id=account.principal_id,
        email=account.email,
        destination_reference=account.destination_reference,
        onboarded=account.onboarded,
    )
