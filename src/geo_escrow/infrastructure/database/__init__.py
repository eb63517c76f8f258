"""Database infrastructure — engine, ORM models, repositories and stores."""

from geo_escrow.infrastructure.database.engine import (
    close_db,
    get_session_factory,
    init_db,
)
from geo_escrow.infrastructure.database.orm_models import (
    AuditEntry,
    Base,
    PayeeAccount,
    Transfer,
)
from geo_escrow.infrastructure.database.repositories import (
    AuditRepository,
    PayeeAccountRepository,
    TransferRepository,
)
from geo_escrow.infrastructure.database.stores import (
    SqlAuditSink,
    SqlDestinationResolver,
    SqlTransferStore,
)

__all__ = [
    "Base",
    "Transfer",
    "AuditEntry",
    "PayeeAccount",
    "TransferRepository",
    "AuditRepository",
    "PayeeAccountRepository",
    "SqlTransferStore",
    "SqlAuditSink",
    "SqlDestinationResolver",
    "get_session_factory",
    "init_db",
    "close_db",
]
