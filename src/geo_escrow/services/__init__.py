"""Application services — use case orchestration."""

from geo_escrow.services.audit import AuditLog
from geo_escrow.services.escrow_engine import CreatedTransfer, EscrowEngine, ReleaseOutcome
from geo_escrow.services.expiry_sweeper import ExpirySweeper
from geo_escrow.services.webhook_ingestor import WebhookIngestor

__all__ = [
    "AuditLog",
    "CreatedTransfer",
    "EscrowEngine",
    "ExpirySweeper",
    "ReleaseOutcome",
    "WebhookIngestor",
]
