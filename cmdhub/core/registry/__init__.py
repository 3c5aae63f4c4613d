"""Discord registry transport and the reconciliation engine.

This module provides:
- DiscordRegistryClient: REST transport for application commands
- Reconciler: sync, deploy and orphan handling between the store and Discord
- SyncResult, DeployResult, RestoreOutcome, Orphan: operation results
"""

from cmdhub.core.registry.client import DiscordRegistryClient
from cmdhub.core.registry.reconciler import (
    DeployResult,
    Orphan,
    Reconciler,
    RestoreOutcome,
    SyncResult,
)

__all__ = [
    "DiscordRegistryClient",
    "Reconciler",
    "SyncResult",
    "DeployResult",
    "RestoreOutcome",
    "Orphan",
]
