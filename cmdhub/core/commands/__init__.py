"""Command module for slash command definitions.

This module provides:
- Command: Data model for a slash command and its Discord mirror
- CommandFilters: Query shape for listing commands
- CommandRepository: SQLite repository for command persistence
- CommandService: Validated, cached and rate limited store operations
"""

from cmdhub.core.commands.models import (
    Command,
    CommandCategory,
    CommandFilters,
    DeploymentStatus,
)
from cmdhub.core.commands.repository import CommandRepository
from cmdhub.core.commands.service import CommandService, RestoreResult

__all__ = [
    "Command",
    "CommandCategory",
    "CommandFilters",
    "DeploymentStatus",
    "CommandRepository",
    "CommandService",
    "RestoreResult",
]
