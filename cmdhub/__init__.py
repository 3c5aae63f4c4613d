"""Discord slash command registry with drift reconciliation."""
