"""Core command registry: store, cache, rate limiting and reconciliation."""
