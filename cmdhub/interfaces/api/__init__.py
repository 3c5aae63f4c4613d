"""HTTP admin API for the command registry."""
