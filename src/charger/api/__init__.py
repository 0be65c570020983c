"""HTTP API for charger."""
