"""Best-effort Redis cache for instant views."""
