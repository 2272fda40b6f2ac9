"""Source → working-copy mirror: sync engine, state migrations and scheduler."""
