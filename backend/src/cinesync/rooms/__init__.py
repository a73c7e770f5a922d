"""Room snapshots, join rules and the durable room directory contract."""
