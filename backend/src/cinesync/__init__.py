"""Room synchronization and signaling core for shared movie sessions."""
