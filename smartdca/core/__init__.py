"""Core infrastructure: config-backed persistence, events, locks and logging."""
