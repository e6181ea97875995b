"""Notifications module — in-app inbox and post-commit outbox dispatch."""
