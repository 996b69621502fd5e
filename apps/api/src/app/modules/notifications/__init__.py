"""Notifications module - transactional outbox for workflow emails."""
