"""Memento loop: plan, implement, review and commit with git as the only memory."""
