"""Standup: concurrent status reports followed by a sequential blocker sync."""
