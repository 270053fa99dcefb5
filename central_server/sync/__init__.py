"""Instant entity sync from the central server to station nodes."""
