"""Persistence — append-only observation log and state snapshots."""
