"""Outbound relay: visitor messages to the owner."""
