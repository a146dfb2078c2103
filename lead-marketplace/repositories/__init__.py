"""Persistence adapters for the lead marketplace."""
