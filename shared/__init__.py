"""Shared models, logging and metrics used across the decision engine."""
