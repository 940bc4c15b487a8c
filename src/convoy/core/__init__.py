"""Shared primitives for convoy: structured logging, errors, retry."""
