"""Shared helpers for the Happen data layer: geo, slugs, schemas, logging."""
