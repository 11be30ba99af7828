"""spatial — Geometry helpers for provider queries."""
