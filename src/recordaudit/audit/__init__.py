"""Deterministic audit engine, category registry and safety filter."""
