"""Shared models, errors, utilities and persistence for opinion map services."""
