"""Pydantic domain models: entities, profiles, scores, recommendations."""
