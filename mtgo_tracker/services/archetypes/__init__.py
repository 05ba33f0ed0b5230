"""Archetype back-fill."""

from mtgo_tracker.services.archetypes.matcher import (
    ArchetypeMatcher,
    PlayerArchetype,
    resolve_archetype,
)

__all__ = ["ArchetypeMatcher", "PlayerArchetype", "resolve_archetype"]
