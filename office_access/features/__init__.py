"""Granular feature registry."""

from office_access.features.registry import FeatureKey, FeatureRegistry, GranularFeatureEntry

__all__ = ["FeatureKey", "FeatureRegistry", "GranularFeatureEntry"]
