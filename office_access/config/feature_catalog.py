"""
Feature catalog configuration loader.

Loads the feature catalog from config/feature_catalog.yml: the features
that exist and the feature groups they are sold / granted in. The
catalog is consumed by FeatureCatalogSeeder at deploy time.

File shape:

    features:
      - name: Create Office
        description: Create new offices
    feature_groups:
      - name: Office Management
        app_name: office-management
        is_paid: true
        features: [Create Office, Update Office]
    tokens:
      - token_name: office-management-annual
        feature_group: Office Management
        expires_in_days: 365

Usage:
    from office_access.config.feature_catalog import FeatureCatalogLoader

    catalog = FeatureCatalogLoader("config/feature_catalog.yml").get_catalog()
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)


class FeatureCatalogError(ValueError):
    """The catalog file is missing or malformed."""
    pass


@dataclass(frozen=True)
class FeatureDefinition:
    name: str
    description: Optional[str] = None
    is_active: bool = True


@dataclass(frozen=True)
class FeatureGroupDefinition:
    name: str
    app_name: str
    is_paid: bool = False
    description: Optional[str] = None
    features: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FeatureTokenDefinition:
    token_name: str
    feature_group: str
    expires_in_days: Optional[int] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class FeatureCatalog:
    features: Tuple[FeatureDefinition, ...] = ()
    feature_groups: Tuple[FeatureGroupDefinition, ...] = ()
    tokens: Tuple[FeatureTokenDefinition, ...] = ()

    def feature_names(self) -> List[str]:
        return [f.name for f in self.features]

    def get_group(self, name: str) -> Optional[FeatureGroupDefinition]:
        for group in self.feature_groups:
            if group.name == name:
                return group
        return None


def parse_catalog(raw: Dict[str, Any]) -> FeatureCatalog:
    """
    Build a FeatureCatalog from parsed YAML.

    Raises:
        FeatureCatalogError: On missing names or duplicate entries
    """
    if not isinstance(raw, dict):
        raise FeatureCatalogError("Feature catalog must be a mapping")

    features: List[FeatureDefinition] = []
    for item in raw.get("features") or []:
        if isinstance(item, str):
            item = {"name": item}
        if not item.get("name"):
            raise FeatureCatalogError(f"Feature entry without name: {item!r}")
        features.append(
            FeatureDefinition(
                name=item["name"],
                description=item.get("description"),
                is_active=bool(item.get("is_active", True)),
            )
        )

    groups: List[FeatureGroupDefinition] = []
    for item in raw.get("feature_groups") or []:
        if not item.get("name") or not item.get("app_name"):
            raise FeatureCatalogError(f"Feature group requires name and app_name: {item!r}")
        groups.append(
            FeatureGroupDefinition(
                name=item["name"],
                app_name=item["app_name"],
                is_paid=bool(item.get("is_paid", False)),
                description=item.get("description"),
                features=tuple(item.get("features") or ()),
            )
        )

    tokens: List[FeatureTokenDefinition] = []
    for item in raw.get("tokens") or []:
        if not item.get("token_name") or not item.get("feature_group"):
            raise FeatureCatalogError(
                f"Token requires token_name and feature_group: {item!r}"
            )
        expires = item.get("expires_in_days")
        tokens.append(
            FeatureTokenDefinition(
                token_name=item["token_name"],
                feature_group=item["feature_group"],
                expires_in_days=int(expires) if expires is not None else None,
                description=item.get("description"),
            )
        )

    for label, names in (
        ("feature", [f.name for f in features]),
        ("feature group", [g.name for g in groups]),
        ("feature group app_name", [g.app_name for g in groups]),
        ("token", [t.token_name for t in tokens]),
    ):
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise FeatureCatalogError(f"Duplicate {label} entries: {duplicates}")

    return FeatureCatalog(
        features=tuple(features),
        feature_groups=tuple(groups),
        tokens=tuple(tokens),
    )


class FeatureCatalogLoader:
    """
    Thread-safe loader for the YAML feature catalog.

    The file is read lazily on first access and cached until reload().
    """

    def __init__(self, config_path: Optional[str] = None):
        self._config_path = config_path
        self._catalog: Optional[FeatureCatalog] = None
        self._load_lock = Lock()

    def _resolve_path(self) -> Path:
        if self._config_path:
            return Path(self._config_path)

        candidates = [
            Path(os.getcwd()) / "config" / "feature_catalog.yml",
            Path(__file__).parent.parent.parent / "config" / "feature_catalog.yml",
        ]
        for path in candidates:
            if path.exists():
                return path

        raise FileNotFoundError(
            f"feature_catalog.yml not found in any of: {[str(p) for p in candidates]}"
        )

    def _load(self) -> FeatureCatalog:
        path = self._resolve_path()
        logger.info("Loading feature catalog", extra={"path": str(path)})
        try:
            with open(path, "r") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise FeatureCatalogError(f"Invalid YAML in {path}: {e}")

        catalog = parse_catalog(raw)
        logger.info(
            "Loaded feature catalog",
            extra={
                "features": len(catalog.features),
                "feature_groups": len(catalog.feature_groups),
                "tokens": len(catalog.tokens),
            },
        )
        return catalog

    def get_catalog(self) -> FeatureCatalog:
        if self._catalog is None:
            with self._load_lock:
                if self._catalog is None:
                    self._catalog = self._load()
        return self._catalog

    def reload(self) -> FeatureCatalog:
        with self._load_lock:
            self._catalog = self._load()
        return self._catalog
