"""
Feature Catalog Seed Script.

Creates the features, feature groups and tokens listed in the YAML
feature catalog. Safe to run on every deploy: existing names are skipped.

Usage:
    python -m office_access.jobs.seed_feature_catalog
    python -m office_access.jobs.seed_feature_catalog --dry-run
    python -m office_access.jobs.seed_feature_catalog --catalog path/to/catalog.yml

Configuration:
- DATABASE_URL: SQLAlchemy URL (required)
- FEATURE_CATALOG_PATH: Catalog file (default: config/feature_catalog.yml)
- LOG_LEVEL: Log level (default: INFO)
"""

import argparse
import logging
import sys
from typing import List, Optional

from sqlalchemy.orm import Session

from office_access.config.feature_catalog import FeatureCatalogLoader
from office_access.config.settings import AccessSettings
from office_access.database.session import get_db_session_sync
from office_access.entitlements.seeder import FeatureCatalogSeeder, SeedStats

logger = logging.getLogger(__name__)


def seed_feature_catalog(
    db: Optional[Session] = None,
    catalog_path: Optional[str] = None,
    settings: Optional[AccessSettings] = None,
    dry_run: bool = False,
) -> SeedStats:
    """
    Load the catalog and seed it in one transaction.

    A session may be passed in (tests); otherwise one is opened and
    closed for the run. With dry_run the changes are rolled back.

    Raises:
        FeatureCatalogError: Malformed catalog
        FileNotFoundError: Catalog file missing
    """
    settings = settings or AccessSettings.from_env()
    path = catalog_path or settings.feature_catalog_path
    catalog = FeatureCatalogLoader(path).get_catalog()

    owns_session = db is None
    db_gen = None
    if owns_session:
        db_gen = get_db_session_sync()
        db = next(db_gen)

    try:
        stats = FeatureCatalogSeeder(db).seed(catalog)
        if dry_run:
            db.rollback()
            logger.info("Dry run, feature catalog changes rolled back", extra=stats.to_dict())
        else:
            db.commit()
            logger.info("Feature catalog seeded", extra={"path": str(path), **stats.to_dict()})
        return stats
    except Exception:
        db.rollback()
        raise
    finally:
        if owns_session:
            db_gen.close()


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        description="Seed the feature catalog into the database",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m office_access.jobs.seed_feature_catalog              # Seed catalog
  python -m office_access.jobs.seed_feature_catalog --dry-run    # Preview without saving
        """,
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Seed inside a transaction and roll it back",
    )
    parser.add_argument(
        "--catalog",
        type=str,
        help="Catalog file (overrides FEATURE_CATALOG_PATH)",
    )
    args = parser.parse_args(argv)

    settings = AccessSettings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        seed_feature_catalog(
            catalog_path=args.catalog,
            settings=settings,
            dry_run=args.dry_run,
        )
    except Exception as e:
        logger.error(f"Feature catalog seeding failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
