#!/usr/bin/env python3
"""
Initial Data Loading Script for the Reconciliation Service

Loads initial reference data into the database including:
- Database tables (optional, for development databases)
- Seed payment platforms (digital wallets, banks)
- Sample CSV import (optional, for development)

Usage:
    python load_initial_data.py [--create-tables] [--with-samples] [--csv PATH]
"""

import sys
import argparse
import logging
from pathlib import Path
from typing import Optional

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent))

from sqlalchemy import select
from sqlalchemy.orm import Session

from config_manager import ConfigManager
from database.connection import DatabaseSessionProvider, DatabaseSettings
from database.import_service import DataImportService
from database.models import Platform, PlatformType

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


SEED_PLATFORMS = [
    {"platform_name": "Nequi", "platform_type": PlatformType.DIGITAL_WALLET},
    {"platform_name": "Daviplata", "platform_type": PlatformType.DIGITAL_WALLET},
    {"platform_name": "Bancolombia", "platform_type": PlatformType.BANK},
    {"platform_name": "Banco de Bogotá", "platform_type": PlatformType.BANK},
    {"platform_name": "BBVA Colombia", "platform_type": PlatformType.BANK},
]


def load_platforms(session: Session) -> int:
    """Load the seed payment platforms. Existing platforms are left as they are."""
    created = 0
    for platform_data in SEED_PLATFORMS:
        existing = session.execute(
            select(Platform).where(Platform.platform_name == platform_data["platform_name"])
        ).scalar_one_or_none()
        if not existing:
            session.add(Platform(**platform_data, is_active=True))
            created += 1
            logger.info(f"Created platform: {platform_data['platform_name']}")
        else:
            logger.info(f"Platform already exists: {platform_data['platform_name']}")

    return created


def load_initial_data(
    provider: DatabaseSessionProvider,
    create_tables: bool = False,
    sample_csv: Optional[Path] = None,
    default_platform_type: str = PlatformType.DIGITAL_WALLET.value,
) -> dict:
    """
    Seed a database.

    Returns:
        Counts of what was loaded
    """
    summary = {"platforms_created": 0, "import": None}

    if create_tables:
        logger.info("[1/3] Creating tables...")
        provider.create_tables()
    else:
        logger.info("[1/3] Skipping table creation (use --create-tables to include)")

    logger.info("[2/3] Loading platforms...")
    with provider.session_scope() as session:
        summary["platforms_created"] = load_platforms(session)
    logger.info(f"Platforms created: {summary['platforms_created']}")

    if sample_csv is not None:
        logger.info(f"[3/3] Importing sample data from {sample_csv}...")
        service = DataImportService(provider.get_unit_of_work, default_platform_type)
        stats = service.import_csv_file(sample_csv)
        summary["import"] = stats.to_dict()
        for error in stats.errors:
            logger.warning(error)
    else:
        logger.info("[3/3] Skipping sample data (use --with-samples to include)")

    return summary


def main():
    parser = argparse.ArgumentParser(description="Load initial data into the reconciliation database")
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("--create-tables", action="store_true", help="Create missing tables first")
    parser.add_argument("--with-samples", action="store_true", help="Import the sample CSV for development")
    parser.add_argument("--csv", help="CSV file to import (implies --with-samples)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    config = ConfigManager.create(args.config)

    sample_csv = None
    if args.csv:
        sample_csv = Path(args.csv)
    elif args.with_samples:
        sample_csv = config.resolve_sample_csv_path()
    if sample_csv is not None and not sample_csv.exists():
        parser.error(f"Sample CSV not found: {sample_csv}")

    logger.info("=" * 50)
    logger.info("Reconciliation Service Initial Data Loading")
    logger.info("=" * 50)

    provider = DatabaseSessionProvider(DatabaseSettings.from_config(config.database))
    try:
        provider.init()
        load_initial_data(
            provider,
            create_tables=args.create_tables,
            sample_csv=sample_csv,
            default_platform_type=config.data_import.default_platform_type,
        )
        logger.info("=" * 50)
        logger.info("Initial data loading complete!")
        logger.info("=" * 50)
    except Exception as e:
        logger.error(f"Error loading initial data: {e}")
        raise
    finally:
        provider.close()


if __name__ == "__main__":
    main()
