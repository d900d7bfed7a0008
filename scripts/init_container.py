#!/usr/bin/env python3
"""
Create the destination container if it does not exist.

The pipeline also does this before every upload; running it once up front
surfaces credential problems before the watcher starts.

Usage:
    python scripts/init_container.py
"""

import sys

from loguru import logger

from app.utils.blob_client import create_storage_client
from app.utils.config import get_settings
from domains.transfer.errors import TransferError


def main():
    """Main entry point."""
    settings = get_settings()
    logger.info(f"Ensuring container '{settings.container_name}' exists")

    client = create_storage_client(settings)
    try:
        created = client.ensure_container()
    except TransferError as e:
        logger.error(f"Container initialization failed: {e}")
        sys.exit(1)
    finally:
        client.close()

    if created:
        logger.success(f"Container '{settings.container_name}' created")
    else:
        logger.info(f"Container '{settings.container_name}' already exists")


if __name__ == "__main__":
    main()
