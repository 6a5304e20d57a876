"""
Check that the configured R2 bucket is reachable with the current credentials.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from botocore.exceptions import BotoCoreError, ClientError

from gallery.config import get_settings
from gallery.storage import R2StorageClient

logger = logging.getLogger(__name__)


def _describe(value: str | None) -> str:
    return f"present (length {len(value)})" if value else "missing"


def main() -> int:
    parser = argparse.ArgumentParser(description="R2 storage connectivity check")
    parser.add_argument(
        "-p",
        "--prefix",
        type=str,
        default="",
        help="Only list keys under this prefix",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(message)s")
    settings = get_settings()

    logger.info("Account ID: %s", "present" if settings.r2_account_id else "missing")
    logger.info("Access key ID: %s", _describe(settings.r2_access_key_id))
    logger.info("Secret access key: %s", _describe(settings.r2_secret_access_key))
    logger.info("Bucket: %s", settings.r2_bucket_name)

    required = (
        settings.r2_account_id,
        settings.r2_access_key_id,
        settings.r2_secret_access_key,
        settings.r2_bucket_name,
    )
    if not all(required):
        logger.error("Missing required R2 settings")
        return 1

    storage = R2StorageClient(
        account_id=settings.r2_account_id,
        bucket=settings.r2_bucket_name,
        access_key_id=settings.r2_access_key_id,
        secret_access_key=settings.r2_secret_access_key,
        public_base_url=settings.r2_public_url,
    )
    try:
        keys = storage.list_keys(prefix=args.prefix, limit=1)
    except (BotoCoreError, ClientError):
        logger.exception("Could not list objects in bucket %s", settings.r2_bucket_name)
        return 1

    logger.info("Bucket is accessible")
    if keys:
        logger.info("Found object %s", keys[0])
    else:
        logger.info("Bucket is empty")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
