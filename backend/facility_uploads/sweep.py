"""Orphan sweep command.

Removes resumable upload sessions nobody has touched for longer than the
age threshold. Nothing in the API process schedules this; run it from cron
or a systemd timer:

    facility-uploads-sweep --max-age-hours 24
"""
import argparse
import asyncio
import logging

from facility_uploads.config import settings
from facility_uploads.dependencies import get_blob_store
from facility_uploads.services.upload_sessions import UploadSessionStore

logger = logging.getLogger(__name__)


async def sweep(max_age_hours: float) -> list[str]:
    store = UploadSessionStore(get_blob_store(), chunk_size=settings.CHUNK_SIZE_BYTES)
    return await store.sweep_orphans(max_age_hours)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Delete abandoned resumable upload sessions.")
    parser.add_argument(
        "--max-age-hours",
        type=float,
        default=settings.ORPHAN_MAX_AGE_HOURS,
        help="Sessions untouched for longer than this are removed (default: %(default)s)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    swept = asyncio.run(sweep(args.max_age_hours))
    logger.info(f"Orphan sweep finished: {len(swept)} session(s) removed")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
