import argparse
import asyncio

from loguru import logger

from tracker.core.config import get_settings
from tracker.db import init_db
from tracker.runtime import TrackerRuntime, configure_logging


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Refresh tracked Polymarket events once")
    parser.add_argument(
        "--include-resolved",
        action="store_true",
        help="Also sweep closed events ending on or after RESOLVED_SINCE",
    )
    parser.add_argument(
        "--no-save",
        action="store_true",
        help="Skip loading and saving the snapshot store",
    )
    return parser.parse_args()


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    configure_logging(settings.log_file)
    persist = settings.persist_snapshots and not args.no_save
    if persist:
        init_db()

    runtime = TrackerRuntime(settings, persist=persist)
    try:
        await runtime.load_snapshot()
        summary = await runtime.refresh.perform_full_update(
            include_resolved=args.include_resolved, save=persist
        )
    finally:
        await runtime.dispatcher.aclose()

    logger.info(
        "Refresh finished in {:.1f}s: {} active events processed{}",
        summary.duration_seconds,
        summary.active.processed,
        f", {summary.resolved.processed} resolved" if summary.resolved else "",
    )
    failed = summary.active.failed or (summary.resolved is not None and summary.resolved.failed)
    return 1 if failed else 0


def main() -> None:
    args = parse_args()
    raise SystemExit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
