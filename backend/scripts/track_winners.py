import argparse
import asyncio
import json

from loguru import logger

from ingestion.errors import DispatchError
from ingestion.transfers import parse_position_id
from tracker.core.config import get_settings
from tracker.db import init_db
from tracker.runtime import TrackerRuntime, configure_logging
from tracker.services.balance_service import BalanceReconstructor, ReconstructionError
from tracker.services.winner_service import (
    AmbiguousResolutionError,
    MarketNotFoundError,
    PositionNotFoundError,
    WinnerService,
)


def _position_id(value: str) -> str:
    try:
        parse_position_id(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc
    return value.strip()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Reconstruct the holders of a market's winning outcome token"
    )
    parser.add_argument("--market-id", required=True, help="Polymarket market identifier")
    parser.add_argument(
        "--outcome",
        default=None,
        help="Outcome label to track (defaults to the market's resolved winner)",
    )
    parser.add_argument(
        "--cutoff",
        type=int,
        default=None,
        help="Block number to reconstruct balances at (defaults to the chain head)",
    )
    parser.add_argument(
        "--position-id",
        default=None,
        type=_position_id,
        help="ERC-1155 position id; skips the snapshot lookup when given with --outcome",
    )
    parser.add_argument(
        "--window-size",
        type=int,
        default=None,
        help="Blocks per eth_getLogs query (overrides TRANSFER_WINDOW_SIZE)",
    )
    return parser.parse_args()


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    configure_logging(settings.log_file)
    needs_snapshot = args.position_id is None or args.outcome is None
    if needs_snapshot and settings.persist_snapshots:
        init_db()

    runtime = TrackerRuntime(settings, persist=needs_snapshot and settings.persist_snapshots)
    winners = runtime.winners
    if args.window_size:
        reconstructor = BalanceReconstructor(
            runtime.transfers,
            window_size=args.window_size,
            start_sequence=settings.transfer_start_block,
        )
        winners = WinnerService(reconstructor, state=runtime.state, chain=runtime.transfers)

    try:
        if needs_snapshot:
            await runtime.load_snapshot()
        record = await winners.track_market_winners(
            args.market_id,
            args.outcome,
            args.cutoff,
            position_id=args.position_id,
        )
    except (MarketNotFoundError, PositionNotFoundError, AmbiguousResolutionError) as exc:
        logger.error("Cannot track winners: {}", exc)
        return 2
    except (ReconstructionError, DispatchError) as exc:
        logger.error("Winner reconstruction failed: {}", exc)
        return 1
    finally:
        await runtime.dispatcher.aclose()

    print(json.dumps(record.to_dict(), indent=2))
    return 0


def main() -> None:
    args = parse_args()
    raise SystemExit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
