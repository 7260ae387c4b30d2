"""
Wall-clock sweep passes.

Each pass enumerates its candidates once and then drives every candidate
through the same engine entry point a user call would take. A candidate
that fails is logged and counted; the pass moves on. Only a failure to
enumerate candidates propagates.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Awaitable, Callable, List

from auction_engine.models.entities.auctions import Auction

from .errors import AuctionNotActive, AuctionNotScheduled

if TYPE_CHECKING:
    from auction_engine.engine import AuctionEngine

logger = logging.getLogger(__name__)

ENDING_SOON_WINDOW_START = timedelta(hours=1)
ENDING_SOON_WINDOW_END = timedelta(hours=2)


@dataclass
class SweepResult:
    started_count: int = 0
    ended_count: int = 0
    failed_count: int = 0
    reconciled_count: int = 0


async def _drive(
    label: str,
    candidates: List[Auction],
    transition: Callable[[str], Awaitable[object]],
    result: SweepResult,
) -> int:
    done = 0
    for auction in candidates:
        try:
            await transition(auction.id)
            done += 1
        except (AuctionNotScheduled, AuctionNotActive) as e:
            # Someone else already moved it
            logger.debug(f"Sweep {label} skipped auction {auction.id}: {e.message}")
        except Exception:
            result.failed_count += 1
            logger.error(f"Sweep {label} failed for auction {auction.id}", exc_info=True)
    return done


async def run_sweep(engine: "AuctionEngine") -> SweepResult:
    """Promote due auctions, retire expired ones, then finish interrupted settlements."""
    result = SweepResult()
    store = engine.store

    due_to_start = await store.auctions_due_to_start(engine.clock())
    result.started_count = await _drive("start", due_to_start, engine.start, result)

    due_to_end = await store.auctions_due_to_end(engine.clock())
    result.ended_count = await _drive("end", due_to_end, engine.end, result)

    pending = await store.auctions_needing_reconciliation()
    result.reconciled_count = await _drive("reconcile", pending, engine.reconcile, result)

    if result.started_count or result.ended_count or result.failed_count or result.reconciled_count:
        logger.info(
            f"Sweep done: started={result.started_count} ended={result.ended_count} "
            f"reconciled={result.reconciled_count} failed={result.failed_count}"
        )
    return result


async def run_ending_soon_sweep(
    engine: "AuctionEngine",
    window_start: timedelta = ENDING_SOON_WINDOW_START,
    window_end: timedelta = ENDING_SOON_WINDOW_END,
) -> int:
    """Notify bidders of active auctions ending between now+start and now+end.

    Returns the number of auctions notified.
    """
    now = engine.clock()
    auctions = await engine.store.auctions_ending_between(now + window_start, now + window_end)

    notified = 0
    for auction in auctions:
        try:
            await engine.notify_ending_soon(auction)
            notified += 1
        except Exception:
            logger.error(f"Ending-soon notification failed for auction {auction.id}", exc_info=True)

    logger.info(f"Ending-soon sweep: notified {notified} of {len(auctions)} auctions")
    return notified
