"""
Auction emails.

One short template per event type, each linking to the auction page. The
event carries the user ids to address; email addresses are looked up in
the user records. A failure for one recipient does not stop the others.
Template bodies return their paragraphs already escaped; ``render`` wraps
each one in ``<p>``.
"""

from html import escape
from typing import Callable, Dict, List, NamedTuple, Optional

from auction_engine.clients.mail import MailClient
from auction_engine.models.store.base import AuctionStore
from auction_engine.utils import log

from .base import Notifier
from .events import AuctionEvent

logger = log.get_logger(__name__)


class EmailTemplate(NamedTuple):
    subject: str
    heading: str
    body: Callable[[AuctionEvent], List[str]]
    button: str
    color: str


def _amount(value) -> str:
    return escape(f"${value}") if value is not None else "no bids"


def _title(e: AuctionEvent) -> str:
    return escape(f'"{e.product.title}"', quote=False)


def _ended_body(e: AuctionEvent) -> List[str]:
    if e.winner:
        return [f"The auction for {_title(e)} has ended.", f"Winning bid: {_amount(e.winner.amount)}"]
    return [
        f"The auction for {_title(e)} has ended without a sale.",
        f"Final bid: {_amount(e.current_bid)}",
    ]


def _restarted_body(e: AuctionEvent) -> List[str]:
    return [
        f"The auction for {_title(e)} has been restarted.",
        f"<strong>New Start Time:</strong> {e.start_time:%Y-%m-%d %H:%M} UTC",
        f"<strong>New End Time:</strong> {e.end_time:%Y-%m-%d %H:%M} UTC",
        f"<strong>Starting Price:</strong> {_amount(e.starting_price)}",
    ]


TEMPLATES: Dict[str, EmailTemplate] = {
    "started": EmailTemplate(
        subject="Auction Started",
        heading="Your Auction Has Started!",
        body=lambda e: [f"The auction for {_title(e)} is now live and accepting bids."],
        button="View Auction",
        color="#1976d2",
    ),
    "ending_soon": EmailTemplate(
        subject="Auction Ending Soon",
        heading="Auction Ending Soon!",
        body=lambda e: [
            f"The auction for {_title(e)} is ending soon.",
            f"Current highest bid: {_amount(e.current_bid)}",
        ],
        button="Place Bid Now",
        color="#ff9800",
    ),
    "ended": EmailTemplate(
        subject="Auction Ended",
        heading="Auction Ended",
        body=_ended_body,
        button="View Results",
        color="#1976d2",
    ),
    "restarted": EmailTemplate(
        subject="Auction Restarted",
        heading="Your Auction Has Been Restarted!",
        body=_restarted_body,
        button="View Restarted Auction",
        color="#f59e0b",
    ),
    "cancelled": EmailTemplate(
        subject="Auction Cancelled",
        heading="Your Auction Has Been Cancelled",
        body=lambda e: [f"The auction for {_title(e)} has been cancelled."],
        button="View Auction",
        color="#757575",
    ),
}


def render(event: AuctionEvent, frontend_url: str) -> Optional[tuple]:
    """Subject and HTML body for *event*, or None if it is not emailed."""
    template = TEMPLATES.get(event.event_type)
    if template is None:
        return None
    link = escape(f"{frontend_url}/auctions/{event.auction_id}")
    paragraphs = "".join(f"<p>{p}</p>" for p in template.body(event))
    html = (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f"<h2>{template.heading}</h2>"
        f"{paragraphs}"
        f'<p style="text-align: center; margin: 30px 0;"><a href="{link}" '
        f'style="background-color: {template.color}; color: white; padding: 12px 24px; '
        f'text-decoration: none; border-radius: 4px;">{template.button}</a></p>'
        "</div>"
    )
    return template.subject, html


class AuctionMailer(Notifier):

    def __init__(self, store: AuctionStore, client: MailClient, frontend_url: str):
        self.store = store
        self.client = client
        self.frontend_url = frontend_url.rstrip("/")

    async def notify(self, event: AuctionEvent) -> None:
        await self.send(event)

    async def send(self, event: AuctionEvent) -> int:
        """Email every recipient of *event*; returns how many emails were sent."""
        rendered = render(event, self.frontend_url)
        if rendered is None or not event.recipient_ids:
            return 0
        subject, html = rendered

        sent = 0
        for user_id in dict.fromkeys(event.recipient_ids):
            try:
                user = await self.store.user_get(user_id)
                if not user or not user.data.email:
                    logger.warning(f"No email address for user {user_id}, skipping {event.event_type} email")
                    continue
                if await self.client.send(user.data.email, subject, html):
                    sent += 1
            except Exception:
                logger.error(
                    f"Failed to send {event.event_type} email for auction {event.auction_id} to user {user_id}",
                    exc_info=True,
                )
        return sent
