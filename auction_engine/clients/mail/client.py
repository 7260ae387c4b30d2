from typing import Optional

import httpx

from auction_engine.utils import log

logger = log.get_logger(__name__)


class MailClient:
    """Posts outbound emails to an HTTP mail relay.

    Without a relay URL nothing is sent; the message is only logged, which
    is what development and tests run with.
    """

    def __init__(
        self,
        relay_url: Optional[str],
        sender: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.relay_url = relay_url
        self.sender = sender
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.relay_url)

    async def send(self, to: str, subject: str, html: str) -> bool:
        """Send one email. Returns False if no relay is configured; raises on relay errors."""
        if not self.configured:
            logger.info(f"Mail relay not configured, not sending '{subject}' to {to}")
            return False

        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload = {"from": self.sender, "to": to, "subject": subject, "html": html}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.post(self.relay_url, json=payload, headers=headers)
            resp.raise_for_status()

        logger.info(f"Email '{subject}' sent to {to}")
        return True
