import logging
from collections import OrderedDict
from dataclasses import dataclass

import httpx

from billminder.config import settings
from billminder.db.models import Channel
from billminder.errors import TransportError

logger = logging.getLogger(__name__)

DEV_SKIP_SID = "dev_skip"
_DELIVERED_KEYS_LIMIT = 10_000


@dataclass(frozen=True, slots=True)
class Delivery:
    reminder_id: int
    user_id: int
    phone: str | None
    text: str
    delivery_key: str


class Transport:
    """Channel sender that skips delivery keys it has already delivered.

    Keys are kept in memory, so a reminder whose `sent` status failed to persist
    is not sent twice by the same process.
    """

    channel: Channel

    def __init__(self) -> None:
        self._delivered: OrderedDict[str, None] = OrderedDict()

    async def send(self, delivery: Delivery) -> bool:
        if delivery.delivery_key in self._delivered:
            logger.info(
                "Skipping duplicate delivery %s",
                delivery.delivery_key,
                extra={"reminder_id": delivery.reminder_id, "channel": self.channel.value},
            )
            return True
        ok = await self._deliver(delivery)
        if ok:
            self._delivered[delivery.delivery_key] = None
            while len(self._delivered) > _DELIVERED_KEYS_LIMIT:
                self._delivered.popitem(last=False)
        return ok

    async def _deliver(self, delivery: Delivery) -> bool:
        raise NotImplementedError


class TwilioTransport(Transport):
    def __init__(
        self,
        channel: Channel,
        account_sid: str | None = None,
        auth_token: str | None = None,
        from_number: str | None = None,
        api_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        if channel not in (Channel.SMS, Channel.WHATSAPP):
            raise ValueError(f"Twilio cannot deliver {channel} messages")
        super().__init__()
        self.channel = channel
        self.account_sid = account_sid or settings.twilio_account_sid
        self.auth_token = auth_token or settings.twilio_auth_token
        self.from_number = from_number or settings.twilio_from_number
        self.api_url = api_url or settings.twilio_api_url
        self.timeout = timeout or settings.transport_timeout

    def _addresses(self, phone: str) -> tuple[str, str]:
        from_number = self.from_number or ""
        if self.channel == Channel.WHATSAPP:
            if not from_number.startswith("whatsapp:"):
                from_number = f"whatsapp:{from_number}"
            return f"whatsapp:{phone}", from_number
        return phone, from_number

    async def _deliver(self, delivery: Delivery) -> bool:
        if not delivery.phone:
            raise TransportError(f"User {delivery.user_id} has no phone number for {self.channel}")

        if self.account_sid == DEV_SKIP_SID:
            logger.info(
                "[DEV %s] To: %s | %s",
                self.channel.value.upper(),
                delivery.phone,
                delivery.text,
                extra={"reminder_id": delivery.reminder_id, "channel": self.channel.value},
            )
            return True

        to, from_ = self._addresses(delivery.phone)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    f"{self.api_url}/Accounts/{self.account_sid}/Messages.json",
                    auth=(self.account_sid, self.auth_token or ""),
                    data={"To": to, "From": from_, "Body": delivery.text},
                )
                resp.raise_for_status()
        except httpx.HTTPError:
            logger.error(
                "Failed to send %s to %s",
                self.channel.value,
                delivery.phone,
                exc_info=True,
                extra={"reminder_id": delivery.reminder_id, "channel": self.channel.value},
            )
            return False

        # Twilio queued the message; an unreadable body only loses the SID
        try:
            sid = resp.json().get("sid")
        except (ValueError, AttributeError):
            logger.warning(
                "%s accepted without a readable SID",
                self.channel.value,
                extra={"reminder_id": delivery.reminder_id, "channel": self.channel.value},
            )
            sid = None

        logger.info(
            "%s sent to %s. SID: %s",
            self.channel.value,
            delivery.phone,
            sid,
            extra={"reminder_id": delivery.reminder_id, "channel": self.channel.value},
        )
        return True


class PushTransport(Transport):
    """Push is always deliverable; with a bot attached it is also sent to the user's chat."""

    channel = Channel.PUSH

    def __init__(self, bot=None) -> None:
        super().__init__()
        self.bot = bot

    async def _deliver(self, delivery: Delivery) -> bool:
        logger.info(
            "[PUSH NOTIFICATION] To: %s | %s",
            delivery.user_id,
            delivery.text,
            extra={"reminder_id": delivery.reminder_id, "channel": self.channel.value},
        )
        if self.bot is not None:
            try:
                await self.bot.send_message(chat_id=delivery.user_id, text=delivery.text)
            except Exception:
                logger.warning(
                    "Telegram copy of push notification failed",
                    exc_info=True,
                    extra={"reminder_id": delivery.reminder_id, "channel": self.channel.value},
                )
        return True


def build_transports(bot=None) -> dict[Channel, Transport]:
    transports: dict[Channel, Transport] = {
        Channel.PUSH: PushTransport(bot),
        Channel.SMS: TwilioTransport(Channel.SMS),
        Channel.WHATSAPP: TwilioTransport(Channel.WHATSAPP),
    }
    missing = set(Channel) - set(transports)
    if missing:
        raise RuntimeError(f"No transport for channels: {', '.join(sorted(missing))}")
    return transports
