"""Best-effort fan-out of operator alerts to Telegram chats"""

import asyncio
import logging
import re
from typing import Callable, Iterable, List, Optional, Set

from epulsaku.config import settings
from epulsaku.domain.exceptions import NotificationDeliveryError
from epulsaku.domain.models import NotificationEvent
from epulsaku.infrastructure.clients.telegram import TelegramClient
from epulsaku.infrastructure.observability.metrics import notification_failure_counter
from epulsaku.utils.date_utils import format_local

logger = logging.getLogger(__name__)

# MarkdownV2 reserved characters: _ * [ ] ( ) ~ ` > # + - = | { } . !
_RESERVED = re.compile(r"([_*\[\]()~`>#+\-=|{}.!])")


def escape_markdown(text: object) -> str:
    if text is None:
        return ""
    return _RESERVED.sub(r"\\\1", str(text))


def format_rupiah(amount: int) -> str:
    """15000 -> 15.000"""
    return f"{amount:,}".replace(",", ".")


def split_chat_ids(raw: str | Iterable[str] | None) -> List[str]:
    if not raw:
        return []
    parts = raw.split(",") if isinstance(raw, str) else list(raw)
    return [p.strip() for p in parts if p and p.strip()]


def _format_security_alert(event: NotificationEvent, time_text: str) -> str:
    message = "*🚨 Peringatan Keamanan Akun ePulsaku 🚨*\n\n"
    message += f"👤 *Pengguna:* {escape_markdown(event.transacted_by)}\n"
    message += f"🔵 *Status:* *{escape_markdown(event.status)}*\n"
    if event.failure_reason:
        message += f"📝 *Alasan:* {escape_markdown(event.failure_reason)}\n"
    message += f"\n🕒 _{time_text}_"
    return message


_STATUS_HEADERS = {
    "sukses": ("✅", "*TRANSAKSI SUKSES*"),
    "gagal": ("❌", "*TRANSAKSI GAGAL*"),
    "pending": ("⏳", "*TRANSAKSI PENDING*"),
}


def format_message(event: NotificationEvent, tz_name: Optional[str] = None) -> str:
    """Render an event in Telegram MarkdownV2; every dynamic substring is escaped"""
    time_text = escape_markdown(format_local(event.timestamp, tz_name or settings.timezone))

    if event.is_system_alert:
        return _format_security_alert(event, time_text)

    status_lower = event.status.lower()
    icon, status_text = _STATUS_HEADERS.get(status_lower, ("🔔", f"*{escape_markdown(event.status)}*"))
    suffix = f"\\- _{escape_markdown(event.additional_info)}_" if event.additional_info else ""
    message = f"{icon} {status_text} {suffix}\n\n"

    message += "*Detail Transaksi*\n"
    message += f"• 🆔 *Ref ID:* `{escape_markdown(event.ref_id)}`\n"
    if event.trx_id:
        message += f"• 🔢 *Trx ID Provider:* `{escape_markdown(event.trx_id)}`\n"
    message += f"• 📦 *Produk:* {escape_markdown(event.product_name)}\n"
    message += f"• 🎯 *Tujuan:* {escape_markdown(event.customer_no_display)}\n"
    message += f"• 🏢 *Provider:* {escape_markdown(event.provider)}\n"
    if event.transacted_by:
        message += f"• 👤 *Oleh:* {escape_markdown(event.transacted_by)}\n"
    message += "\n"

    if status_lower == "sukses":
        message += "*Rincian Keuangan*\n"
        if event.selling_price is not None:
            message += f"• 📈 *Harga Jual:* Rp {escape_markdown(format_rupiah(event.selling_price))}\n"
        if event.cost_price is not None:
            message += f"• 📉 *Harga Modal:* Rp {escape_markdown(format_rupiah(event.cost_price))}\n"
        if event.profit is not None and event.profit >= 0:
            message += f"• 💰 *Profit:* *Rp {escape_markdown(format_rupiah(event.profit))}*\n"
        message += "\n"

    if status_lower == "sukses" and event.sn:
        message += "*Token/SN diterima:*\n"
        message += f"```\n{escape_markdown(event.sn)}\n```\n"
    elif "gagal" in status_lower and event.failure_reason:
        message += "*📝 Alasan Gagal:*\n"
        message += f"{escape_markdown(event.failure_reason)}\n\n"

    message += f"_ePulsaku \\| {time_text}_"
    return message


class NotificationDispatcher:
    """
    Resolves chat targets and sends the same message to each.

    `notify` never raises: every failure is logged and counted, and partial
    delivery is not escalated. `user_chat_lookup` maps a username to that
    user's personal chat id.
    """

    def __init__(
        self,
        client: TelegramClient,
        bot_token: str | None = None,
        global_chat_ids: str | Iterable[str] | None = None,
        user_chat_lookup: Optional[Callable[[str], Optional[str]]] = None,
        tz_name: Optional[str] = None,
    ):
        self.client = client
        self.bot_token = settings.telegram_bot_token if bot_token is None else bot_token
        self.global_chat_ids = split_chat_ids(
            settings.telegram_chat_ids if global_chat_ids is None else global_chat_ids
        )
        self.user_chat_lookup = user_chat_lookup
        self.tz_name = tz_name or settings.timezone
        self._pending: Set[asyncio.Task] = set()

    @property
    def configured(self) -> bool:
        """A bot token and at least one global chat id"""
        return bool(self.bot_token and self.global_chat_ids)

    def resolve_targets(self, event: NotificationEvent) -> List[str]:
        targets = list(dict.fromkeys(self.global_chat_ids))
        if not event.is_system_alert and event.transacted_by and self.user_chat_lookup:
            personal = self.user_chat_lookup(event.transacted_by)
            if personal and personal not in targets:
                targets.append(personal)
        return targets

    async def notify(self, event: NotificationEvent) -> int:
        """Send to every resolved target; returns how many deliveries succeeded"""
        try:
            if not self.bot_token:
                logger.debug(f"Telegram bot token not configured; skipping notification for {event.ref_id}")
                return 0
            targets = self.resolve_targets(event)
            if not targets:
                logger.debug(f"No Telegram chat ids configured; skipping notification for {event.ref_id}")
                return 0
            text = format_message(event, self.tz_name)
        except Exception as e:
            logger.error(f"Error preparing notification for {event.ref_id}: {e}")
            notification_failure_counter.inc()
            return 0

        delivered = 0
        for chat_id in targets:
            try:
                await self._send_one(chat_id, text)
                delivered += 1
                logger.info(
                    f"Telegram notification sent to chat {chat_id}",
                    extra={"ref_id": event.ref_id, "transacted_by": event.transacted_by},
                )
            except NotificationDeliveryError as e:
                notification_failure_counter.inc()
                logger.warning(
                    f"Failed to send Telegram notification to chat {chat_id}: {e}",
                    extra={"ref_id": event.ref_id, "transacted_by": event.transacted_by},
                )
            except Exception as e:
                notification_failure_counter.inc()
                logger.error(f"Unexpected error notifying chat {chat_id}: {e}", extra={"ref_id": event.ref_id})
        return delivered

    def dispatch(self, event: NotificationEvent) -> Optional[asyncio.Task]:
        """Fire-and-forget from synchronous code running inside the event loop"""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop; notification for {event.ref_id} dropped")
            return None
        task = loop.create_task(self.notify(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _send_one(self, chat_id: str, text: str) -> None:
        result = await self.client.send_message(self.bot_token, chat_id, text)
        if not result.success:
            raise NotificationDeliveryError(result.message or "unknown error")
