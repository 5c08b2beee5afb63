"""
Instagram DM inbox.

Receives Meta messaging webhooks, keeps ``instagram_conversations`` and
``instagram_messages`` current, serves the inbox views and sends outbound
DMs through the Graph API.
"""

import hashlib
import hmac
import secrets
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

import httpx
import structlog
from postgrest.exceptions import APIError
from supabase import Client

from antistatic.core.db import UNIQUE_VIOLATION, first_row, utc_now_iso
from antistatic.core.exceptions import NotFoundError, ValidationFailedError
from antistatic.integrations.instagram.graph import InstagramGraphClient
from antistatic.integrations.instagram.tokens import get_instagram_access_token

logger = structlog.get_logger(__name__)

SIGNATURE_PREFIX = "sha256="
PREVIEW_LENGTH = 100
MAX_MESSAGE_LENGTH = 1000
THREADS_LIMIT = 50
MESSAGES_LIMIT = 100

# Meta sends epoch milliseconds; anything below this is epoch seconds
_MILLISECONDS_THRESHOLD = 10**12


# =============================================================================
# Webhook Helpers
# =============================================================================


def compute_signature(app_secret: str, body: bytes) -> str:
    """``sha256=<hex>`` signature Meta sends for a payload."""
    digest = hmac.new(app_secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(app_secret: str, body: bytes, header: Optional[str]) -> bool:
    """Check ``X-Hub-Signature-256`` over the raw request body."""
    if not header or not header.startswith(SIGNATURE_PREFIX) or len(header) == len(SIGNATURE_PREFIX):
        return False
    return hmac.compare_digest(header, compute_signature(app_secret, body))


def verify_subscription(
    mode: Optional[str], token: Optional[str], expected_token: Optional[str]
) -> bool:
    if mode != "subscribe" or not token or not expected_token:
        return False
    return secrets.compare_digest(token, expected_token)


def iter_message_events(payload: dict[str, Any]) -> Iterator[tuple[str, dict[str, Any]]]:
    """
    Yield ``(ig_account_id, event)`` for every message event in a webhook body.

    Handles both ``entry[].changes[field=messages].value`` and the older
    ``entry[].messaging[]`` layout. Test payloads (entry id ``"0"`` or
    missing) and non-Instagram objects yield nothing.
    """
    if payload.get("object") != "instagram":
        return

    for entry in payload.get("entry") or []:
        ig_account_id = str(entry.get("id") or "")
        if not ig_account_id or ig_account_id == "0":
            logger.info("instagram_webhook_test_payload")
            continue

        for change in entry.get("changes") or []:
            value = change.get("value")
            if change.get("field") == "messages" and isinstance(value, dict) and value.get("message"):
                yield ig_account_id, value

        for event in entry.get("messaging") or []:
            if isinstance(event, dict) and event.get("message"):
                yield ig_account_id, event


def event_time(timestamp: Any) -> str:
    """ISO time for a webhook timestamp (epoch seconds or milliseconds)."""
    try:
        value = int(timestamp)
    except (TypeError, ValueError):
        return utc_now_iso()
    seconds = value / 1000 if value >= _MILLISECONDS_THRESHOLD else value
    return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()


def conversation_id_for(ig_account_id: str, participant_id: str) -> str:
    return f"conv_{ig_account_id}_{participant_id}"


def display_name_for(participant_id: Optional[str]) -> str:
    return f"user_{(participant_id or '')[-6:]}"


def present_conversation(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "participantIgsid": row.get("participant_igsid"),
        "displayName": display_name_for(row.get("participant_igsid")),
        "lastMessagePreview": row.get("last_message_preview"),
        "lastMessageAt": row.get("last_message_at"),
        "unreadCount": row.get("unread_count") or 0,
        "updatedTime": row.get("updated_time"),
    }


def present_message(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "direction": row.get("direction"),
        "fromId": row.get("from_id"),
        "toId": row.get("to_id"),
        "text": row.get("text") or "",
        "attachments": row.get("attachments"),
        "createdTime": row.get("created_time"),
        "readAt": row.get("read_at"),
    }


# =============================================================================
# Service
# =============================================================================


class InstagramInboxService:
    """Webhook ingestion, inbox reads and DM sending backed by Supabase."""

    def __init__(self, supabase: Client, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.supabase = supabase
        self.transport = transport

    def mark_webhook_verified(self) -> None:
        """Record the verification time for every connected location."""
        result = self.supabase.table("instagram_connections").select("business_location_id").execute()
        location_ids = {row["business_location_id"] for row in result.data or []}
        now = utc_now_iso()
        for location_id in location_ids:
            self.supabase.table("instagram_sync_state").upsert(
                {"business_location_id": location_id, "webhook_verified_at": now},
                on_conflict="business_location_id",
            ).execute()

    def _connection_for_account(self, ig_account_id: str) -> Optional[dict[str, Any]]:
        return first_row(
            self.supabase.table("instagram_connections")
            .select("business_location_id, instagram_user_id")
            .eq("instagram_user_id", ig_account_id)
            .limit(1)
            .execute()
        )

    def _record_event(
        self, location_id: str, ig_account_id: str, event: dict[str, Any], timestamp: str
    ) -> bool:
        """Insert the raw event. Returns False when it was already stored."""
        message = event.get("message") or {}
        try:
            self.supabase.table("instagram_dm_events").insert(
                {
                    "business_location_id": location_id,
                    "ig_user_id": ig_account_id,
                    "sender_id": (event.get("sender") or {}).get("id"),
                    "recipient_id": (event.get("recipient") or {}).get("id"),
                    "message_id": message.get("mid"),
                    "text": message.get("text"),
                    "timestamp": timestamp,
                    "raw": event,
                }
            ).execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                logger.info("instagram_dm_event_duplicate", message_id=message.get("mid"))
                return False
            raise
        return True

    def _forget_event(self, message_id: Optional[str]) -> None:
        if not message_id:
            return
        self.supabase.table("instagram_dm_events").delete().eq("message_id", message_id).execute()
        logger.warning("instagram_dm_event_released", message_id=message_id)

    def _touch_conversation(
        self,
        location_id: str,
        ig_account_id: str,
        participant_id: str,
        text: Optional[str],
        timestamp: str,
        inbound: bool,
    ) -> str:
        conversation_id = conversation_id_for(ig_account_id, participant_id)
        existing = first_row(
            self.supabase.table("instagram_conversations")
            .select("id, unread_count")
            .eq("id", conversation_id)
            .limit(1)
            .execute()
        )
        unread = ((existing or {}).get("unread_count") or 0) + 1 if inbound else 0

        self.supabase.table("instagram_conversations").upsert(
            {
                "id": conversation_id,
                "business_location_id": location_id,
                "ig_account_id": ig_account_id,
                "participant_igsid": participant_id,
                "last_message_at": timestamp,
                "updated_time": timestamp,
                "last_message_preview": text[:PREVIEW_LENGTH] if text else None,
                "unread_count": unread,
            },
            on_conflict="id",
        ).execute()
        return conversation_id

    def handle_message_event(self, ig_account_id: str, event: dict[str, Any]) -> Optional[str]:
        """
        Persist one message event. Returns the conversation id, or None when
        the event was skipped (unknown account, duplicate, missing parties).
        """
        sender_id = (event.get("sender") or {}).get("id")
        recipient_id = (event.get("recipient") or {}).get("id")
        if not sender_id or not recipient_id:
            logger.warning("instagram_webhook_missing_parties", ig_account_id=ig_account_id)
            return None

        connection = self._connection_for_account(ig_account_id)
        if not connection:
            logger.warning("instagram_webhook_unknown_account", ig_account_id=ig_account_id)
            return None

        location_id = connection["business_location_id"]
        timestamp = event_time(event.get("timestamp"))
        if not self._record_event(location_id, ig_account_id, event, timestamp):
            return None

        message = event.get("message") or {}
        inbound = sender_id != ig_account_id
        participant_id = sender_id if inbound else recipient_id
        text = message.get("text")

        try:
            conversation_id = self._touch_conversation(
                location_id, ig_account_id, participant_id, text, timestamp, inbound
            )
            message_id = message.get("mid") or f"wh_{secrets.token_hex(8)}"
            self.supabase.table("instagram_messages").upsert(
                {
                    "id": message_id,
                    "business_location_id": location_id,
                    "ig_account_id": ig_account_id,
                    "conversation_id": conversation_id,
                    "direction": "inbound" if inbound else "outbound",
                    "from_id": sender_id,
                    "to_id": recipient_id,
                    "text": text,
                    "attachments": message.get("attachments"),
                    "created_time": timestamp,
                    "read_at": None if inbound else timestamp,
                    "raw": event,
                },
                on_conflict="id",
            ).execute()
        except Exception:
            # Release the dedupe claim so Meta's retry is stored
            self._forget_event(message.get("mid"))
            raise

        logger.info(
            "instagram_message_processed",
            message_id=message_id,
            conversation_id=conversation_id,
            direction="inbound" if inbound else "outbound",
        )
        return conversation_id

    def process_webhook(self, payload: dict[str, Any]) -> int:
        """Handle every message event in a payload. Returns how many were stored."""
        stored = 0
        for ig_account_id, event in iter_message_events(payload):
            try:
                if self.handle_message_event(ig_account_id, event):
                    stored += 1
            except Exception:
                logger.exception("instagram_webhook_event_failed", ig_account_id=ig_account_id)
        return stored

    async def send_message(self, location_id: str, recipient_id: str, text: str) -> dict[str, Any]:
        """
        Send a DM from the location's Instagram account and store it.

        Raises:
            ValidationFailedError: Empty or over-long text.
            NotConnectedError: The location has no Instagram connection.
        """
        text = (text or "").strip()
        if not text:
            raise ValidationFailedError("text is required")
        if len(text) > MAX_MESSAGE_LENGTH:
            raise ValidationFailedError(f"text must be at most {MAX_MESSAGE_LENGTH} characters")

        credentials = await get_instagram_access_token(self.supabase, location_id, self.transport)
        async with InstagramGraphClient(credentials, transport=self.transport) as ig:
            result = await ig.send_message(recipient_id, text)

        ig_account_id = credentials.ig_account_id
        now = utc_now_iso()
        message_id = result.get("message_id") or result.get("id") or f"msg_{secrets.token_hex(8)}"
        conversation_id = self._touch_conversation(
            location_id, ig_account_id, recipient_id, text, now, inbound=False
        )
        self.supabase.table("instagram_messages").upsert(
            {
                "id": message_id,
                "business_location_id": location_id,
                "ig_account_id": ig_account_id,
                "conversation_id": conversation_id,
                "direction": "outbound",
                "from_id": ig_account_id,
                "to_id": recipient_id,
                "text": text,
                "created_time": now,
                "read_at": now,
                "raw": result,
            },
            on_conflict="id",
        ).execute()

        logger.info("instagram_message_sent", location_id=location_id, conversation_id=conversation_id)
        return {"success": True, "messageId": message_id, "conversationId": conversation_id}

    # -------------------------------------------------------------------------
    # Inbox reads
    # -------------------------------------------------------------------------

    def _require_connection(self, location_id: str) -> dict[str, Any]:
        connection = first_row(
            self.supabase.table("instagram_connections")
            .select("business_location_id, instagram_user_id")
            .eq("business_location_id", location_id)
            .limit(1)
            .execute()
        )
        if not connection:
            raise NotFoundError("Instagram not connected")
        return connection

    def list_threads(self, location_id: str) -> list[dict[str, Any]]:
        """Conversations of the connected account, most recent activity first."""
        connection = self._require_connection(location_id)
        result = (
            self.supabase.table("instagram_conversations")
            .select("*")
            .eq("business_location_id", location_id)
            .eq("ig_account_id", connection["instagram_user_id"])
            .order("last_message_at", desc=True)
            .limit(THREADS_LIMIT)
            .execute()
        )
        return [present_conversation(row) for row in result.data or []]

    def list_messages(self, location_id: str, conversation_id: str) -> list[dict[str, Any]]:
        """Messages of one conversation, oldest first."""
        connection = self._require_connection(location_id)
        result = (
            self.supabase.table("instagram_messages")
            .select("*")
            .eq("business_location_id", location_id)
            .eq("ig_account_id", connection["instagram_user_id"])
            .eq("conversation_id", conversation_id)
            .order("created_time")
            .limit(MESSAGES_LIMIT)
            .execute()
        )
        return [present_message(row) for row in result.data or []]

    def mark_read(self, location_id: str, conversation_id: str) -> int:
        """Mark unread inbound messages read and zero the unread count."""
        connection = self._require_connection(location_id)
        now = utc_now_iso()
        result = (
            self.supabase.table("instagram_messages")
            .update({"read_at": now})
            .eq("business_location_id", location_id)
            .eq("ig_account_id", connection["instagram_user_id"])
            .eq("conversation_id", conversation_id)
            .eq("direction", "inbound")
            .is_("read_at", "null")
            .execute()
        )
        self.supabase.table("instagram_conversations").update({"unread_count": 0}).eq(
            "id", conversation_id
        ).eq("business_location_id", location_id).execute()

        marked = len(result.data or [])
        logger.info("instagram_conversation_read", conversation_id=conversation_id, marked=marked)
        return marked

    # -------------------------------------------------------------------------
    # Graph sync
    # -------------------------------------------------------------------------

    async def sync_inbox(self, location_id: str) -> dict[str, Any]:
        """
        Backfill conversations and recent messages from the Graph API.

        Webhooks stay the primary source; this fills gaps from before the
        subscription and after outages. Read state of stored messages is kept.
        """
        credentials = await get_instagram_access_token(self.supabase, location_id, self.transport)
        ig_account_id = credentials.ig_account_id
        async with InstagramGraphClient(credentials, transport=self.transport) as ig:
            conversations = await ig.list_conversations()

        conversation_count = 0
        message_count = 0
        for conversation in conversations:
            participants = (conversation.get("participants") or {}).get("data") or []
            participant_id = next(
                (p.get("id") for p in participants if p.get("id") and p.get("id") != ig_account_id),
                None,
            )
            if not participant_id:
                continue

            messages = (conversation.get("messages") or {}).get("data") or []
            latest = max(messages, key=lambda m: m.get("created_time") or "", default=None)
            last_message_at = (latest or {}).get("created_time") or conversation.get("updated_time")
            preview = (latest or {}).get("message")

            conversation_id = conversation_id_for(ig_account_id, participant_id)
            self.supabase.table("instagram_conversations").upsert(
                {
                    "id": conversation_id,
                    "business_location_id": location_id,
                    "ig_account_id": ig_account_id,
                    "participant_igsid": participant_id,
                    "last_message_at": last_message_at,
                    "updated_time": conversation.get("updated_time") or last_message_at,
                    "last_message_preview": preview[:PREVIEW_LENGTH] if preview else None,
                },
                on_conflict="id",
            ).execute()
            conversation_count += 1

            rows = [
                self._synced_message_row(location_id, ig_account_id, conversation_id, message)
                for message in messages
                if message.get("id")
            ]
            if rows:
                self.supabase.table("instagram_messages").upsert(rows, on_conflict="id").execute()
                message_count += len(rows)

        self.supabase.table("instagram_sync_state").upsert(
            {"business_location_id": location_id, "last_inbox_sync_at": utc_now_iso()},
            on_conflict="business_location_id",
        ).execute()

        logger.info(
            "instagram_inbox_synced",
            location_id=location_id,
            conversations=conversation_count,
            messages=message_count,
        )
        return {"success": True, "conversations": conversation_count, "messages": message_count}

    @staticmethod
    def _synced_message_row(
        location_id: str, ig_account_id: str, conversation_id: str, message: dict[str, Any]
    ) -> dict[str, Any]:
        from_id = (message.get("from") or {}).get("id")
        recipients = (message.get("to") or {}).get("data") or []
        attachments = message.get("attachments")
        if isinstance(attachments, dict):
            attachments = attachments.get("data")
        return {
            "id": message["id"],
            "business_location_id": location_id,
            "ig_account_id": ig_account_id,
            "conversation_id": conversation_id,
            "direction": "outbound" if from_id == ig_account_id else "inbound",
            "from_id": from_id,
            "to_id": recipients[0].get("id") if recipients else None,
            "text": message.get("message"),
            "attachments": attachments,
            "created_time": message.get("created_time"),
            "raw": message,
        }
