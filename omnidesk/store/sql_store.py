"""PostgreSQL implementation of the helpdesk store."""

import json
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Sequence

from sqlalchemy import bindparam, text
from sqlalchemy.orm import Session

from omnidesk.models.entities import (
    ACTIVE_CONVERSATION_STATUSES,
    CONTACT_IDENTIFIER_FIELDS,
    ChannelType,
    Contact,
    Conversation,
    ConversationStatus,
    ConversationThread,
    Inbox,
    Message,
    NewMessage,
)

INBOX_COLUMNS = """
    id, organization_id, name, channel_type, is_active,
    wa_phone_number, wa_phone_number_id, wa_access_token,
    fb_page_id, fb_access_token, ig_account_id, widget_token
"""

CONTACT_COLUMNS = """
    id, organization_id, name, email, phone, wa_id, fb_psid, ig_id, is_blocked, created_at
"""

CONVERSATION_COLUMNS = """
    id, organization_id, inbox_id, contact_id, status, assigned_agent_id, subject,
    channel_conversation_id, latest_message, latest_message_at, latest_message_sender,
    unread_count, created_at, updated_at
"""

MESSAGE_COLUMNS = """
    id, conversation_id, organization_id, sender_type, sender_id, sender_name,
    message_type, content, attachment_urls, attachment_meta, channel_message_id,
    is_read, is_private, is_deleted, created_at
"""

# Which inbox column holds the provider address for each channel
INBOX_ADDRESS_FILTERS = {
    ChannelType.FACEBOOK.value: "fb_page_id = :address",
    # Instagram entries may carry either the IG business account id or the linked page id
    ChannelType.INSTAGRAM.value: "(ig_account_id = :address OR fb_page_id = :address)",
    ChannelType.WHATSAPP.value: "wa_phone_number_id = :address",
}


def _prefixed(row, prefix: str) -> Dict[str, Any]:
    """Pull the columns of one joined table out of a row labelled prefix__column."""
    marker = f"{prefix}__"
    return {
        key[len(marker):]: value
        for key, value in row._mapping.items()
        if key.startswith(marker)
    }


class SqlHelpdeskStore:
    """HelpdeskStore backed by a SQLAlchemy session.

    Writes commit immediately: concurrent webhook deliveries run in separate
    processes and must see each other's rows through the unique indexes.
    Inside transaction() the commit is deferred until the block ends.
    """

    def __init__(self, session: Session):
        self.session = session
        self._transaction_depth = 0

    def _commit(self) -> None:
        if not self._transaction_depth:
            self.session.commit()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        self._transaction_depth += 1
        try:
            yield
        except Exception:
            self.session.rollback()
            raise
        finally:
            self._transaction_depth -= 1
        self._commit()

    def rollback(self) -> None:
        self.session.rollback()

    # ------------------------------------------------------------------
    # Inboxes
    # ------------------------------------------------------------------

    def get_inbox_by_address(self, channel_type: str, address: str) -> Optional[Inbox]:
        address_filter = INBOX_ADDRESS_FILTERS.get(channel_type)
        if not address_filter or not address:
            return None

        row = self.session.execute(
            text(f"""
                SELECT {INBOX_COLUMNS}
                FROM inboxes
                WHERE channel_type = :channel_type
                  AND {address_filter}
                  AND is_active = TRUE
                ORDER BY created_at ASC
                LIMIT 1
            """),
            {"channel_type": channel_type, "address": address},
        ).fetchone()
        return Inbox.from_row(row)

    def get_inbox_by_widget_token(self, token: str) -> Optional[Inbox]:
        row = self.session.execute(
            text("""
                SELECT i.id, i.organization_id, i.name, i.channel_type, i.is_active,
                       i.widget_token, o.name AS organization_name
                FROM inboxes i
                JOIN organizations o ON o.id = i.organization_id
                WHERE i.widget_token = :token
                  AND i.channel_type = 'widget'
                  AND i.is_active = TRUE
                LIMIT 1
            """),
            {"token": token},
        ).fetchone()
        return Inbox.from_row(row)

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    def find_contact(self, organization_id: str, field: str, value: str) -> Optional[Contact]:
        _check_identifier_field(field)
        row = self.session.execute(
            text(f"""
                SELECT {CONTACT_COLUMNS}
                FROM contacts
                WHERE organization_id = :organization_id
                  AND {field} = :value
                LIMIT 1
            """),
            {"organization_id": organization_id, "value": value},
        ).fetchone()
        return Contact.from_row(row)

    def insert_contact(
        self,
        organization_id: str,
        field: str,
        value: str,
        name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Optional[Contact]:
        _check_identifier_field(field)
        row = self.session.execute(
            text(f"""
                INSERT INTO contacts (id, organization_id, name, phone, {field}, is_blocked)
                VALUES (:id, :organization_id, :name, :phone, :value, FALSE)
                ON CONFLICT DO NOTHING
                RETURNING {CONTACT_COLUMNS}
            """),
            {
                "id": str(uuid.uuid4()),
                "organization_id": organization_id,
                "name": name,
                "phone": phone,
                "value": value,
            },
        ).fetchone()
        self._commit()
        return Contact.from_row(row)

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def find_active_conversation(
        self, organization_id: str, inbox_id: str, contact_id: str
    ) -> Optional[Conversation]:
        row = self.session.execute(
            text(f"""
                SELECT {CONVERSATION_COLUMNS}
                FROM conversations
                WHERE organization_id = :organization_id
                  AND inbox_id = :inbox_id
                  AND contact_id = :contact_id
                  AND status IN :statuses
                ORDER BY created_at DESC
                LIMIT 1
            """).bindparams(bindparam("statuses", expanding=True)),
            {
                "organization_id": organization_id,
                "inbox_id": inbox_id,
                "contact_id": contact_id,
                "statuses": list(ACTIVE_CONVERSATION_STATUSES),
            },
        ).fetchone()
        return Conversation.from_row(row)

    def insert_conversation(
        self,
        organization_id: str,
        inbox_id: str,
        contact_id: str,
        channel_conversation_id: Optional[str] = None,
        subject: Optional[str] = None,
    ) -> Optional[Conversation]:
        # uq_conversations_active rejects a second open/pending row for the same contact and inbox
        row = self.session.execute(
            text(f"""
                INSERT INTO conversations (
                    id, organization_id, inbox_id, contact_id, status,
                    channel_conversation_id, subject, unread_count
                ) VALUES (
                    :id, :organization_id, :inbox_id, :contact_id, 'open',
                    :channel_conversation_id, :subject, 0
                )
                ON CONFLICT DO NOTHING
                RETURNING {CONVERSATION_COLUMNS}
            """),
            {
                "id": str(uuid.uuid4()),
                "organization_id": organization_id,
                "inbox_id": inbox_id,
                "contact_id": contact_id,
                "channel_conversation_id": channel_conversation_id,
                "subject": subject,
            },
        ).fetchone()
        self._commit()
        return Conversation.from_row(row)

    def get_conversation_thread(
        self, conversation_id: str, organization_id: str
    ) -> Optional[ConversationThread]:
        row = self.session.execute(
            text("""
                SELECT
                    c.id AS conv__id, c.organization_id AS conv__organization_id,
                    c.inbox_id AS conv__inbox_id, c.contact_id AS conv__contact_id,
                    c.status AS conv__status, c.assigned_agent_id AS conv__assigned_agent_id,
                    c.subject AS conv__subject,
                    c.channel_conversation_id AS conv__channel_conversation_id,
                    c.latest_message AS conv__latest_message,
                    c.latest_message_at AS conv__latest_message_at,
                    c.latest_message_sender AS conv__latest_message_sender,
                    c.unread_count AS conv__unread_count,
                    c.created_at AS conv__created_at, c.updated_at AS conv__updated_at,
                    i.id AS inbox__id, i.organization_id AS inbox__organization_id,
                    i.name AS inbox__name, i.channel_type AS inbox__channel_type,
                    i.is_active AS inbox__is_active,
                    i.wa_phone_number_id AS inbox__wa_phone_number_id,
                    i.wa_access_token AS inbox__wa_access_token,
                    i.fb_page_id AS inbox__fb_page_id,
                    i.fb_access_token AS inbox__fb_access_token,
                    i.ig_account_id AS inbox__ig_account_id,
                    ct.id AS contact__id, ct.organization_id AS contact__organization_id,
                    ct.name AS contact__name, ct.email AS contact__email,
                    ct.phone AS contact__phone, ct.wa_id AS contact__wa_id,
                    ct.fb_psid AS contact__fb_psid, ct.ig_id AS contact__ig_id,
                    ct.is_blocked AS contact__is_blocked
                FROM conversations c
                JOIN inboxes i ON i.id = c.inbox_id
                JOIN contacts ct ON ct.id = c.contact_id
                WHERE c.id = :conversation_id
                  AND c.organization_id = :organization_id
            """),
            {"conversation_id": conversation_id, "organization_id": organization_id},
        ).fetchone()

        if not row:
            return None

        return ConversationThread(
            conversation=Conversation.from_row(_prefixed(row, "conv")),
            inbox=Inbox.from_row(_prefixed(row, "inbox")),
            contact=Contact.from_row(_prefixed(row, "contact")),
        )

    def get_conversation_for_contact(
        self, conversation_id: str, contact_id: str
    ) -> Optional[Conversation]:
        row = self.session.execute(
            text(f"""
                SELECT {CONVERSATION_COLUMNS}
                FROM conversations
                WHERE id = :conversation_id
                  AND contact_id = :contact_id
            """),
            {"conversation_id": conversation_id, "contact_id": contact_id},
        ).fetchone()
        return Conversation.from_row(row)

    def update_conversation_latest(
        self,
        conversation_id: str,
        content: Optional[str],
        at: datetime,
        sender: Optional[str],
        increment_unread: bool = False,
        reopen_from: Sequence[str] = (),
    ) -> Optional[Conversation]:
        # Reopening is skipped when a sibling conversation already holds the active slot
        row = self.session.execute(
            text(f"""
                UPDATE conversations AS c
                SET latest_message = :content,
                    latest_message_at = :at,
                    latest_message_sender = :sender,
                    unread_count = c.unread_count + :unread_increment,
                    status = CASE
                        WHEN c.status IN :reopen_from AND NOT EXISTS (
                            SELECT 1 FROM conversations other
                            WHERE other.organization_id = c.organization_id
                              AND other.inbox_id = c.inbox_id
                              AND other.contact_id = c.contact_id
                              AND other.id <> c.id
                              AND other.status IN :active_statuses
                        )
                        THEN :open_status
                        ELSE c.status
                    END,
                    updated_at = now()
                WHERE c.id = :conversation_id
                RETURNING {CONVERSATION_COLUMNS}
            """).bindparams(bindparam("reopen_from", expanding=True), bindparam("active_statuses", expanding=True)),
            {
                "conversation_id": conversation_id,
                "content": content,
                "at": at,
                "sender": sender,
                "unread_increment": 1 if increment_unread else 0,
                # IN () is invalid SQL, so an empty reopen set matches nothing instead
                "reopen_from": list(reopen_from) or ["__none__"],
                "active_statuses": list(ACTIVE_CONVERSATION_STATUSES),
                "open_status": ConversationStatus.OPEN.value,
            },
        ).fetchone()
        self._commit()
        return Conversation.from_row(row)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def insert_message(self, message: NewMessage) -> Message:
        row = self.session.execute(
            text(f"""
                INSERT INTO messages (
                    id, conversation_id, organization_id, sender_type, sender_id, sender_name,
                    message_type, content, attachment_urls, attachment_meta, channel_message_id,
                    is_read, is_private
                ) VALUES (
                    :id, :conversation_id, :organization_id, :sender_type, :sender_id, :sender_name,
                    :message_type, :content, :attachment_urls, CAST(:attachment_meta AS jsonb),
                    :channel_message_id, :is_read, :is_private
                )
                RETURNING {MESSAGE_COLUMNS}
            """),
            {
                "id": str(uuid.uuid4()),
                "conversation_id": message.conversation_id,
                "organization_id": message.organization_id,
                "sender_type": message.sender_type,
                "sender_id": message.sender_id,
                "sender_name": message.sender_name,
                "message_type": message.message_type,
                "content": message.content,
                "attachment_urls": message.attachment_urls or None,
                "attachment_meta": json.dumps(message.attachment_meta) if message.attachment_meta else None,
                "channel_message_id": message.channel_message_id,
                "is_read": message.is_read,
                "is_private": message.is_private,
            },
        ).fetchone()
        self._commit()
        return Message.from_row(row)

    def message_exists(self, conversation_id: str, channel_message_id: str) -> bool:
        row = self.session.execute(
            text("""
                SELECT 1 FROM messages
                WHERE conversation_id = :conversation_id
                  AND channel_message_id = :channel_message_id
                LIMIT 1
            """),
            {"conversation_id": conversation_id, "channel_message_id": channel_message_id},
        ).fetchone()
        return row is not None

    def list_messages(
        self,
        conversation_id: str,
        after: Optional[datetime] = None,
        include_private: bool = False,
        limit: int = 500,
    ) -> List[Message]:
        query = f"""
            SELECT {MESSAGE_COLUMNS}
            FROM messages
            WHERE conversation_id = :conversation_id
              AND is_deleted = FALSE
        """
        params: Dict[str, Any] = {"conversation_id": conversation_id, "limit": limit}

        if not include_private:
            query += " AND is_private = FALSE"

        if after is not None:
            query += " AND created_at > :after"
            params["after"] = after

        query += " ORDER BY created_at ASC LIMIT :limit"

        rows = self.session.execute(text(query), params).fetchall()
        return [Message.from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Operational events
    # ------------------------------------------------------------------

    def record_event(
        self,
        organization_id: Optional[str],
        event_type: str,
        status: str = "success",
        payload: Optional[Dict[str, Any]] = None,
        conversation_id: Optional[str] = None,
        message_id: Optional[str] = None,
    ) -> None:
        try:
            self._insert_event(organization_id, event_type, status, payload, conversation_id, message_id)
        except Exception:
            self.session.rollback()
            raise

    def _insert_event(self, organization_id, event_type, status, payload, conversation_id, message_id):
        self.session.execute(
            text("""
                INSERT INTO event_logs (
                    organization_id, conversation_id, message_id, event_type, status, payload
                ) VALUES (
                    :organization_id, :conversation_id, :message_id, :event_type, :status,
                    CAST(:payload AS jsonb)
                )
            """),
            {
                "organization_id": organization_id,
                "conversation_id": conversation_id,
                "message_id": message_id,
                "event_type": event_type,
                "status": status,
                "payload": json.dumps(payload or {}, default=str),
            },
        )
        self.session.commit()


def _check_identifier_field(field: str) -> None:
    # Column names are interpolated into SQL, so only known identifier columns pass
    if field not in CONTACT_IDENTIFIER_FIELDS:
        raise ValueError(f"Unsupported contact identifier field: {field}")
