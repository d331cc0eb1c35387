"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from alembic import op

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    op.execute("""
        CREATE TABLE organizations (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name TEXT NOT NULL,
            slug TEXT UNIQUE,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)

    op.execute("""
        CREATE TABLE inboxes (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            name TEXT NOT NULL,
            channel_type TEXT NOT NULL
                CHECK (channel_type IN ('whatsapp', 'facebook', 'instagram', 'widget', 'email')),
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            wa_phone_number TEXT,
            wa_phone_number_id TEXT,
            wa_access_token TEXT,
            fb_page_id TEXT,
            fb_access_token TEXT,
            ig_account_id TEXT,
            widget_token TEXT UNIQUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute("CREATE INDEX idx_inboxes_wa_phone_number_id ON inboxes(wa_phone_number_id)")
    op.execute("CREATE INDEX idx_inboxes_fb_page_id ON inboxes(fb_page_id)")
    op.execute("CREATE INDEX idx_inboxes_ig_account_id ON inboxes(ig_account_id)")

    op.execute("""
        CREATE TABLE contacts (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            name TEXT,
            email TEXT,
            phone TEXT,
            wa_id TEXT,
            fb_psid TEXT,
            ig_id TEXT,
            is_blocked BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    # One contact per (organization, identifier value); these make contact inserts idempotent
    for field in ("fb_psid", "ig_id", "wa_id", "email"):
        op.execute(f"""
            CREATE UNIQUE INDEX uq_contacts_{field}
            ON contacts(organization_id, {field})
            WHERE {field} IS NOT NULL
        """)

    op.execute("""
        CREATE TABLE conversations (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            inbox_id UUID NOT NULL REFERENCES inboxes(id),
            contact_id UUID NOT NULL REFERENCES contacts(id),
            status TEXT NOT NULL DEFAULT 'open'
                CHECK (status IN ('open', 'in_progress', 'pending', 'resolved', 'snoozed')),
            assigned_agent_id UUID,
            subject TEXT,
            channel_conversation_id TEXT,
            latest_message TEXT,
            latest_message_at TIMESTAMPTZ,
            latest_message_sender TEXT,
            unread_count INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    # At most one open or pending conversation per contact and inbox
    op.execute("""
        CREATE UNIQUE INDEX uq_conversations_active
        ON conversations(organization_id, inbox_id, contact_id)
        WHERE status IN ('open', 'pending')
    """)
    op.execute(
        "CREATE INDEX idx_conversations_org_latest ON conversations(organization_id, latest_message_at DESC)"
    )

    op.execute("""
        CREATE TABLE messages (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            conversation_id UUID NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            sender_type TEXT NOT NULL CHECK (sender_type IN ('contact', 'agent', 'bot', 'system')),
            sender_id TEXT,
            sender_name TEXT,
            message_type TEXT NOT NULL DEFAULT 'text',
            content TEXT,
            attachment_urls TEXT[],
            attachment_meta JSONB,
            channel_message_id TEXT,
            is_read BOOLEAN NOT NULL DEFAULT FALSE,
            is_private BOOLEAN NOT NULL DEFAULT FALSE,
            is_deleted BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute("CREATE INDEX idx_messages_conversation_created ON messages(conversation_id, created_at)")
    # Not unique: replayed deliveries may store a provider id twice
    op.execute(
        "CREATE INDEX idx_messages_channel_message_id ON messages(conversation_id, channel_message_id)"
    )

    op.execute("""
        CREATE TABLE event_logs (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID REFERENCES organizations(id) ON DELETE CASCADE,
            conversation_id UUID,
            message_id UUID,
            event_type TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'success',
            payload JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute("CREATE INDEX idx_event_logs_org_created ON event_logs(organization_id, created_at DESC)")

    # Row-level isolation for sessions scoped with app.current_organization_id
    for table in ("inboxes", "contacts", "conversations", "messages", "event_logs"):
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(f"""
            CREATE POLICY {table}_organization_isolation ON {table}
            USING (
                current_setting('app.current_organization_id', true) IS NULL
                OR current_setting('app.current_organization_id', true) = ''
                OR organization_id::text = current_setting('app.current_organization_id', true)
            )
        """)


def downgrade() -> None:
    for table in ("event_logs", "messages", "conversations", "contacts", "inboxes"):
        op.execute(f"DROP POLICY IF EXISTS {table}_organization_isolation ON {table}")
    op.execute("DROP TABLE IF EXISTS event_logs")
    op.execute("DROP TABLE IF EXISTS messages")
    op.execute("DROP TABLE IF EXISTS conversations")
    op.execute("DROP TABLE IF EXISTS contacts")
    op.execute("DROP TABLE IF EXISTS inboxes")
    op.execute("DROP TABLE IF EXISTS organizations")
