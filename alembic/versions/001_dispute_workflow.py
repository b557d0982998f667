"""Dispute workflow schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

Creates: users, shops, products, orders, campaigns, campaign_applications,
         disputes, dispute_messages, dispute_reasons, notifications, audit_logs
Enums: userrole, disputecontext, disputestatus, proposalpartystatus,
       messageauthorrole
"""

from collections.abc import Sequence

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto";')

    # ── 1. Enum types ──────────────────────────────────────────────────────
    op.execute("CREATE TYPE userrole AS ENUM ('user', 'moderator', 'admin');")
    op.execute("CREATE TYPE disputecontext AS ENUM ('order', 'campaign', 'application');")
    op.execute("""
        CREATE TYPE disputestatus AS ENUM (
            'open', 'in_review', 'awaiting_party_a', 'awaiting_party_b',
            'proposal', 'resolved', 'closed_expired', 'rejected', 'escalated'
        );
    """)
    op.execute("CREATE TYPE proposalpartystatus AS ENUM ('pending', 'accepted', 'rejected');")
    op.execute("""
        CREATE TYPE messageauthorrole AS ENUM (
            'buyer', 'seller', 'influencer', 'moderator', 'system'
        );
    """)

    # ── 2. Collaborator tables (read-only for this service) ───────────────
    op.execute("""
        CREATE TABLE users (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            email VARCHAR(255) NOT NULL,
            name VARCHAR(200) NOT NULL,
            full_name VARCHAR(255),
            avatar_url VARCHAR(500),
            role userrole NOT NULL DEFAULT 'user',
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_users_email UNIQUE (email)
        );
    """)
    op.execute("CREATE INDEX ix_users_role ON users (role);")
    op.execute("CREATE INDEX ix_users_email_lower ON users (lower(email) text_pattern_ops);")

    op.execute("""
        CREATE TABLE shops (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            owner_id UUID NOT NULL REFERENCES users(id) ON DELETE RESTRICT,
            name VARCHAR(255) NOT NULL,
            image_url VARCHAR(500),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute("CREATE INDEX ix_shops_owner_id ON shops (owner_id);")

    op.execute("""
        CREATE TABLE products (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            shop_id UUID NOT NULL REFERENCES shops(id) ON DELETE CASCADE,
            name VARCHAR(255) NOT NULL,
            price NUMERIC(15, 2),
            images JSONB NOT NULL DEFAULT '[]'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute("CREATE INDEX ix_products_shop_id ON products (shop_id);")

    op.execute("""
        CREATE TABLE orders (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            reference VARCHAR(100),
            buyer_id UUID NOT NULL REFERENCES users(id) ON DELETE RESTRICT,
            items JSONB NOT NULL DEFAULT '[]'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute("CREATE INDEX ix_orders_buyer_id ON orders (buyer_id);")

    op.execute("""
        CREATE TABLE campaigns (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            shop_id UUID NOT NULL REFERENCES shops(id) ON DELETE CASCADE,
            name VARCHAR(255) NOT NULL,
            image_url VARCHAR(500),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute("CREATE INDEX ix_campaigns_shop_id ON campaigns (shop_id);")

    op.execute("""
        CREATE TABLE campaign_applications (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            campaign_id UUID NOT NULL REFERENCES campaigns(id) ON DELETE CASCADE,
            influencer_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute(
        "CREATE INDEX ix_campaign_applications_campaign_id ON campaign_applications (campaign_id);"
    )

    # ── 3. Disputes ────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE disputes (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            context disputecontext NOT NULL DEFAULT 'order',

            -- Subject (one of, matching context)
            order_id UUID REFERENCES orders(id) ON DELETE SET NULL,
            campaign_id UUID REFERENCES campaigns(id) ON DELETE SET NULL,
            application_id UUID REFERENCES campaign_applications(id) ON DELETE SET NULL,
            subject_ref VARCHAR(64) NOT NULL,
            reference VARCHAR(100),

            -- Display linkage
            product_id UUID REFERENCES products(id) ON DELETE SET NULL,
            product_name VARCHAR(255),
            shop_id UUID REFERENCES shops(id) ON DELETE SET NULL,
            shop_name VARCHAR(255),

            -- Parties (buyer_id holds the influencer for campaign/application)
            buyer_id UUID NOT NULL REFERENCES users(id) ON DELETE RESTRICT,
            seller_id UUID NOT NULL REFERENCES users(id) ON DELETE RESTRICT,

            reason_code VARCHAR(100) NOT NULL,
            initial_description TEXT NOT NULL,

            -- State machine
            status disputestatus NOT NULL DEFAULT 'open',
            sla_hours INTEGER NOT NULL DEFAULT 72,
            current_due_at TIMESTAMPTZ,
            closure_type VARCHAR(255),
            proposal_buyer_status proposalpartystatus,
            proposal_seller_status proposalpartystatus,

            -- Moderation
            moderator_assigned_to UUID REFERENCES users(id) ON DELETE SET NULL,
            moderator_key VARCHAR(255),

            version INTEGER NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_disputes_subject UNIQUE (context, buyer_id, seller_id, subject_ref),
            CONSTRAINT ck_disputes_terminal_deadline CHECK (
                status NOT IN ('resolved', 'closed_expired', 'rejected')
                OR current_due_at IS NULL
            )
        );
    """)
    op.execute("CREATE INDEX ix_disputes_buyer_id ON disputes (buyer_id);")
    op.execute("CREATE INDEX ix_disputes_seller_id ON disputes (seller_id);")
    op.execute("CREATE INDEX ix_disputes_status ON disputes (status);")
    op.execute(
        "CREATE INDEX ix_disputes_current_due_at ON disputes (current_due_at) "
        "WHERE current_due_at IS NOT NULL;"
    )
    op.execute(
        "CREATE INDEX ix_disputes_moderator_assigned_to ON disputes (moderator_assigned_to);"
    )

    op.execute("""
        CREATE TABLE dispute_messages (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            dispute_id UUID NOT NULL REFERENCES disputes(id) ON DELETE CASCADE,
            author_role messageauthorrole NOT NULL,
            author_id UUID REFERENCES users(id) ON DELETE SET NULL,
            text TEXT,
            attachments JSONB NOT NULL DEFAULT '[]'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute(
        "CREATE INDEX ix_dispute_messages_dispute_id ON dispute_messages (dispute_id, created_at);"
    )

    op.execute("""
        CREATE TABLE dispute_reasons (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            code VARCHAR(100) NOT NULL,
            title VARCHAR(255) NOT NULL,
            category VARCHAR(50) NOT NULL,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_dispute_reasons_code UNIQUE (code)
        );
    """)
    op.execute(
        "CREATE INDEX ix_dispute_reasons_category ON dispute_reasons (category, is_active);"
    )

    # ── 4. Side-effect tables ──────────────────────────────────────────────
    op.execute("""
        CREATE TABLE notifications (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            type VARCHAR(50) NOT NULL,
            title VARCHAR(255) NOT NULL,
            message TEXT NOT NULL DEFAULT '',
            entity_id UUID,
            data JSONB NOT NULL DEFAULT '{}'::jsonb,
            is_read BOOLEAN NOT NULL DEFAULT FALSE,
            read_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute("CREATE INDEX ix_notifications_user_id ON notifications (user_id, is_read);")
    op.execute("CREATE INDEX ix_notifications_entity_id ON notifications (entity_id);")

    op.execute("""
        CREATE TABLE audit_logs (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            actor_id UUID NOT NULL REFERENCES users(id) ON DELETE RESTRICT,
            action VARCHAR(100) NOT NULL,
            entity_type VARCHAR(100) NOT NULL,
            entity_id UUID NOT NULL,
            before JSONB,
            after JSONB,
            metadata JSONB,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute(
        "CREATE INDEX ix_audit_logs_entity ON audit_logs (entity_type, entity_id, created_at);"
    )
    op.execute("CREATE INDEX ix_audit_logs_action ON audit_logs (action, created_at);")


def downgrade() -> None:
    for table in (
        "audit_logs",
        "notifications",
        "dispute_reasons",
        "dispute_messages",
        "disputes",
        "campaign_applications",
        "campaigns",
        "orders",
        "products",
        "shops",
        "users",
    ):
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE;")
    for enum_type in (
        "messageauthorrole",
        "proposalpartystatus",
        "disputestatus",
        "disputecontext",
        "userrole",
    ):
        op.execute(f"DROP TYPE IF EXISTS {enum_type};")
