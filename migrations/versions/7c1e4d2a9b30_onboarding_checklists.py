"""onboarding_checklists

Creates the onboarding desk tables:
  - checklist_templates / _sections / _items   immutable, versioned templates
  - checklist_instances / _section_instances / _item_instances / _item_notes
  - accounts
  - onboardings

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via
db.create_all() in a development environment.

Revision ID: 7c1e4d2a9b30
Revises:
Create Date: 2026-10-19 09:12:41.318204
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '7c1e4d2a9b30'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Templates ─────────────────────────────────────────────────────────
    if "checklist_templates" not in existing:
        op.create_table(
            "checklist_templates",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column(
                "checklist_type", sa.String(length=50), nullable=False,
                comment="ONBOARDING | DEAL_PROCESSING | KYC | ...",
            ),
            sa.Column("version_number", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=True),
            sa.Column("published_by", sa.String(length=100), nullable=True),
            sa.Column("published_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("checklist_type", "version_number", name="uq_checklist_template_version"),
        )

    if "checklist_template_sections" not in existing:
        op.create_table(
            "checklist_template_sections",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("template_id", sa.Integer(), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("guidance", sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(["template_id"], ["checklist_templates.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_checklist_template_sections_template_id",
            "checklist_template_sections", ["template_id"],
        )

    if "checklist_template_items" not in existing:
        op.create_table(
            "checklist_template_items",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("section_id", sa.Integer(), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False),
            sa.Column(
                "key", sa.String(length=120), nullable=False,
                comment="Stable identifier, unique within the template",
            ),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("guidance", sa.Text(), nullable=True),
            sa.Column("check_type", sa.String(length=20), nullable=False, server_default="MANUAL"),
            sa.ForeignKeyConstraint(["section_id"], ["checklist_template_sections.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_checklist_template_items_section_id",
            "checklist_template_items", ["section_id"],
        )

    # ── Instances ─────────────────────────────────────────────────────────
    if "checklist_instances" not in existing:
        op.create_table(
            "checklist_instances",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("template_id", sa.Integer(), nullable=False),
            sa.Column("checklist_type", sa.String(length=50), nullable=False),
            sa.Column("version_number", sa.Integer(), nullable=False),
            sa.Column(
                "revision", sa.Integer(), nullable=False, server_default="0",
                comment="Incremented once per applied update batch (If-Match guard)",
            ),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["template_id"], ["checklist_templates.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_checklist_instances_template_id", "checklist_instances", ["template_id"])

    if "checklist_section_instances" not in existing:
        op.create_table(
            "checklist_section_instances",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("instance_id", sa.Integer(), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("guidance", sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(["instance_id"], ["checklist_instances.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_checklist_section_instances_instance_id",
            "checklist_section_instances", ["instance_id"],
        )

    if "checklist_item_instances" not in existing:
        op.create_table(
            "checklist_item_instances",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("section_id", sa.Integer(), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False),
            sa.Column("key", sa.String(length=120), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("guidance", sa.Text(), nullable=True),
            sa.Column("check_type", sa.String(length=20), nullable=False, server_default="MANUAL"),
            sa.Column(
                "status", sa.String(length=20), nullable=False, server_default="NOT_STARTED",
                comment="NOT_STARTED | IN_PROGRESS | SATISFACTORY | ADVERSE",
            ),
            sa.Column("status_updated_by", sa.String(length=100), nullable=True),
            sa.Column("status_updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["section_id"], ["checklist_section_instances.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_checklist_item_instances_section_id",
            "checklist_item_instances", ["section_id"],
        )

    if "checklist_item_notes" not in existing:
        op.create_table(
            "checklist_item_notes",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("item_id", sa.Integer(), nullable=False),
            sa.Column("text", sa.Text(), nullable=False),
            sa.Column("user_id", sa.String(length=100), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["item_id"], ["checklist_item_instances.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_checklist_item_notes_item_id", "checklist_item_notes", ["item_id"])

    # ── Accounts & onboardings ────────────────────────────────────────────
    if "accounts" not in existing:
        op.create_table(
            "accounts",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("account_name", sa.String(length=255), nullable=False),
            sa.Column("wallet_address", sa.String(length=64), nullable=True),
            sa.Column(
                "status", sa.String(length=20), nullable=False, server_default="UNDER_REVIEW",
                comment="ACTIVE | SUSPENDED | UNDER_REVIEW | CLOSED",
            ),
            sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_accounts_account_name", "accounts", ["account_name"])

    if "onboardings" not in existing:
        op.create_table(
            "onboardings",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("registration_id", sa.String(length=64), nullable=False),
            sa.Column("company_name", sa.String(length=255), nullable=False),
            sa.Column("contact_email", sa.String(length=255), nullable=True),
            sa.Column(
                "status", sa.String(length=20), nullable=False, server_default="NEW",
                comment="NEW | IN_PROGRESS | COMPLETE",
            ),
            sa.Column("checklist_instance_id", sa.Integer(), nullable=False),
            sa.Column("account_id", sa.Integer(), nullable=False),
            sa.Column(
                "decision", sa.String(length=20), nullable=False, server_default="PENDING",
                comment="PENDING | APPROVED | DECLINED",
            ),
            sa.Column("decision_note", sa.Text(), nullable=True),
            sa.Column("decided_by", sa.String(length=100), nullable=True),
            sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["checklist_instance_id"], ["checklist_instances.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["account_id"], ["accounts.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("registration_id"),
            sa.UniqueConstraint("checklist_instance_id"),
            sa.UniqueConstraint("account_id"),
        )
        op.create_index("ix_onboardings_company_name", "onboardings", ["company_name"])


def downgrade():
    op.drop_index("ix_onboardings_company_name", table_name="onboardings")
    op.drop_table("onboardings")
    op.drop_index("ix_accounts_account_name", table_name="accounts")
    op.drop_table("accounts")
    op.drop_index("ix_checklist_item_notes_item_id", table_name="checklist_item_notes")
    op.drop_table("checklist_item_notes")
    op.drop_index("ix_checklist_item_instances_section_id", table_name="checklist_item_instances")
    op.drop_table("checklist_item_instances")
    op.drop_index("ix_checklist_section_instances_instance_id", table_name="checklist_section_instances")
    op.drop_table("checklist_section_instances")
    op.drop_index("ix_checklist_instances_template_id", table_name="checklist_instances")
    op.drop_table("checklist_instances")
    op.drop_index("ix_checklist_template_items_section_id", table_name="checklist_template_items")
    op.drop_table("checklist_template_items")
    op.drop_index("ix_checklist_template_sections_template_id", table_name="checklist_template_sections")
    op.drop_table("checklist_template_sections")
    op.drop_table("checklist_templates")
