"""credit packages ledger

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 00:00:00
"""
from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _str_enum(name, *values):
    return sa.Enum(*values, name=name, native_enum=False, length=32)


VALIDITY = ("days_from_purchase", "days_from_activation")
PACKAGE_STATUS = ("pending_payment", "active", "completed", "expired", "cancelled")
USAGE_STATUS = ("used", "cancelled")


def upgrade():
    op.create_table(
        "company",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("company.id", ondelete="CASCADE"), nullable=False),
        sa.Column("first_name", sa.Text(), nullable=False),
        sa.Column("last_name", sa.Text()),
        sa.Column("phone", sa.Text()),
        sa.Column("email", sa.Text()),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "services",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("company.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("duration_min", sa.Integer()),
        sa.Column("description", sa.Text()),
        sa.Column("is_active", sa.Boolean(), nullable=False),
    )

    op.create_table(
        "package_templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("company.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("code", sa.Text()),
        sa.Column("validity_days", sa.Integer(), nullable=False),
        sa.Column("validity_type", _str_enum("validity_type", *VALIDITY), nullable=False),
        sa.Column("original_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("sale_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("allow_partial_use", sa.Boolean(), nullable=False),
        sa.Column("transferable", sa.Boolean(), nullable=False),
        sa.Column("max_installments", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime()),
        sa.Column("deleted_at", sa.DateTime()),
    )

    op.create_table(
        "package_template_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("template_id", sa.Integer(), sa.ForeignKey("package_templates.id", ondelete="CASCADE"), nullable=False),
        sa.Column("service_id", sa.Integer(), sa.ForeignKey("services.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2)),
        sa.CheckConstraint("quantity >= 1", name="ck_template_item_quantity"),
    )

    op.create_table(
        "client_packages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("company.id", ondelete="CASCADE"), nullable=False),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("template_id", sa.Integer(), sa.ForeignKey("package_templates.id")),
        sa.Column("template_version", sa.Integer()),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("code", sa.Text(), nullable=False),
        sa.Column("validity_days", sa.Integer(), nullable=False),
        sa.Column("validity_type", _str_enum("validity_type", *VALIDITY), nullable=False),
        sa.Column("allow_partial_use", sa.Boolean(), nullable=False),
        sa.Column("status", _str_enum("client_package_status", *PACKAGE_STATUS), nullable=False),
        sa.Column("purchase_date", sa.DateTime(), nullable=False),
        sa.Column("activation_date", sa.DateTime()),
        sa.Column("expires_at", sa.DateTime()),
        sa.Column("completed_at", sa.DateTime()),
        sa.Column("cancelled_at", sa.DateTime()),
        sa.Column("original_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("sale_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("paid_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_method", sa.Text()),
        sa.Column("installments", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("internal_notes", sa.Text()),
        sa.Column("sold_by", sa.Integer()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("company_id", "code"),
    )
    op.create_index(
        "ix_client_packages_status_expiry", "client_packages", ["company_id", "status", "expires_at"]
    )
    op.create_index("ix_client_packages_client", "client_packages", ["company_id", "client_id"])

    op.create_table(
        "client_package_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("client_package_id", sa.Integer(), sa.ForeignKey("client_packages.id", ondelete="CASCADE"), nullable=False),
        sa.Column("service_id", sa.Integer(), sa.ForeignKey("services.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("used_quantity", sa.Integer(), nullable=False),
        sa.Column("cancelled_quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.CheckConstraint(
            "used_quantity >= 0 AND cancelled_quantity >= 0 "
            "AND used_quantity + cancelled_quantity <= quantity",
            name="ck_package_item_credits",
        ),
        sa.UniqueConstraint("client_package_id", "service_id"),
    )

    op.create_table(
        "client_package_usages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("client_package_id", sa.Integer(), sa.ForeignKey("client_packages.id", ondelete="CASCADE"), nullable=False),
        sa.Column("item_id", sa.Integer(), sa.ForeignKey("client_package_items.id", ondelete="CASCADE"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("used_at", sa.DateTime(), nullable=False),
        sa.Column("used_by", sa.Integer()),
        sa.Column("appointment_id", sa.Integer()),
        sa.Column("provider_id", sa.Integer()),
        sa.Column("notes", sa.Text()),
        sa.Column("status", _str_enum("package_usage_status", *USAGE_STATUS), nullable=False),
        sa.Column("cancelled_at", sa.DateTime()),
        sa.Column("cancelled_by", sa.Integer()),
        sa.Column("cancellation_reason", sa.Text()),
        sa.CheckConstraint("quantity >= 1", name="ck_usage_quantity"),
    )
    op.create_index("ix_usages_package", "client_package_usages", ["client_package_id"])
    op.create_index("ix_usages_used_at", "client_package_usages", ["used_at"])

    op.create_table(
        "package_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("client_package_id", sa.Integer(), sa.ForeignKey("client_packages.id", ondelete="CASCADE"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("method", sa.Text()),
        sa.Column("notes", sa.Text()),
        sa.Column("paid_at", sa.DateTime(), nullable=False),
        sa.Column("recorded_by", sa.Integer()),
        sa.CheckConstraint("amount > 0", name="ck_payment_amount"),
    )


def downgrade():
    op.drop_table("package_payments")
    op.drop_index("ix_usages_used_at", table_name="client_package_usages")
    op.drop_index("ix_usages_package", table_name="client_package_usages")
    op.drop_table("client_package_usages")
    op.drop_table("client_package_items")
    op.drop_index("ix_client_packages_client", table_name="client_packages")
    op.drop_index("ix_client_packages_status_expiry", table_name="client_packages")
    op.drop_table("client_packages")
    op.drop_table("package_template_items")
    op.drop_table("package_templates")
    op.drop_table("services")
    op.drop_table("users")
    op.drop_table("company")
