"""piggy bank ledger

Revision ID: 0001_piggy_bank_ledger
Revises:
Create Date: 2026-10-19 00:00:00
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_piggy_bank_ledger"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


membership_role_enum = sa.Enum("ADMIN", "MEMBER", name="membership_role")
pool_type_enum = sa.Enum("wallet", "savings", name="piggy_pool_type")
transaction_type_enum = sa.Enum(
    "allowance",
    "spend",
    "child_save",
    "parent_deposit",
    "withdraw_to_wallet",
    "withdraw_cash",
    name="piggy_transaction_type",
)
open_request_destination_enum = sa.Enum("wallet", "cash", name="piggy_open_request_destination")
open_request_status_enum = sa.Enum(
    "pending",
    "approved",
    "rejected",
    "cancelled",
    name="piggy_open_request_status",
)
account_request_status_enum = sa.Enum("pending", "approved", "rejected", name="piggy_account_request_status")

_ENUMS = (
    membership_role_enum,
    pool_type_enum,
    transaction_type_enum,
    open_request_destination_enum,
    open_request_status_enum,
    account_request_status_enum,
)


def _timestamp(name: str, *, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False)


def upgrade() -> None:
    bind = op.get_bind()
    for enum in _ENUMS:
        enum.create(bind, checkfirst=True)
    json_type = postgresql.JSONB(astext_type=sa.Text()).with_variant(sa.JSON(), "sqlite")

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("nickname", sa.String(length=255), nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "groups",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("owner_id", sa.String(length=36), nullable=False),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "memberships",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("group_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("role", membership_role_enum, nullable=False),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("group_id", "user_id", name="uq_memberships_group_id_user_id"),
    )

    op.create_table(
        "piggy_wallets",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("group_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("balance", sa.BigInteger(), server_default="0", nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("balance >= 0", name="ck_piggy_wallets_balance_non_negative"),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("group_id", "user_id", name="uq_piggy_wallets_group_id_user_id"),
    )

    op.create_table(
        "piggy_savings_accounts",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("group_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("name", sa.String(length=40), nullable=False),
        sa.Column("balance", sa.BigInteger(), server_default="0", nullable=False),
        sa.Column("currency", sa.String(length=8), server_default="KRW", nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("balance >= 0", name="ck_piggy_savings_accounts_balance_non_negative"),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("group_id", "user_id", name="uq_piggy_savings_accounts_group_id_user_id"),
    )

    op.create_table(
        "piggy_open_requests",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("group_id", sa.String(length=36), nullable=False),
        sa.Column("child_id", sa.String(length=36), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("reason", sa.String(length=200), nullable=True),
        sa.Column("destination", open_request_destination_enum, nullable=False),
        sa.Column("status", open_request_status_enum, nullable=False),
        sa.Column("rejection_note", sa.String(length=200), nullable=True),
        sa.Column("resolved_by_id", sa.String(length=36), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        _timestamp("resolved_at", nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_piggy_open_requests_amount_positive"),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"]),
        sa.ForeignKeyConstraint(["child_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["resolved_by_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_piggy_open_requests_group_id_status", "piggy_open_requests", ["group_id", "status"])
    op.create_index(
        "ix_piggy_open_requests_child_id_created_at",
        "piggy_open_requests",
        ["child_id", "created_at"],
    )

    op.create_table(
        "piggy_transactions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("group_id", sa.String(length=36), nullable=False),
        sa.Column("pool", pool_type_enum, nullable=False),
        sa.Column("pool_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("actor_id", sa.String(length=36), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("type", transaction_type_enum, nullable=False),
        sa.Column("memo", sa.String(length=200), nullable=True),
        sa.Column("open_request_id", sa.String(length=36), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["actor_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["open_request_id"], ["piggy_open_requests.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_piggy_transactions_pool_id", "piggy_transactions", ["pool", "pool_id"])
    op.create_index(
        "ix_piggy_transactions_group_id_user_id_created_at",
        "piggy_transactions",
        ["group_id", "user_id", "created_at"],
    )

    op.create_table(
        "piggy_account_requests",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("group_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("status", account_request_status_enum, nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("group_id", "user_id", name="uq_piggy_account_requests_group_id_user_id"),
    )

    op.create_table(
        "idempotency_keys",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("group_id", sa.String(length=36), nullable=False),
        sa.Column("actor_id", sa.String(length=36), nullable=False),
        sa.Column("key", sa.String(length=255), nullable=False),
        sa.Column("operation", sa.String(length=100), nullable=False),
        sa.Column("response", json_type, nullable=False),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"]),
        sa.ForeignKeyConstraint(["actor_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("actor_id", "key", name="uq_idempotency_keys_actor_id_key"),
    )

    op.create_table(
        "event_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("group_id", sa.String(length=36), nullable=False),
        sa.Column("actor_user_id", sa.String(length=36), nullable=True),
        sa.Column("child_id", sa.String(length=36), nullable=True),
        sa.Column("type", sa.String(length=255), nullable=False),
        sa.Column("payload", json_type, nullable=False),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"]),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["child_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_event_log_group_id_created_at", "event_log", ["group_id", "created_at"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("group_id", sa.String(length=36), nullable=False),
        sa.Column("actor_user_id", sa.String(length=36), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("metadata", json_type, nullable=False),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"]),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_log_group_id_created_at", "audit_log", ["group_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_audit_log_group_id_created_at", table_name="audit_log")
    op.drop_table("audit_log")
    op.drop_index("ix_event_log_group_id_created_at", table_name="event_log")
    op.drop_table("event_log")
    op.drop_table("idempotency_keys")
    op.drop_table("piggy_account_requests")
    op.drop_index("ix_piggy_transactions_group_id_user_id_created_at", table_name="piggy_transactions")
    op.drop_index("ix_piggy_transactions_pool_id", table_name="piggy_transactions")
    op.drop_table("piggy_transactions")
    op.drop_index("ix_piggy_open_requests_child_id_created_at", table_name="piggy_open_requests")
    op.drop_index("ix_piggy_open_requests_group_id_status", table_name="piggy_open_requests")
    op.drop_table("piggy_open_requests")
    op.drop_table("piggy_savings_accounts")
    op.drop_table("piggy_wallets")
    op.drop_table("memberships")
    op.drop_table("groups")
    op.drop_table("users")

    bind = op.get_bind()
    for enum in reversed(_ENUMS):
        enum.drop(bind, checkfirst=True)
