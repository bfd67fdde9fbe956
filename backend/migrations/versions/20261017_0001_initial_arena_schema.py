from __future__ import annotations
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = "20261017_0001"
down_revision = None
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("user_id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("balance >= 0", name="ck_accounts_balance_non_negative"),
    )
    op.create_index("ix_accounts_username", "accounts", ["username"])

    op.create_table(
        "ledger_transactions",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("account_id", sa.String(length=64), sa.ForeignKey("accounts.user_id", ondelete="CASCADE"), nullable=False),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=24), nullable=False),
        sa.Column("reference", sa.String(length=64), nullable=True),
        sa.Column("idempotency_key", sa.String(length=128), nullable=True, unique=True),
        sa.Column("note", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_ledger_transactions_account_id", "ledger_transactions", ["account_id"])
    op.create_index("ix_ledger_transactions_reference", "ledger_transactions", ["reference"])

    op.create_table(
        "challenges",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("type", sa.String(length=8), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("creator_id", sa.String(length=64), sa.ForeignKey("accounts.user_id"), nullable=False),
        sa.Column("opponent_id", sa.String(length=64), sa.ForeignKey("accounts.user_id"), nullable=True),
        sa.Column("game_id", sa.Integer(), nullable=False),
        sa.Column("leaderboard_id", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("score_direction", sa.String(length=8), nullable=False, server_default="higher"),
        sa.Column("wager", sa.Integer(), nullable=False),
        sa.Column("max_participants", sa.Integer(), nullable=True),
        sa.Column("duration_hours", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("respond_by", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("ends_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("betting_closes_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("resolve_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("outcome", sa.String(length=16), nullable=True),
        sa.Column("winner_id", sa.String(length=64), nullable=True),
        sa.Column("house_contribution", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.CheckConstraint("wager > 0", name="ck_challenges_wager_positive"),
    )
    op.create_index("ix_challenges_status", "challenges", ["status"])
    op.create_index("ix_challenges_creator_id", "challenges", ["creator_id"])
    op.create_index("ix_challenges_opponent_id", "challenges", ["opponent_id"])
    op.create_index("ix_challenges_respond_by", "challenges", ["respond_by"])
    op.create_index("ix_challenges_ends_at", "challenges", ["ends_at"])

    op.create_table(
        "challenge_participants",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("challenge_id", sa.Uuid(), sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(length=64), sa.ForeignKey("accounts.user_id"), nullable=False),
        sa.Column("display_name", sa.String(length=64), nullable=False),
        sa.Column("joined_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("score", sa.Float(), nullable=True),
        sa.Column("formatted_score", sa.String(length=64), nullable=True),
        sa.Column("rank", sa.Integer(), nullable=True),
        sa.Column("wager_paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint("challenge_id", "user_id", name="uq_participant_once_per_challenge"),
    )
    op.create_index("ix_challenge_participants_challenge_id", "challenge_participants", ["challenge_id"])
    op.create_index("ix_challenge_participants_user_id", "challenge_participants", ["user_id"])

    op.create_table(
        "challenge_bets",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("challenge_id", sa.Uuid(), sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False),
        sa.Column("bettor_id", sa.String(length=64), sa.ForeignKey("accounts.user_id"), nullable=False),
        sa.Column("display_name", sa.String(length=64), nullable=False),
        sa.Column("target_id", sa.String(length=64), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("placed_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payout", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("house_contribution", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("refunded", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint("challenge_id", "bettor_id", name="uq_bet_once_per_bettor"),
        sa.CheckConstraint("amount > 0", name="ck_challenge_bets_amount_positive"),
    )
    op.create_index("ix_challenge_bets_challenge_id", "challenge_bets", ["challenge_id"])
    op.create_index("ix_challenge_bets_bettor_id", "challenge_bets", ["bettor_id"])

def downgrade() -> None:
    op.drop_index("ix_challenge_bets_bettor_id", table_name="challenge_bets")
    op.drop_index("ix_challenge_bets_challenge_id", table_name="challenge_bets")
    op.drop_table("challenge_bets")
    op.drop_index("ix_challenge_participants_user_id", table_name="challenge_participants")
    op.drop_index("ix_challenge_participants_challenge_id", table_name="challenge_participants")
    op.drop_table("challenge_participants")
    for ix in ("ends_at", "respond_by", "opponent_id", "creator_id", "status"):
        op.drop_index(f"ix_challenges_{ix}", table_name="challenges")
    op.drop_table("challenges")
    op.drop_index("ix_ledger_transactions_reference", table_name="ledger_transactions")
    op.drop_index("ix_ledger_transactions_account_id", table_name="ledger_transactions")
    op.drop_table("ledger_transactions")
    op.drop_index("ix_accounts_username", table_name="accounts")
    op.drop_table("accounts")
