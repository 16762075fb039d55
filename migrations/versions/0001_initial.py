"""initial schema: users, refresh tokens, certificates, history, uploads

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

USER_ROLES = ("creator", "verifier", "issuer", "admin")
CERT_STATUSES = ("draft", "pending_verification", "verified", "issued", "revoked")
CERT_TYPES = ("academic", "professional", "training", "achievement")


def _enum(values, length, name):
    return sa.Enum(*values, native_enum=False, length=length, name=name)


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(30), nullable=False),
        sa.Column("email", sa.String(160), nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("role", _enum(USER_ROLES, 16, "userrole"), nullable=False),
        sa.Column("wallet_address", sa.String(42), nullable=True),
        sa.Column("first_name", sa.String(50)),
        sa.Column("last_name", sa.String(50)),
        sa.Column("organization", sa.String(100)),
        sa.Column("department", sa.String(100)),
        sa.Column("phone_number", sa.String(30)),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_email_verified", sa.Boolean(), nullable=False),
        sa.Column("last_login", sa.DateTime(timezone=True)),
        sa.Column("password_changed_at", sa.DateTime(timezone=True)),
        sa.Column("password_reset_token", sa.String(64)),
        sa.Column("password_reset_expires", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("wallet_address", name="uq_users_wallet_address"),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_password_reset_token", "users", ["password_reset_token"])

    op.create_table(
        "refresh_tokens",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("jti", sa.String(64), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint("id", name="pk_refresh_tokens"),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name="fk_refresh_tokens_user_id_users", ondelete="CASCADE"
        ),
    )
    op.create_index("ix_refresh_tokens_jti", "refresh_tokens", ["jti"], unique=True)
    op.create_index("ix_refresh_tokens_user_id", "refresh_tokens", ["user_id"])

    op.create_table(
        "certificates",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("certificate_id", sa.String(40), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("type", _enum(CERT_TYPES, 16, "certificatetype"), nullable=False),
        sa.Column("description", sa.String(1000)),
        sa.Column("recipient_student_id", sa.String(50), nullable=False),
        sa.Column("recipient_name", sa.String(100), nullable=False),
        sa.Column("recipient_email", sa.String(160)),
        sa.Column("recipient_wallet_address", sa.String(42)),
        sa.Column("institution_name", sa.String(200), nullable=False),
        sa.Column("institution_department", sa.String(100)),
        sa.Column("institution_address", sa.String(300)),
        sa.Column("course_subject", sa.String(100), nullable=False),
        sa.Column("course_grade", sa.String(10)),
        sa.Column("course_credits", sa.Integer()),
        sa.Column("course_duration", sa.String(50)),
        sa.Column("completion_date", sa.Date()),
        sa.Column("issue_date", sa.Date()),
        sa.Column("expiry_date", sa.Date()),
        sa.Column("status", _enum(CERT_STATUSES, 32, "certificatestatus"), nullable=False),
        sa.Column("creator_id", sa.Integer(), nullable=False),
        sa.Column("verifier_id", sa.Integer()),
        sa.Column("verified_at", sa.DateTime(timezone=True)),
        sa.Column("verification_comments", sa.String(500)),
        sa.Column("issuer_id", sa.Integer()),
        sa.Column("issued_at", sa.DateTime(timezone=True)),
        sa.Column("issuance_comments", sa.String(500)),
        sa.Column("revoked_at", sa.DateTime(timezone=True)),
        sa.Column("revocation_reason", sa.String(500)),
        sa.Column("certificate_hash", sa.String(66)),
        sa.Column("transaction_hash", sa.String(66)),
        sa.Column("block_number", sa.Integer()),
        sa.Column("contract_address", sa.String(42)),
        sa.Column("chain_certificate_id", sa.Integer()),
        sa.Column("network", sa.String(50), nullable=False),
        sa.Column("ipfs_cid", sa.String(100)),
        sa.Column("ipfs_gateway", sa.String(255)),
        sa.Column("ipfs_encryption_key", sa.String(128)),
        sa.Column("ipfs_is_encrypted", sa.Boolean(), nullable=False),
        sa.Column("verification_code", sa.String(32)),
        sa.Column("is_verified", sa.Boolean(), nullable=False),
        sa.Column("batch_id", sa.String(64)),
        sa.Column("template_id", sa.String(64)),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("custom_fields", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_certificates"),
        sa.ForeignKeyConstraint(["creator_id"], ["users.id"], name="fk_certificates_creator_id_users"),
        sa.ForeignKeyConstraint(["verifier_id"], ["users.id"], name="fk_certificates_verifier_id_users"),
        sa.ForeignKeyConstraint(["issuer_id"], ["users.id"], name="fk_certificates_issuer_id_users"),
    )
    op.create_index("ix_certificates_certificate_id", "certificates", ["certificate_id"], unique=True)
    op.create_index("ix_certificates_certificate_hash", "certificates", ["certificate_hash"], unique=True)
    op.create_index("ix_certificates_verification_code", "certificates", ["verification_code"], unique=True)
    op.create_index("ix_certificates_recipient_student_id", "certificates", ["recipient_student_id"])
    op.create_index("ix_certificates_recipient_name", "certificates", ["recipient_name"])
    op.create_index("ix_certificates_institution_name", "certificates", ["institution_name"])
    op.create_index("ix_certificates_course_subject", "certificates", ["course_subject"])
    op.create_index("ix_certificates_status", "certificates", ["status"])
    op.create_index("ix_certificates_creator_id", "certificates", ["creator_id"])
    op.create_index("ix_certificates_batch_id", "certificates", ["batch_id"])
    op.create_index("ix_certificates_created_at", "certificates", ["created_at"])

    op.create_table(
        "certificate_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("certificate_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(30), nullable=False),
        sa.Column("performed_by_id", sa.Integer()),
        sa.Column("details", sa.Text()),
        sa.Column("previous_status", sa.String(32)),
        sa.Column("new_status", sa.String(32)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_certificate_events"),
        sa.ForeignKeyConstraint(
            ["certificate_id"], ["certificates.id"],
            name="fk_certificate_events_certificate_id_certificates", ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["performed_by_id"], ["users.id"], name="fk_certificate_events_performed_by_id_users"
        ),
    )
    op.create_index("ix_certificate_events_certificate_id", "certificate_events", ["certificate_id"])
    op.create_index("ix_certificate_events_action", "certificate_events", ["action"])
    op.create_index("ix_certificate_events_created_at", "certificate_events", ["created_at"])

    op.create_table(
        "upload_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("upload_id", sa.String(64), nullable=False),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("file_type", sa.String(10), nullable=False),
        sa.Column("mime_type", sa.String(120)),
        sa.Column("size_bytes", sa.Integer(), nullable=False),
        sa.Column("total_rows", sa.Integer(), nullable=False),
        sa.Column("valid_rows", sa.Integer(), nullable=False),
        sa.Column("invalid_rows", sa.Integer(), nullable=False),
        sa.Column("rows", sa.JSON(), nullable=False),
        sa.Column("errors", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("batch_id", sa.String(64)),
        sa.Column("uploaded_by_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_upload_sessions"),
        sa.ForeignKeyConstraint(["uploaded_by_id"], ["users.id"], name="fk_upload_sessions_uploaded_by_id_users"),
    )
    op.create_index("ix_upload_sessions_upload_id", "upload_sessions", ["upload_id"], unique=True)
    op.create_index("ix_upload_sessions_uploaded_by_id", "upload_sessions", ["uploaded_by_id"])


def downgrade():
    op.drop_table("upload_sessions")
    op.drop_table("certificate_events")
    op.drop_table("certificates")
    op.drop_table("refresh_tokens")
    op.drop_table("users")
