"""initial_schema

Revision ID: 3f2a9c1d7e41
Revises:
Create Date: 2026-10-17 09:12:44.318204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f2a9c1d7e41'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

user_role_type = sa.Enum(
    "SUPER_ADMIN", "ADMIN", "MANAGER", "ACCOUNTANT", "USER", "CLIENT_VIEWER",
    "INVOICE_MANAGER", "CREDITOR_MANAGER", "READ_ONLY", name="userroletype",
)
onboarding_status = sa.Enum(
    "PENDING_VALIDATION", "EMAIL_SENT", "CLIENT_CONFIRMED", "ADMIN_REVIEW",
    "APPROVED", "REJECTED", name="onboardingstatus",
)
onboarding_step = sa.Enum(
    "BASIC_INFO", "BUSINESS_DETAILS", "BANKING_INFO", "VERIFICATION", "COMPLETED",
    name="onboardingstep",
)
approval_status = sa.Enum(
    "PENDING_APPROVAL", "APPROVED", "REJECTED", name="approvalstatus"
)
approval_priority = sa.Enum("LOW", "NORMAL", "HIGH", "URGENT", name="approvalpriority")
validation_type = sa.Enum("AUTOMATIC", "MANUAL", name="validationtype")
validation_status = sa.Enum("PENDING", "PASSED", "FAILED", name="validationstatus")
invoice_status = sa.Enum(
    "DRAFT", "SENT", "PAID", "OVERDUE", "CANCELLED", name="invoicestatus"
)
due_date_type = sa.Enum(
    "SEVEN_DAYS", "FOURTEEN_DAYS", "THIRTY_DAYS", "CUSTOM", name="duedatetype"
)
unit_type = sa.Enum("HOURS", "DAYS", "PIECES", "KILOMETERS", "AMOUNT", name="unittype")
legal_document_type = sa.Enum(
    "TERMS_AND_CONDITIONS", "PRIVACY_POLICY", "PROCESSING_AGREEMENT",
    "SERVICE_AGREEMENT", "OTHER", name="legaldocumenttype",
)
document_status = sa.Enum("DRAFT", "PUBLISHED", "ARCHIVED", name="documentstatus")
signature_type = sa.Enum(
    "DRAWN", "TYPED", "UPLOADED", "DIGITAL_CERTIFICATE", name="signaturetype"
)
signature_status = sa.Enum(
    "PENDING", "SIGNED", "REJECTED", "EXPIRED", name="signaturestatus"
)
compliance_level = sa.Enum("STANDARD", "ADVANCED", "QUALIFIED", name="compliancelevel")
verification_type = sa.Enum(
    "HASH_VERIFICATION", "TIMESTAMP_CHECK", "CERTIFICATE_CHECK", "MANUAL_REVIEW",
    name="verificationtype",
)
verification_result = sa.Enum(
    "VALID", "INVALID", "PENDING", "INCONCLUSIVE", name="verificationresult"
)
email_type = sa.Enum(
    "CLIENT_CONFIRMATION", "ADMIN_NOTIFICATION", "APPROVAL_NOTIFICATION",
    "REJECTION_NOTIFICATION", name="emailtype",
)
email_status = sa.Enum(
    "SENT", "DELIVERED", "OPENED", "CLICKED", "FAILED", "BOUNCED", name="emailstatus"
)
audit_action = sa.Enum(
    "CREATE", "READ", "UPDATE", "DELETE", "LOGIN", "LOGOUT", "APPROVE", "REJECT",
    "VALIDATE", "STATUS_CHANGE", "SECURITY_EVENT", name="auditaction",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    """Create the accounts, onboarding, invoicing, documents and audit tables."""
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("name", sa.String(255)),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("last_login_at", sa.DateTime()),
        *_timestamps(),
    )
    op.create_table(
        "user_roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("role", user_role_type, nullable=False),
        sa.Column("permissions", JSON, nullable=False),
        sa.Column("scope_type", sa.String(50)),
        sa.Column("scope_id", sa.String(100)),
        sa.Column("expires_at", sa.DateTime()),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("assigned_by", sa.Integer(), sa.ForeignKey("users.id")),
        *_timestamps(),
    )
    op.create_index("ix_user_roles_user_id", "user_roles", ["user_id"])

    op.create_table(
        "clients",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(50)),
        sa.Column("company", sa.String(200)),
        sa.Column("kvk_number", sa.String(8)),
        sa.Column("vat_number", sa.String(20)),
        sa.Column("business_type", sa.String(50)),
        sa.Column("address", sa.String(200)),
        sa.Column("postal_code", sa.String(10)),
        sa.Column("city", sa.String(100)),
        sa.Column("country", sa.String(2), nullable=False),
        sa.Column("contact_name", sa.String(200)),
        sa.Column("contact_email", sa.String(255)),
        sa.Column("contact_phone", sa.String(50)),
        sa.Column("contact_department", sa.String(100)),
        sa.Column("iban", sa.String(34)),
        sa.Column("bank_name", sa.String(100)),
        sa.Column("account_holder", sa.String(100)),
        sa.Column("kvk_validated", sa.Boolean(), nullable=False),
        sa.Column("kvk_validated_at", sa.DateTime()),
        sa.Column("btw_validated", sa.Boolean(), nullable=False),
        sa.Column("btw_validated_at", sa.DateTime()),
        sa.Column("iban_validated", sa.Boolean(), nullable=False),
        sa.Column("iban_validated_at", sa.DateTime()),
        sa.Column("email_confirmed", sa.Boolean(), nullable=False),
        sa.Column("email_confirmed_at", sa.DateTime()),
        sa.Column("email_confirmation_token", sa.String(64), unique=True),
        sa.Column("email_confirmation_expires_at", sa.DateTime()),
        sa.Column("onboarding_status", onboarding_status, nullable=False),
        sa.Column("onboarding_step", onboarding_step, nullable=False),
        sa.Column("onboarding_completed_at", sa.DateTime()),
        sa.Column("approval_status", approval_status, nullable=False),
        sa.Column("approved_at", sa.DateTime()),
        sa.Column("approved_by", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("approval_notes", sa.Text()),
        sa.Column("rejection_reason", sa.Text()),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("can_create_invoices", sa.Boolean(), nullable=False),
        sa.Column("invoice_permission_granted_at", sa.DateTime()),
        sa.Column(
            "invoice_permission_granted_by", sa.Integer(), sa.ForeignKey("users.id")
        ),
        sa.Column("total_invoiced", sa.Numeric(12, 2), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "kvk_number", name="uq_clients_user_kvk"),
        sa.UniqueConstraint("user_id", "vat_number", name="uq_clients_user_vat"),
    )
    op.create_index("ix_clients_user_id", "clients", ["user_id"])
    op.create_index("ix_clients_onboarding_status", "clients", ["onboarding_status"])

    op.create_table(
        "client_approvals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("status", approval_status, nullable=False),
        sa.Column("requested_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("requested_at", sa.DateTime(), nullable=False),
        sa.Column("reviewed_by", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("reviewed_at", sa.DateTime()),
        sa.Column("workflow_step", sa.String(50), nullable=False),
        sa.Column("priority", approval_priority, nullable=False),
        sa.Column("validation_checks", JSON),
        sa.Column("approval_notes", sa.Text()),
        sa.Column("rejection_reason", sa.Text()),
        *_timestamps(),
    )
    op.create_index("ix_client_approvals_status", "client_approvals", ["status"])

    op.create_table(
        "client_validations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("validation_type", validation_type, nullable=False),
        sa.Column("status", validation_status, nullable=False),
        sa.Column("kvk_check", JSON),
        sa.Column("btw_check", JSON),
        sa.Column("iban_check", JSON),
        sa.Column("email_check", JSON),
        sa.Column("phone_check", JSON),
        sa.Column("address_check", JSON),
        sa.Column("overall_score", sa.Float()),
        sa.Column("findings", JSON),
        sa.Column("requested_by", sa.Integer(), sa.ForeignKey("users.id")),
        *_timestamps(),
    )

    op.create_table(
        "invoices",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("invoice_number", sa.String(50), nullable=False),
        sa.Column("status", invoice_status, nullable=False),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("due_date_type", due_date_type, nullable=False),
        sa.Column("btw_rate", sa.Integer(), nullable=False),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False),
        sa.Column("btw_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("notes", sa.Text()),
        sa.Column("sent_at", sa.DateTime()),
        sa.Column("paid_at", sa.DateTime()),
        sa.Column("cancelled_at", sa.DateTime()),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "invoice_number", name="uq_invoices_user_number"),
    )
    op.create_index("ix_invoices_client_id", "invoices", ["client_id"])
    op.create_index("ix_invoices_status_due_date", "invoices", ["status", "due_date"])

    op.create_table(
        "invoice_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(500), nullable=False),
        sa.Column("quantity", sa.Numeric(12, 2), nullable=False),
        sa.Column("rate", sa.Numeric(12, 2), nullable=False),
        sa.Column("unit_type", unit_type, nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
    )

    op.create_table(
        "standard_services",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("category", sa.String(50)),
        sa.Column("default_rate", sa.Numeric(8, 2), nullable=False),
        sa.Column("unit_type", unit_type, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False),
        sa.Column("usage_count", sa.Integer(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_standard_services_user_id", "standard_services", ["user_id"])

    op.create_table(
        "legal_documents",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("document_type", legal_document_type, nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("version", sa.String(10), nullable=False),
        sa.Column("language", sa.String(5), nullable=False),
        sa.Column("status", document_status, nullable=False),
        sa.Column("parent_id", sa.Integer(), sa.ForeignKey("legal_documents.id")),
        sa.Column("change_reason", sa.Text()),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("clients.id")),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("published_at", sa.DateTime()),
        sa.Column("published_by", sa.Integer(), sa.ForeignKey("users.id")),
        *_timestamps(),
    )

    op.create_table(
        "e_signatures",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "document_id", sa.Integer(), sa.ForeignKey("legal_documents.id"), nullable=False
        ),
        sa.Column("signer_email", sa.String(255), nullable=False),
        sa.Column("signer_name", sa.String(200), nullable=False),
        sa.Column("signer_role", sa.String(100)),
        sa.Column("signature_data", sa.Text(), nullable=False),
        sa.Column("signature_type", signature_type, nullable=False),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("ip_address", sa.String(64)),
        sa.Column("user_agent", sa.String(500)),
        sa.Column("location", sa.String(200)),
        sa.Column("hash_value", sa.String(64), nullable=False),
        sa.Column("verification_code", sa.String(32), nullable=False, unique=True),
        sa.Column("status", signature_status, nullable=False),
        sa.Column("signed_at", sa.DateTime()),
        sa.Column("rejection_reason", sa.Text()),
        sa.Column("witnessed_by", sa.String(200)),
        sa.Column("witnessed_at", sa.DateTime()),
        sa.Column("compliance_level", compliance_level, nullable=False),
        sa.Column("certificate_id", sa.String(32)),
        sa.Column("audit_trail", JSON),
        *_timestamps(),
    )
    op.create_index("ix_e_signatures_document_id", "e_signatures", ["document_id"])

    op.create_table(
        "signature_verifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "signature_id", sa.Integer(), sa.ForeignKey("e_signatures.id"), nullable=False
        ),
        sa.Column("verified_by", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("verification_type", verification_type, nullable=False),
        sa.Column("result", verification_result, nullable=False),
        sa.Column("hash_matches", sa.Boolean(), nullable=False),
        sa.Column("timestamp_valid", sa.Boolean(), nullable=False),
        sa.Column("certificate_valid", sa.Boolean()),
        sa.Column("verified_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "email_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("clients.id")),
        sa.Column("email_type", email_type, nullable=False),
        sa.Column("recipient", sa.String(255), nullable=False),
        sa.Column("subject", sa.String(255), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("status", email_status, nullable=False),
        sa.Column("confirmation_token", sa.String(64)),
        sa.Column("error_message", sa.Text()),
        sa.Column("sent_at", sa.DateTime()),
        sa.Column("confirmed_at", sa.DateTime()),
        *_timestamps(),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("action", audit_action, nullable=False),
        sa.Column("entity", sa.String(100), nullable=False),
        sa.Column("entity_id", sa.String(100), nullable=False),
        sa.Column("old_values", JSON),
        sa.Column("new_values", JSON),
        sa.Column("ip_address", sa.String(64)),
        sa.Column("user_agent", sa.String(500)),
        sa.Column("context", sa.Text()),
        sa.Column("previous_hash", sa.String(64)),
        sa.Column("entry_hash", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity", "entity_id"])
    op.create_index("ix_audit_logs_user_created", "audit_logs", ["user_id", "created_at"])


def downgrade() -> None:
    """Drop every table and enum type created by this revision."""
    for table in (
        "audit_logs",
        "email_logs",
        "signature_verifications",
        "e_signatures",
        "legal_documents",
        "standard_services",
        "invoice_items",
        "invoices",
        "client_validations",
        "client_approvals",
        "clients",
        "user_roles",
        "users",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for enum_type in (
        audit_action, email_status, email_type, verification_result,
        verification_type, compliance_level, signature_status, signature_type,
        document_status, legal_document_type, unit_type, due_date_type,
        invoice_status, validation_status, validation_type, approval_priority,
        approval_status, onboarding_step, onboarding_status, user_role_type,
    ):
        enum_type.drop(bind, checkfirst=True)
