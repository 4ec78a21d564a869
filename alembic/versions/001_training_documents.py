"""Training documents and their embedded chunks.

Revision ID: 001_training_documents
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_training_documents"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "training_documents",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.String(1000), nullable=True),
        sa.Column("source_path", sa.String(500), nullable=False),
        sa.Column("uploaded_by", sa.String(200), nullable=False),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("document_type", sa.String(50), nullable=False, server_default="other"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("chunk_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ingestion_state", sa.String(32), nullable=False, server_default="queued"),
        sa.Column("ingestion_error", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_training_documents_tenant_id", "training_documents", ["tenant_id"])
    op.create_index(
        "ix_training_documents_tenant_active",
        "training_documents",
        ["tenant_id", "is_active"],
    )

    op.create_table(
        "training_document_chunks",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "document_id",
            sa.Uuid(),
            sa.ForeignKey("training_documents.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("chunk_index", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("embedding", sa.JSON(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("document_id", "chunk_index", name="uq_training_chunk_document_index"),
    )
    op.create_index(
        "ix_training_document_chunks_document_id",
        "training_document_chunks",
        ["document_id"],
    )


def downgrade() -> None:
    op.drop_index("ix_training_document_chunks_document_id", table_name="training_document_chunks")
    op.drop_table("training_document_chunks")
    op.drop_index("ix_training_documents_tenant_active", table_name="training_documents")
    op.drop_index("ix_training_documents_tenant_id", table_name="training_documents")
    op.drop_table("training_documents")
