"""Core SQLAlchemy models (2.x style) for the matching schema.

Using PostgreSQL with pgvector for embeddings. The ``leads`` and
``student_embeddings`` tables are populated by other systems; this service
only reads them and owns ``lead_similar_users``.
"""

from __future__ import annotations

from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# text-embedding-3-large; the expected length of every embedding
EMBEDDING_DIM = 3072


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class Lead(Base):
    """Leads captured by the CRM. Columns beyond these may exist."""
    __tablename__ = "leads"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    bachelor_school: Mapped[str | None] = mapped_column(Text)
    bachelor_program_name: Mapped[str | None] = mapped_column(Text)
    bachelor_gpa: Mapped[str | None] = mapped_column(Text)
    master_school: Mapped[str | None] = mapped_column(Text)
    master_program_name: Mapped[str | None] = mapped_column(Text)
    master_gpa: Mapped[str | None] = mapped_column(Text)
    intended_program_level: Mapped[str | None] = mapped_column(Text)
    intended_programs: Mapped[str | None] = mapped_column(Text)
    intended_direction: Mapped[str | None] = mapped_column(Text)


class StudentEmbedding(Base):
    """Student profiles with precomputed embeddings.

    The ANN index must use the operator class that matches
    ``MATCHING_DISTANCE_METRIC`` (vector_cosine_ops for cosine,
    vector_ip_ops for inner product).
    """
    __tablename__ = "student_embeddings"

    mongo_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    full_name: Mapped[str | None] = mapped_column(String(255))
    text: Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[list[float]] = mapped_column(Vector(EMBEDDING_DIM), nullable=False)


class LeadSimilarUser(Base):
    """Persisted matches for a lead; replaced wholesale on every run."""
    __tablename__ = "lead_similar_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    lead_id: Mapped[str] = mapped_column(
        ForeignKey("leads.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    mongo_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)

    __table_args__ = (
        # Required by the ON CONFLICT DO NOTHING insert
        UniqueConstraint("lead_id", "mongo_id", name="uq_lead_similar_users_lead_mongo"),
        Index("ix_lead_similar_users_created_at", "created_at"),
    )
