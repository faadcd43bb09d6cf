"""
SQLAlchemy ORM models for tables owned by the course service.

Column names follow the course service's camelCase schema; only the columns
the proctor service needs are mapped.

Read-only:
  - assessments          → anti-cheat override blob at metadata.antiCheatConfig
Written (review flag only):
  - assessment_attempts  → flaggedForReview / flags
"""
import uuid

from sqlalchemy import Boolean, Column, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import relationship

from proctor.db.database import Base


class Assessment(Base):
    __tablename__ = "assessments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(String(255))
    assessment_metadata = Column("metadata", JSONB, nullable=True)


class AssessmentAttempt(Base):
    __tablename__ = "assessment_attempts"

    id                 = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id            = Column("userId", UUID(as_uuid=True), nullable=False)
    assessment_id      = Column("assessmentId", UUID(as_uuid=True),
                                ForeignKey("assessments.id"), nullable=False)
    status             = Column(String(20))
    flagged_for_review = Column("flaggedForReview", Boolean, default=False)
    flags              = Column(ARRAY(Text), default=list)

    assessment = relationship(Assessment, lazy="joined")
