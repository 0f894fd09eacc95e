from sqlalchemy import Column, String, Text, ForeignKey, DateTime, JSON
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    pass


class ProjectRecord(Base):
    __tablename__ = "projects"

    id = Column(String(64), primary_key=True)
    title = Column(String(255), nullable=False, index=True)
    summary = Column(Text, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    # Embedded image documents, in display order
    images = Column(JSON, nullable=False, default=list)
    main_image = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class AuthenticationRecord(Base):
    __tablename__ = "authentication"

    key = Column(String(64), primary_key=True)
    value = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    sessions = relationship(
        "SessionRecord",
        back_populates="authentication",
        cascade="all, delete-orphan",
        order_by="SessionRecord.created_at",
        lazy="selectin",
    )


class SessionRecord(Base):
    __tablename__ = "admin_sessions"

    token = Column(String(128), primary_key=True)
    auth_key = Column(String(64), ForeignKey("authentication.key", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    authentication = relationship("AuthenticationRecord", back_populates="sessions")
