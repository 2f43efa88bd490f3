from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .sessions import Base


class Clients(Base):
    __tablename__ = "clients"
    __table_args__ = (UniqueConstraint("client_id", "client_secret", name="uq_clients_credentials"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    client_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    client_secret: Mapped[str] = mapped_column(String(255), nullable=False)
    current_token: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    # ISO-8601 text, kept as written so that a corrupt value reads back as expired
    token_expires_at: Mapped[str | None] = mapped_column(String(40), nullable=True)
    token_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    scope: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_token_ttl_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    token_hits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    token_rotations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_session_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[str | None] = mapped_column(String(40), nullable=True)

    issued_tokens: Mapped[list["IssuedTokens"]] = relationship(
        back_populates="client", cascade="all, delete-orphan", order_by="IssuedTokens.id"
    )
    endpoint_usage: Mapped[list["EndpointUsage"]] = relationship(
        back_populates="client", cascade="all, delete-orphan"
    )


class IssuedTokens(Base):
    __tablename__ = "issued_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    client_pk: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False, index=True)
    token: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    issued_at: Mapped[str] = mapped_column(String(40), nullable=False)
    expires_at: Mapped[str] = mapped_column(String(40), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    client: Mapped[Clients] = relationship(back_populates="issued_tokens")


class EndpointUsage(Base):
    __tablename__ = "endpoint_usage"
    __table_args__ = (UniqueConstraint("client_pk", "endpoint", name="uq_endpoint_usage_client_endpoint"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    client_pk: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False, index=True)
    endpoint: Mapped[str] = mapped_column(String(64), nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    client: Mapped[Clients] = relationship(back_populates="endpoint_usage")


class VirtualSessions(Base):
    __tablename__ = "virtual_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    client_pk: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False, index=True)
    session_id: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[str] = mapped_column(String(40), nullable=False)
    updated_at: Mapped[str] = mapped_column(String(40), nullable=False)
    request: Mapped[Any] = mapped_column(JSON, nullable=True)
    last_update_request: Mapped[Any] = mapped_column(JSON, nullable=True)
    cancel_request: Mapped[Any] = mapped_column(JSON, nullable=True)


class Instructors(Base):
    __tablename__ = "instructors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    client_pk: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False, index=True)
    instructor_id: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    first_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[str] = mapped_column(String(40), nullable=False)
    updated_at: Mapped[str] = mapped_column(String(40), nullable=False)
    request: Mapped[Any] = mapped_column(JSON, nullable=True)
    update_request: Mapped[Any] = mapped_column(JSON, nullable=True)
