"""SQLAlchemy models for the catalog connector.

Two logical collections are owned here: tenant credentials (one row per
shop) and the mirrored catalog (one row per shop and upstream product id).
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""


# =============================================================================
# Enums
# =============================================================================


class SyncState(str, PyEnum):
    """Per-tenant sync lifecycle."""

    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"


# =============================================================================
# Tenant Credentials
# =============================================================================


class TenantCredential(Base):
    """Access credential for one installed storefront.

    A reinstall overwrites ``access_token`` in place; ``installed_at`` keeps
    the first install time.
    """

    __tablename__ = "tenant_credentials"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shop: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    scope: Mapped[Optional[str]] = mapped_column(String(1024))

    installed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


# =============================================================================
# Catalog Entries
# =============================================================================


class CatalogEntry(Base):
    """Locally mirrored copy of one upstream product."""

    __tablename__ = "catalog_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    # Upstream ids exceed 32 bits
    external_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(Text)
    body_html: Mapped[Optional[str]] = mapped_column(Text)

    synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("shop", "external_id", name="uq_catalog_entries_shop_external_id"),
        Index("ix_catalog_entries_shop", "shop"),
    )


# =============================================================================
# Sync Status
# =============================================================================


class SyncStatus(Base):
    """Outcome of the latest ingestion cycle per tenant."""

    __tablename__ = "sync_status"

    shop: Mapped[str] = mapped_column(String(255), primary_key=True)
    status: Mapped[str] = mapped_column(String(50), default=SyncState.IDLE.value)
    last_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_item_count: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
