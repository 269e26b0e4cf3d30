from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, event
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, object_session, relationship

from app.odp.errors import StoreError
from app.odp.utils import utcnow


class Base(DeclarativeBase):
    pass


class Item(Base):
    """
    Stable identity of a versioned entity.

    Content lives on ItemVersion only; the item owns the latest-version pointer.
    """

    __tablename__ = "items"
    __table_args__ = (
        Index("idx_items_type", "item_type"),
        # ids are captured by baselines and the audit log; never reuse them
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    item_type: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. "OperationalRequirement"

    # NULL only between the INSERT of the item and the INSERT of its first version.
    latest_version_id: Mapped[int | None] = mapped_column(
        ForeignKey("item_versions.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    created_by: Mapped[str] = mapped_column(String(128), nullable=False)

    versions: Mapped[list["ItemVersion"]] = relationship(
        "ItemVersion",
        back_populates="item",
        cascade="all, delete-orphan",
        order_by="ItemVersion.version",
        foreign_keys="ItemVersion.item_id",
    )

    latest_version: Mapped["ItemVersion | None"] = relationship(
        "ItemVersion",
        foreign_keys=[latest_version_id],
        lazy="selectin",
        post_update=True,
    )


class ItemVersion(Base):
    __tablename__ = "item_versions"
    __table_args__ = (
        UniqueConstraint("item_id", "version", name="uq_item_version"),
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    item_id: Mapped[int] = mapped_column(ForeignKey("items.id", ondelete="CASCADE"), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)  # 1, 2, 3 ... no gaps

    # "previous version" chain link; SET NULL lets a whole chain be deleted in any order
    previous_version_id: Mapped[int | None] = mapped_column(
        ForeignKey("item_versions.id", ondelete="SET NULL"),
        nullable=True,
    )

    content: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    created_by: Mapped[str] = mapped_column(String(128), nullable=False)

    item: Mapped[Item] = relationship(
        "Item",
        back_populates="versions",
        foreign_keys=[item_id],
    )

    edges: Mapped[list["ItemRelationship"]] = relationship(
        "ItemRelationship",
        back_populates="version",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class ItemRelationship(Base):
    """
    Typed edge from one specific ItemVersion to an opaque target id.

    Targets are items or setup elements; target_type says which.
    """

    __tablename__ = "item_relationships"
    __table_args__ = (
        UniqueConstraint("from_version_id", "relation_type", "target_type", "target_id", name="uq_item_relationship"),
        Index("idx_item_relationships_target", "target_type", "target_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    from_version_id: Mapped[int] = mapped_column(ForeignKey("item_versions.id", ondelete="CASCADE"), nullable=False)
    relation_type: Mapped[str] = mapped_column(String(32), nullable=False)  # REFINES, IMPACTS, ...
    target_type: Mapped[str] = mapped_column(String(64), nullable=False)
    target_id: Mapped[int] = mapped_column(Integer, nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)  # annotated references only

    version: Mapped[ItemVersion] = relationship("ItemVersion", back_populates="edges")


class RelationshipAuditEntry(Base):
    """
    Append-only ledger of relationship ADD/REMOVE events.

    No foreign keys: entries outlive the versions they describe.
    """

    __tablename__ = "relationship_audit_log"
    __table_args__ = (
        Index("idx_relationship_audit_item", "item_id", "timestamp"),
        Index("idx_relationship_audit_source", "source_version_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)

    action: Mapped[str] = mapped_column(String(16), nullable=False)  # ADD | REMOVE
    relationship_type: Mapped[str] = mapped_column(String(32), nullable=False)

    item_id: Mapped[int] = mapped_column(Integer, nullable=False)
    source_version_id: Mapped[int] = mapped_column(Integer, nullable=False)
    target_type: Mapped[str] = mapped_column(String(64), nullable=False)
    target_id: Mapped[int] = mapped_column(Integer, nullable=False)


@event.listens_for(ItemVersion, "before_update")
def _refuse_version_update(mapper, connection, target):  # type: ignore[no-redef]
    # fires for collection-only changes too; only column edits are refused
    if object_session(target).is_modified(target, include_collections=False):
        raise StoreError(f"ItemVersion {target.id} is immutable")


@event.listens_for(RelationshipAuditEntry, "before_update")
@event.listens_for(RelationshipAuditEntry, "before_delete")
def _refuse_audit_mutation(mapper, connection, target):  # type: ignore[no-redef]
    raise StoreError("Relationship audit log is append-only")


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.odp.modules.setup.models import SetupElement  # noqa: E402,F401
from app.odp.modules.waves.models import Wave  # noqa: E402,F401
from app.odp.modules.baselines.models import Baseline, BaselineItem  # noqa: E402,F401
