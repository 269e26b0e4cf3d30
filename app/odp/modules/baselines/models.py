from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, event
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.odp.errors import UnsupportedOperationError
from app.odp.models import Base
from app.odp.utils import utcnow


class Baseline(Base):
    __tablename__ = "baselines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    starts_from_wave_id: Mapped[int | None] = mapped_column(ForeignKey("waves.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    created_by: Mapped[str] = mapped_column(String(128), nullable=False)

    items: Mapped[list["BaselineItem"]] = relationship(
        "BaselineItem",
        back_populates="baseline",
        lazy="selectin",
        order_by="BaselineItem.item_id",
    )


class BaselineItem(Base):
    """
    One captured (item, version) pair.

    item_id/version_id are plain integers: a captured pair survives deletion
    of the item it points at.
    """

    __tablename__ = "baseline_items"

    baseline_id: Mapped[int] = mapped_column(ForeignKey("baselines.id"), primary_key=True)
    item_id: Mapped[int] = mapped_column(Integer, primary_key=True)

    item_type: Mapped[str] = mapped_column(String(64), nullable=False)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    baseline: Mapped[Baseline] = relationship("Baseline", back_populates="items")


@event.listens_for(Baseline, "before_update")
@event.listens_for(Baseline, "before_delete")
@event.listens_for(BaselineItem, "before_update")
@event.listens_for(BaselineItem, "before_delete")
def _refuse_baseline_mutation(mapper, connection, target):  # type: ignore[no-redef]
    raise UnsupportedOperationError("Baselines are immutable")
