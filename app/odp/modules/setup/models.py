from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.odp.models import Base
from app.odp.utils import utcnow


class SetupElement(Base):
    __tablename__ = "setup_elements"
    __table_args__ = (
        Index("idx_setup_elements_kind", "kind"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    kind: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. "StakeholderCategory"
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # REFINES hierarchy among elements of the same kind
    parent_id: Mapped[int | None] = mapped_column(ForeignKey("setup_elements.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    created_by: Mapped[str] = mapped_column(String(128), nullable=False)
