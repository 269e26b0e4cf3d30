from __future__ import annotations

from datetime import date as calendar_date, datetime

from sqlalchemy import Date, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.odp.models import Base
from app.odp.utils import utcnow


class Wave(Base):
    __tablename__ = "waves"
    __table_args__ = (
        UniqueConstraint("year", "quarter", name="uq_wave_year_quarter"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    year: Mapped[int] = mapped_column(Integer, nullable=False)  # [2025, 2124)
    quarter: Mapped[int] = mapped_column(Integer, nullable=False)  # [1, 4]
    date: Mapped[calendar_date] = mapped_column(Date, nullable=False)

    # Always derived as "year.quarter", never taken from input.
    name: Mapped[str] = mapped_column(String(16), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    created_by: Mapped[str] = mapped_column(String(128), nullable=False)
