from __future__ import annotations
from typing import Optional
from decimal import Decimal
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, Boolean, Numeric, DateTime, Text, func

from .authz import Base


class MeterReading(Base):
    __tablename__ = 'meter_readings'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    meter_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    meter_name: Mapped[str] = mapped_column(String(128), nullable=False)
    meter_serial: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    location: Mapped[Optional[str]] = mapped_column(String(200))
    reading_value: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    unit: Mapped[Optional[str]] = mapped_column(String(16))
    previous_reading: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    # reading_value - previous_reading, fixed at write time
    consumption: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    reading_date = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    site_engineer_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verified_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    verified_at = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

__all__ = ["MeterReading"]
