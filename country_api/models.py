from datetime import datetime
from typing import Optional
from sqlalchemy import BigInteger, Integer, String, Float, DateTime, Text, Index, func
from country_api.database import Base
from sqlalchemy.orm import Mapped, mapped_column


class Country(Base):
    __tablename__ = "countries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    capital: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    region: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    population: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    exchange_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    estimated_gdp: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    flag_url: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_refreshed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


# One row per case-insensitive name
Index("uq_countries_name_lower", func.lower(Country.name), unique=True)


class Metadata(Base):
    """Key/value table for application-level metadata such as the last refresh time."""
    __tablename__ = "metadata"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    meta_key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    meta_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), default=func.now(), onupdate=func.now()
    )
