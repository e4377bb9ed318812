from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class CountryBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    capital: Optional[str] = Field(None, max_length=100)
    region: Optional[str] = Field(None, max_length=50)
    population: int = Field(..., ge=0)
    currency_code: Optional[str] = Field(None, max_length=10)
    exchange_rate: Optional[float] = Field(None)
    estimated_gdp: Optional[float] = Field(None)
    flag_url: Optional[str] = Field(None, max_length=255)

    model_config = {"from_attributes": True}


class CountryCreate(CountryBase):
    """Body of a manual create; currency_code is mandatory here."""
    currency_code: str = Field(..., min_length=1, max_length=10)
    exchange_rate: Optional[float] = Field(None, gt=0)
    estimated_gdp: Optional[float] = Field(None, ge=0)


class CountryOut(CountryBase):
    id: int
    last_refreshed_at: Optional[datetime] = None


class RefreshResult(BaseModel):
    message: str
    last_refreshed_at: str


class StatusOut(BaseModel):
    total_countries: int
    last_refreshed_at: Optional[str] = None
