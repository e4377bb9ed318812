from fastapi import APIRouter, Depends, HTTPException, Query, Path
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session
from typing import Optional, List

from country_api.config import settings
from country_api.database import get_db
from country_api import schemas
from country_api.services import country_service
from country_api.services.refresh import RefreshOrchestrator, get_refresh_service

router = APIRouter()


@router.post(
    "/refresh",
    response_model=schemas.RefreshResult,
    summary="Refresh country, currency, and exchange data",
    description=(
        "Fetches the latest data from external providers and upserts every country in one transaction. "
        "Also regenerates the summary image for the top 5 GDP countries."
    ),
)
async def refresh_countries(orchestrator: RefreshOrchestrator = Depends(get_refresh_service)):
    return await orchestrator.refresh()


@router.get(
    "",
    response_model=List[schemas.CountryOut],
    summary="List countries",
    description=(
        "Returns countries with optional filtering and sorting.\n\n"
        "Filters (case-insensitive substring):\n"
        "- region: e.g. 'Africa'\n"
        "- currency: e.g. 'NGN'\n\n"
        "Sorting options (sort): gdp_desc|gdp_asc|name_asc|name_desc|population_asc|population_desc; "
        "anything else sorts by name ascending."
    ),
    response_description="List of countries",
)
def get_all(
    region: Optional[str] = Query(default=None, description="Filter by region substring", examples=["Africa"]),
    currency: Optional[str] = Query(default=None, description="Filter by currency code substring", examples=["NGN"]),
    sort: Optional[str] = Query(default=None, description="Sort order", examples=["gdp_desc"]),
    db: Session = Depends(get_db),
):
    return country_service.list_countries(db, region, currency, sort)


@router.post(
    "",
    response_model=schemas.CountryOut,
    status_code=201,
    summary="Create a country manually",
    description="Stores the given fields as-is. Names are unique case-insensitively.",
)
def create_country(payload: schemas.CountryCreate, db: Session = Depends(get_db)):
    return country_service.create_country(db, payload)


@router.get(
    "/image",
    summary="Get generated summary image",
    description=(
        "Returns a PNG image summarizing dataset insights (top 5 GDP countries, total count, last refresh time)."
    ),
)
def get_image():
    img_path = settings.summary_image_path
    if not img_path.exists():
        raise HTTPException(status_code=404, detail="Summary image not found")
    return FileResponse(str(img_path), media_type="image/png")


@router.get(
    "/status",
    response_model=schemas.StatusOut,
    summary="API/data status",
    description="Returns the number of countries stored and the timestamp of the last refresh.",
)
def get_status(db: Session = Depends(get_db)):
    return country_service.get_status(db)


@router.get(
    "/{name}",
    response_model=schemas.CountryOut,
    summary="Get country by name",
    description="Case-insensitive exact country name match.",
)
def get_one(
    name: str = Path(..., description="Exact country name", examples=["Nigeria"]),
    db: Session = Depends(get_db),
):
    return country_service.get_country_by_name(db, name)


@router.delete(
    "/{name}",
    summary="Delete a country by name",
    description="Deletes a country if it exists (case-insensitive exact match).",
)
def delete_country(
    name: str = Path(..., description="Exact country name", examples=["Nigeria"]),
    db: Session = Depends(get_db),
):
    return country_service.delete_country_by_name(db, name)
