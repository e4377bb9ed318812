import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from country_api import crud, models, schemas
from country_api.errors import Conflict, NotFound

logger = logging.getLogger("country_api")


def list_countries(
    db: Session,
    region: Optional[str] = None,
    currency: Optional[str] = None,
    sort: Optional[str] = None,
) -> list:
    if sort is not None and sort not in crud.SORTS:
        logger.debug("Unknown sort %r; using %s", sort, crud.DEFAULT_SORT)
    return crud.get_countries(db, region, currency, sort)


def get_country_by_name(db: Session, name: str) -> models.Country:
    country = crud.get_country(db, name)
    if country is None:
        raise NotFound()
    return country


def delete_country_by_name(db: Session, name: str) -> dict:
    deleted = crud.delete_country(db, name)
    if deleted is None:
        raise NotFound()
    return {"message": f"Country '{deleted}' deleted successfully"}


def get_status(db: Session) -> dict:
    return {
        "total_countries": crud.count_countries(db),
        "last_refreshed_at": crud.get_last_refresh(db),
    }


def create_country(db: Session, payload: schemas.CountryCreate) -> models.Country:
    """Insert a caller-supplied country as given; no GDP is derived."""
    if crud.get_country(db, payload.name) is not None:
        raise Conflict()
    try:
        return crud.create_country(db, payload.model_dump())
    except IntegrityError as exc:
        # Lost a race with another writer on the lower(name) index
        db.rollback()
        raise Conflict() from exc
