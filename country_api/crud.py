from typing import Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
from country_api import models

LAST_REFRESHED_AT = "last_refreshed_at"

SORTS = {
    "gdp_desc": (models.Country.estimated_gdp.desc().nulls_last(), models.Country.name.asc()),
    "gdp_asc": (models.Country.estimated_gdp.asc().nulls_last(), models.Country.name.asc()),
    "population_desc": (models.Country.population.desc(), models.Country.name.asc()),
    "population_asc": (models.Country.population.asc(), models.Country.name.asc()),
    "name_desc": (models.Country.name.desc(),),
    "name_asc": (models.Country.name.asc(),),
}
DEFAULT_SORT = "name_asc"


def get_country(db: Session, name: str) -> Optional[models.Country]:
    """Case-insensitive exact name match.

    Both sides go through the database lower() so lookups fold case the same
    way as the uq_countries_name_lower index (SQLite only folds ASCII).
    """
    return (
        db.query(models.Country)
        .filter(func.lower(models.Country.name) == func.lower(name))
        .first()
    )


def get_countries(db: Session, region=None, currency=None, sort=None):
    query = db.query(models.Country)
    if region:
        query = query.filter(func.lower(models.Country.region).contains(region.lower(), autoescape=True))
    if currency:
        query = query.filter(func.lower(models.Country.currency_code).contains(currency.lower(), autoescape=True))
    return query.order_by(*SORTS.get(sort or DEFAULT_SORT, SORTS[DEFAULT_SORT])).all()


def get_top_by_gdp(db: Session, limit: int = 5):
    return (
        db.query(models.Country)
        .filter(models.Country.estimated_gdp.is_not(None))
        .order_by(models.Country.estimated_gdp.desc(), models.Country.name.asc())
        .limit(limit)
        .all()
    )


def count_countries(db: Session) -> int:
    return db.query(func.count(models.Country.id)).scalar() or 0


def create_country(db: Session, values: dict) -> models.Country:
    country = models.Country(**values)
    db.add(country)
    db.commit()
    db.refresh(country)
    return country


def upsert_country(db: Session, values: dict) -> models.Country:
    """Update every field of the row matching values["name"], or add a new one.

    Does not commit; the caller owns the transaction. Autoflush is off on our
    sessions, so flush before the lookup to see rows added earlier in the
    same transaction.
    """
    db.flush()
    existing = get_country(db, values["name"])
    if existing is None:
        existing = models.Country(**values)
        db.add(existing)
        return existing
    for key, value in values.items():
        setattr(existing, key, value)
    return existing


def delete_country(db: Session, name: str) -> Optional[str]:
    country = get_country(db, name)
    if country is None:
        return None
    deleted_name = country.name
    db.delete(country)
    db.commit()
    return deleted_name


# -----------------------------
# App-level metadata operations
# -----------------------------
def get_meta(db: Session, key: str) -> Optional[str]:
    meta = db.query(models.Metadata).filter(models.Metadata.meta_key == key).first()
    return meta.meta_value if meta else None


def set_meta(db: Session, key: str, value: str) -> models.Metadata:
    """Upsert one metadata key. Does not commit."""
    meta = db.query(models.Metadata).filter(models.Metadata.meta_key == key).first()
    if meta is None:
        meta = models.Metadata(meta_key=key, meta_value=value)
        db.add(meta)
    else:
        meta.meta_value = value
    return meta


def get_last_refresh(db: Session) -> Optional[str]:
    return get_meta(db, LAST_REFRESHED_AT)


def set_last_refresh(db: Session, value: str) -> models.Metadata:
    return set_meta(db, LAST_REFRESHED_AT, value)
