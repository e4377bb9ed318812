import logging
import random
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from fastapi import Depends
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session, sessionmaker

from country_api import crud
from country_api.database import get_session_factory
from country_api.errors import InternalError
from country_api.services.gateway import ExternalDataGateway, get_gateway
from country_api.services.image_generator import generate_summary_image
from country_api.services.normalizer import normalize

logger = logging.getLogger("country_api.refresh")

# Serializes the transactional phase of concurrent refreshes in this process.
# Across processes the unique lower(name) index rejects interleaved duplicates.
_REFRESH_LOCK = threading.Lock()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefreshOrchestrator:
    def __init__(
        self,
        gateway: ExternalDataGateway,
        session_factory: sessionmaker,
        image_renderer: Callable[..., Optional[Path]] = generate_summary_image,
        rng=random,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.gateway = gateway
        self.session_factory = session_factory
        self.image_renderer = image_renderer
        self.rng = rng
        self.clock = clock

    async def refresh(self) -> dict:
        """Fetch, upsert every country in one transaction, then redraw the summary.

        Raises SourceUnavailable before touching storage if either fetch fails,
        and InternalError if the transaction fails (nothing from the run persists).
        """
        countries, rates = await self.gateway.fetch_all()
        now = self.clock()
        await run_in_threadpool(self._persist, countries, rates, now)
        await run_in_threadpool(self._render_summary, now)
        return {"message": "Refresh completed", "last_refreshed_at": now.isoformat()}

    def _persist(self, countries: list, rates: dict, now: datetime) -> None:
        with _REFRESH_LOCK:
            db: Session = self.session_factory()
            try:
                with db.begin():
                    written, skipped = self._write_all(db, countries, rates, now)
                    crud.set_last_refresh(db, now.isoformat())
            except Exception as exc:
                logger.exception("Refresh transaction rolled back")
                raise InternalError() from exc
            finally:
                db.close()
        logger.info("Refresh committed: %d countries written, %d skipped", written, skipped)

    def _write_all(self, db: Session, countries: list, rates: dict, now: datetime) -> tuple[int, int]:
        written = skipped = 0
        for raw in countries:
            record = normalize(raw, rates, now, rng=self.rng)
            if record is None:
                skipped += 1
                continue
            crud.upsert_country(db, record.to_values())
            written += 1
        return written, skipped

    def _render_summary(self, now: datetime) -> None:
        try:
            db: Session = self.session_factory()
            try:
                total = crud.count_countries(db)
                top5 = crud.get_top_by_gdp(db, 5)
                path = self.image_renderer(top5, total, now.strftime("%Y-%m-%d %H:%M UTC"))
            finally:
                db.close()
        except Exception:
            logger.warning("Summary image generation failed; refresh still committed", exc_info=True)
            return
        logger.info("Summary image written to %s", path)


def get_refresh_service(
    gateway: ExternalDataGateway = Depends(get_gateway),
    session_factory: sessionmaker = Depends(get_session_factory),
) -> RefreshOrchestrator:
    return RefreshOrchestrator(gateway, session_factory)
