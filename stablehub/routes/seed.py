import hmac
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..errors import Forbidden
from ..services.seed import seed_demo_data


router = APIRouter(prefix="/api", tags=["seed"])
log = structlog.get_logger(__name__)


@router.post("/seed-database")
def seed_database(
    x_seed_token: Optional[str] = Header(default=None, alias="X-Seed-Token"),
    db: Session = Depends(get_db),
):
    # Closed unless SEED_TOKEN is configured
    expected = settings.seed_token
    if not expected or not x_seed_token or not hmac.compare_digest(x_seed_token, expected):
        log.warning("seed_rejected", token_configured=bool(expected))
        raise Forbidden("Forbidden")
    result = seed_demo_data(db)
    return {"message": "Database seeded successfully", **result}
