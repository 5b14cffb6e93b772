"""
Seed the local database with the demo staff roster and horses.

Usage:
  python scripts/seed_demo_data.py

This script is idempotent: employees are upserted by email and horses by
name. Every demo account uses the password "password123".
"""

import os

from stablehub.config import settings
from stablehub.db import Base, SessionLocal, engine
from stablehub.logging import setup_logging
from stablehub.services.seed import seed_demo_data


def main():
    setup_logging()
    if settings.database_url.startswith("sqlite:///./"):
        os.makedirs("var", exist_ok=True)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        result = seed_demo_data(session)
        print(f"Seed completed: {result['employees']} employees, {result['horses']} horses.")
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


if __name__ == "__main__":
    main()
