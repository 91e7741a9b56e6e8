from __future__ import annotations

from castline.config import get_settings
from castline.db import models  # noqa: F401
from castline.db.base import Base
from castline.db.session import engine


def ensure_data_directories() -> None:
    settings = get_settings()
    settings.data_dir.mkdir(parents=True, exist_ok=True)


def init_database() -> dict[str, str]:
    ensure_data_directories()
    Base.metadata.create_all(bind=engine)
    return {"database_url": engine.url.render_as_string(hide_password=True)}
