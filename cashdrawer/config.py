import logging
import os
from functools import lru_cache

from pydantic import BaseModel, Field


class Settings(BaseModel):
    log_level: str = "INFO"
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    root_path: str = ""


@lru_cache
def get_settings() -> Settings:
    origins = os.getenv("CASHDRAWER_CORS_ORIGINS", "*")
    return Settings(
        log_level=os.getenv("CASHDRAWER_LOG_LEVEL", "INFO").upper(),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        root_path=os.getenv("CASHDRAWER_ROOT_PATH", ""),
    )


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("cashdrawer").setLevel(level)
