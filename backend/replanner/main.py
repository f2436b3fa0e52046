import logging
from typing import Dict

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .logging_config import configure_logging
from .redistribution_routes import router as redistribution_router


configure_logging()
logger = logging.getLogger(__name__)
app = FastAPI(title="Study Replanner", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(redistribution_router)

settings_snapshot = get_settings()
logger.info(
    "Replanner starting with %.1fh/day capacity, %02d:00-%02d:00 window, buffer %d day(s)",
    settings_snapshot.daily_available_hours,
    settings_snapshot.study_window_start_hour,
    settings_snapshot.study_window_end_hour,
    settings_snapshot.buffer_days,
)


@app.get("/healthz")
def health(settings: Settings = Depends(get_settings)) -> Dict[str, str]:
    return {
        "status": "ok",
        "timezone": settings.timezone or "local",
        "max_redistribution_days": str(settings.max_redistribution_days),
    }
