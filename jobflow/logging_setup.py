import json
import logging
from datetime import datetime, timezone

from jobflow.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s - %(message)s"

event_logger = logging.getLogger("jobflow.events")


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )


def log_event_line(event_type: str, job_id: str | None, details: dict | None = None) -> None:
    """Write one structured JSON line for a lifecycle event."""
    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type,
        "job_id": job_id,
        "details": details or {},
    }
    event_logger.info(json.dumps(log_data, default=str))
