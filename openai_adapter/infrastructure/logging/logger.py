import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from openai_adapter.config.settings import settings


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        if settings.log_redact_content:
            msg = (msg or "")[:64]
        payload = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "name": record.name,
            "msg": msg,
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            payload.update(extra)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logger() -> logging.Logger:
    logger = logging.getLogger("openai_adapter")
    logger.setLevel(logging.INFO)
    if logger.handlers:
        return logger
    if not settings.log_dir:
        logger.addHandler(logging.NullHandler())
        return logger
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(log_dir / "adapter.log", encoding="utf-8")
    fh.setLevel(logging.INFO)
    fh.setFormatter(JsonFormatter())
    logger.addHandler(fh)
    return logger


def log_event(level: int, message: str, **fields) -> None:
    logger.log(level, message, extra={"extra": fields})


logger = setup_logger()
