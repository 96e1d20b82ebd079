from __future__ import annotations

import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from loguru import logger

if TYPE_CHECKING:
    from app.core.config import Settings

LOG_FORMAT = "{time:YYYY-MM-DDTHH:mm:ss.SSSZ} | {level} | {message}\n{exception}"

# Metadata keys that carry a chat identity (phone number plus network suffix).
IDENTITY_KEYS = frozenset({"user", "sender", "raised_by"})


def configure_logging(settings: "Settings | None" = None) -> None:
    if settings is None:
        from app.core.config import get_settings

        settings = get_settings()

    level = (settings.log_level or "INFO").upper()
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=level)

    log_path = settings.log_file_path
    if log_path:
        log_path = Path(log_path).expanduser()
        if _ensure_log_path(log_path):
            try:
                logger.add(
                    str(log_path),
                    format=LOG_FORMAT,
                    level=level,
                    rotation=settings.log_rotation,
                    retention=settings.log_retention,
                    encoding="utf-8",
                    enqueue=True,
                )
            except Exception as exc:  # pragma: no cover
                logger.warning(
                    f"LOG FILE DISABLED - unable to open file path={log_path} error={exc}"
                )


def mask_user(user_id: str | None) -> str:
    """Return a log-safe form of a chat identity, keeping the last four digits."""

    if not user_id:
        return "unknown"
    local, _, domain = user_id.partition("@")
    if len(local) <= 4:
        masked = local
    else:
        masked = "*" * (len(local) - 4) + local[-4:]
    return f"{masked}@{domain}" if domain else masked


def _scrub_meta(meta: dict[str, Any]) -> dict[str, Any]:
    scrubbed = {}
    for key, value in meta.items():
        if value is None:
            continue
        scrubbed[key] = mask_user(str(value)) if key in IDENTITY_KEYS else value
    return scrubbed


def _format_meta(meta: dict[str, Any]) -> str:
    return " ".join(f"{key}={meta[key]}" for key in sorted(meta))


def _emit(level: str, message: str, meta: dict[str, Any]) -> None:
    meta = _scrub_meta(meta)
    # depth=2 reports the caller of log_* rather than this module
    target = logger.opt(depth=2)
    if meta:
        target.bind(**meta).log(level, f"{message} | {_format_meta(meta)}")
    else:
        target.log(level, message)


def log_error(message: str, **meta) -> None:
    _emit("ERROR", message, meta)


def log_info(message: str, **meta) -> None:
    _emit("INFO", message, meta)


def log_warning(message: str, **meta) -> None:
    _emit("WARNING", message, meta)


def log_debug(message: str, **meta) -> None:
    _emit("DEBUG", message, meta)


def _ensure_log_path(path: Path) -> bool:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.warning(
            f"LOG FILE DISABLED - unable to create directory path={path.parent} "
            f"error={exc}"
        )
        return False
    return True
