"""Utility functions and validation helpers."""

import json
import math
import re
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional, Union

import pandas as pd

from exceptions import ValidationError

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def safe_json_loads(payload: Optional[str]) -> Optional[Any]:
    """Safely load JSON, returning None on error."""
    if payload is None:
        return None
    try:
        return json.loads(payload)
    except (TypeError, ValueError) as e:
        logger.warning(f"Failed to parse JSON: {e}")
        return None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Union[str, datetime]) -> datetime:
    """
    Parse an ISO-8601 string (or pass through a datetime) as an absolute instant.

    Naive values are treated as UTC. Returns a timezone-aware UTC datetime.

    Raises:
        ValidationError: if the value cannot be parsed
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise ValidationError(f"Invalid ISO-8601 timestamp: {value}", field="timestamp", value=value) from e
    else:
        raise ValidationError(f"Invalid timestamp: {value!r}", field="timestamp", value=value)

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: Union[str, datetime]) -> str:
    """
    Format an instant as fixed-width UTC ISO-8601 (YYYY-MM-DDTHH:MM:SS.mmmZ).

    Fixed width keeps lexical order identical to chronological order in storage.
    """
    dt = parse_timestamp(value)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def validate_amount(amount: Any) -> float:
    """Validate that a deal amount is a positive, finite number."""
    if isinstance(amount, bool):
        raise ValidationError("Amount must be a number", field="amount", value=amount)
    try:
        value = float(amount)
    except (TypeError, ValueError) as e:
        raise ValidationError("Amount must be a number", field="amount", value=amount) from e
    if not math.isfinite(value) or value <= 0:
        raise ValidationError("Amount must be a positive, finite number", field="amount", value=amount)
    return value


def validate_email(email: str) -> bool:
    """Validate that an email address looks like one."""
    return bool(email) and EMAIL_PATTERN.match(email) is not None


def format_currency(amount: float) -> str:
    """Format a currency amount."""
    return f"${amount:,.2f}"


def format_percent(pct: float) -> str:
    """Format a percentage already on the 0-100 scale."""
    return f"{pct:.2f}%"


def dataframe_to_csv_download(df: pd.DataFrame, filename: str) -> tuple:
    """(csv_bytes, filename) for st.download_button; an empty frame gives b""."""
    if df.empty:
        logger.warning(f"Nothing to export for {filename}")
        return b"", filename

    payload = df.to_csv(index=False).encode("utf-8")
    logger.info(f"Prepared {filename}: {len(df)} rows, {len(payload)} bytes")
    return payload, filename


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Attach console (and optional file) handlers to the root logger.

    Calling it again replaces the handlers from the previous call instead of
    stacking duplicates, which matters under Streamlit reruns. An unknown
    level name falls back to INFO.
    """
    level = logging.getLevelName(str(log_level).upper())
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    for handler in [h for h in root.handlers if getattr(h, "_attribution_handler", False)]:
        root.removeHandler(handler)
        handler.close()

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        try:
            handlers.append(logging.FileHandler(log_file))
        except OSError as e:
            logger.error(f"Cannot open log file {log_file}: {e}")

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler._attribution_handler = True
        root.addHandler(handler)
    root.setLevel(level)

    logger.info(f"Logging at {logging.getLevelName(level)} ({len(handlers)} handlers)")


def sanitize_input(text: Optional[str], max_length: int = 1000) -> str:
    """Trim surrounding whitespace, drop control characters and cap the length."""
    if not text:
        return ""
    cleaned = "".join(ch for ch in str(text) if ch.isprintable() or ch == " ")
    return cleaned.strip()[:max_length].rstrip()
