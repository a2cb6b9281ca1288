"""Request-scoped event lines: ``[REQ-1a2b3c4d] STEP key=value``."""
import secrets
import sys
import time
from datetime import datetime, timezone

SYSTEM = "SYSTEM"


def generate_request_id() -> str:
    return f"REQ-{secrets.token_hex(4)}"


def _format_value(value) -> str:
    if isinstance(value, str):
        return value if len(value) <= 100 else value[:100] + "..."
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(str(v) for v in value) + "]"
    return str(value)


def _line(request_id: str, step: str, fields: dict) -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
    parts = [f"[{stamp}] [{request_id}] {step}"]
    parts.extend(f"{k}={_format_value(v)}" for k, v in fields.items())
    return " ".join(parts)


def log_event(request_id: str, step: str, **fields) -> None:
    print(_line(request_id, step, fields))


def log_warning(request_id: str, step: str, message: str, **fields) -> None:
    print(_line(request_id, f"WARN {step}", {"message": message, **fields}), file=sys.stderr)


def log_error(request_id: str, step: str, error, **fields) -> None:
    message = str(error) or type(error).__name__
    print(_line(request_id, f"ERROR {step}", {"error": message, **fields}), file=sys.stderr)


def elapsed_ms(started: float) -> str:
    """Format a ``time.monotonic()`` start mark as ``123ms``."""
    return f"{int((time.monotonic() - started) * 1000)}ms"
