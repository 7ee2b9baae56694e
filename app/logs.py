import json, logging, re, sys
from typing import Any

from app.config import settings

SENSITIVE_KEY_PATTERN = re.compile(
    r"(authorization|apiKey|apikey|token|password|secret|signature|refreshToken|accessToken)",
    re.IGNORECASE,
)
MAX_LOGGED_CHARS = 10000

logger = logging.getLogger("app.delivery")


def setup_logging(level: str = "INFO") -> None:
    """
    Single stdout handler on the root logger.
    Re-running replaces the handler instead of stacking duplicates.
    """
    root = logging.getLogger()
    root.setLevel(level.upper())

    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    root.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if level.upper() == "DEBUG" else logging.WARNING
    )


def mask_secrets(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: "***" if SENSITIVE_KEY_PATTERN.search(str(k)) else mask_secrets(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [mask_secrets(v) for v in value]
    return value


def safe_json(value: Any, max_chars: int = MAX_LOGGED_CHARS) -> str:
    try:
        text = json.dumps(mask_secrets(value), default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        return "[unserializable]"
    if len(text) > max_chars:
        return text[:max_chars] + "...(truncated)"
    return text


def debug_log(message: str, /, **context: Any) -> None:
    if not settings.delivery_debug:
        return
    if context:
        logger.info("[Delivery] %s %s", message, safe_json(context))
    else:
        logger.info("[Delivery] %s", message)
