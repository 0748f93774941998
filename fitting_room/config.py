"""Runtime configuration for the fitting room.

The API key is resolved from (in order) Streamlit secrets, the process
environment and a local ``.env`` file. A missing key is fatal.
"""

from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

# =============================================================================
# Constants
# =============================================================================

API_KEY_NAMES: Tuple[str, ...] = ("API_KEY", "GEMINI_API_KEY")
DEFAULT_MODEL = "gemini-2.5-flash-image"
DEFAULT_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_LOG_LEVEL = "INFO"


class MissingApiKeyError(RuntimeError):
    """Raised at startup when no API key can be found."""

    def __init__(self):
        super().__init__(
            "API_KEY environment variable not set. "
            "Export API_KEY (or GEMINI_API_KEY) or add it to .env / Streamlit secrets."
        )


@dataclass(frozen=True)
class Settings:
    api_key: str
    api_key_source: str
    model: str = DEFAULT_MODEL
    api_base: str = DEFAULT_API_BASE
    timeout: Optional[float] = None
    log_level: str = DEFAULT_LOG_LEVEL


# =============================================================================
# Resolution
# =============================================================================

def read_api_key(
    secrets: Optional[Mapping[str, str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Tuple[Optional[str], str]:
    """Return ``(key, source)`` for the first configured API key.

    Secrets take precedence over the environment. ``source`` is a
    human-readable label for UI display ("Secrets", "Env" or "None").
    """
    environ = os.environ if environ is None else environ
    if secrets is not None:
        for name in API_KEY_NAMES:
            try:
                value = secrets.get(name)
            except Exception:
                # st.secrets raises when no secrets.toml exists
                value = None
            if value:
                return value, "Secrets"
    for name in API_KEY_NAMES:
        value = environ.get(name)
        if value:
            return value, "Env"
    return None, "None"


def _parse_timeout(raw: Optional[str]) -> Optional[float]:
    if raw is None or not raw.strip():
        return None
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"GEMINI_TIMEOUT must be a number of seconds, got {raw!r}")
    return value if value > 0 else None


def load_settings(
    secrets: Optional[Mapping[str, str]] = None,
    environ: Optional[Mapping[str, str]] = None,
    dotenv: bool = True,
) -> Settings:
    """Build :class:`Settings`, raising :class:`MissingApiKeyError` if no key is set.

    Args:
        secrets: Optional secrets mapping (e.g. ``st.secrets``).
        environ: Environment mapping; defaults to ``os.environ``.
        dotenv: Load ``.env`` into the process environment first.

    Returns:
        The resolved settings.
    """
    if dotenv and environ is None:
        load_dotenv()
    environ = os.environ if environ is None else environ

    api_key, source = read_api_key(secrets, environ)
    if not api_key:
        raise MissingApiKeyError()

    return Settings(
        api_key=api_key,
        api_key_source=source,
        model=environ.get("GEMINI_MODEL") or DEFAULT_MODEL,
        api_base=(environ.get("GEMINI_API_BASE") or DEFAULT_API_BASE).rstrip("/"),
        timeout=_parse_timeout(environ.get("GEMINI_TIMEOUT")),
        log_level=(environ.get("LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper(),
    )
