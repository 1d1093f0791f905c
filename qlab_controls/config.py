"""
Connection and sync settings.

Values come from the environment (optionally a ``.env`` file in the working
directory):

    QLAB_HOST               QLab machine (default 127.0.0.1)
    QLAB_PORT               QLab OSC port (default 53000)
    QLAB_TIMEOUT            seconds to wait for each reply (default 10)
    QLAB_MAX_RETRIES        retries after a timeout (default 0)
    QLAB_PASSCODE           workspace passcode
    QLAB_DRY_RUN            log writes instead of sending them
    QLAB_FORCE_CUE_NUMBERS  steal cue numbers from conflicting cues
    QLAB_CACHE_DIR          snapshot directory (default ~/.cache/qlab_sync)
    QLAB_STAGING_LIST       cue list created on connect (default Inbox)
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

DEFAULT_CACHE_DIR = os.path.join(os.path.expanduser("~"), ".cache", "qlab_sync")

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


@dataclass
class QLabSettings:
    host: str = "127.0.0.1"
    port: int = 53000
    timeout: float = 10.0
    max_retries: int = 0
    passcode: str = ""
    dry_run: bool = False
    force_cue_numbers: bool = False
    cache_dir: str = field(default=DEFAULT_CACHE_DIR)
    staging_list_name: str = "Inbox"

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "QLabSettings":
        if dotenv:
            load_dotenv()
        settings = cls(
            host=os.getenv("QLAB_HOST", "127.0.0.1"),
            port=_env_number("QLAB_PORT", 53000, int),
            timeout=_env_number("QLAB_TIMEOUT", 10.0, float),
            max_retries=_env_number("QLAB_MAX_RETRIES", 0, int),
            passcode=os.getenv("QLAB_PASSCODE", ""),
            dry_run=_env_bool("QLAB_DRY_RUN", False),
            force_cue_numbers=_env_bool("QLAB_FORCE_CUE_NUMBERS", False),
            cache_dir=os.path.expanduser(os.getenv("QLAB_CACHE_DIR", DEFAULT_CACHE_DIR)),
            staging_list_name=os.getenv("QLAB_STAGING_LIST", "Inbox"),
        )
        if settings.max_retries < 0:
            raise ValueError("QLAB_MAX_RETRIES must not be negative")
        if settings.timeout <= 0:
            raise ValueError("QLAB_TIMEOUT must be positive")
        return settings
