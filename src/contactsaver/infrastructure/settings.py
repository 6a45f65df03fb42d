"""Runtime settings read once from the environment (optionally a .env file)."""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from contactsaver.domain import InvalidNumber
from contactsaver.domain.numbers import canonicalize

REPO_ROOT = Path(__file__).resolve().parents[3]
MAX_REPLY_DELAY_CAP = 30.0
STORAGE_BACKENDS = ("memory", "json", "neo4j")


def load_env_file() -> None:
    """Load .env from repo root or current dir (first one found)."""
    for path in (REPO_ROOT / ".env", Path.cwd() / ".env"):
        if path.exists():
            load_dotenv(path)
            break


def _env(name: str, default: str = "") -> str:
    return os.environ.get(name, default).strip()


def _number(name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = _env(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{name} must be at least {minimum}, got {raw!r}")
    return value


def _phone(name: str, raw: str) -> str:
    try:
        return canonicalize(raw)
    except InvalidNumber:
        raise ValueError(f"{name} holds an invalid phone number: {raw!r}") from None


def _flag(name: str) -> bool:
    return _env(name).lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class Settings:
    owner_number: str = ""
    owner_name: str = ""
    data_dir: Path = field(default_factory=lambda: REPO_ROOT / "data")
    flow_path: Path = field(default_factory=lambda: REPO_ROOT / "flows" / "capture.yaml")
    directory_ttl: float = 300.0
    external_timeout: float = 30.0
    bulk_concurrency: int = 3
    bulk_write_delay: float = 0.2
    generic_name: str = "Contact"
    max_reply_delay: float = 0.0
    exclude_numbers: tuple[str, ...] = ()
    telegram_bot_token: str = ""
    google_client_id: str = ""
    google_client_secret: str = ""
    storage_backend: str = "json"
    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_user: str = "neo4j"
    neo4j_password: str = "password"
    use_polling: bool = False

    def __post_init__(self):
        if self.storage_backend not in STORAGE_BACKENDS:
            raise ValueError(
                f"STORAGE_BACKEND must be one of {', '.join(STORAGE_BACKENDS)}, "
                f"got {self.storage_backend!r}"
            )
        if self.bulk_concurrency < 1:
            raise ValueError("BULK_CONCURRENCY must be at least 1")
        object.__setattr__(
            self, "max_reply_delay", min(self.max_reply_delay, MAX_REPLY_DELAY_CAP)
        )

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from os.environ. Raises ValueError on malformed values."""
        owner = _env("OWNER_NUMBER")
        data_dir = _env("DATA_DIR")
        flow_path = _env("FLOW_PATH")
        excluded = tuple(
            _phone("EXCLUDE_NUMBERS", n)
            for n in _env("EXCLUDE_NUMBERS").split(",")
            if n.strip()
        )
        defaults = cls()
        return cls(
            owner_number=_phone("OWNER_NUMBER", owner) if owner else "",
            owner_name=_env("OWNER_NAME"),
            data_dir=Path(data_dir).resolve() if data_dir else defaults.data_dir,
            flow_path=Path(flow_path).resolve() if flow_path else defaults.flow_path,
            directory_ttl=_number("DIRECTORY_TTL_SECONDS", 300.0),
            external_timeout=_number("EXTERNAL_TIMEOUT_SECONDS", 30.0, minimum=0.1),
            bulk_concurrency=int(_number("BULK_CONCURRENCY", 3, minimum=1)),
            bulk_write_delay=_number("BULK_WRITE_DELAY_SECONDS", 0.2),
            generic_name=_env("GENERIC_NAME", "Contact") or "Contact",
            max_reply_delay=_number("MAX_REPLY_DELAY_SECONDS", 0.0),
            exclude_numbers=excluded,
            telegram_bot_token=_env("TELEGRAM_BOT_TOKEN"),
            google_client_id=_env("GOOGLE_CLIENT_ID"),
            google_client_secret=_env("GOOGLE_CLIENT_SECRET"),
            storage_backend=(_env("STORAGE_BACKEND", "json") or "json").lower(),
            neo4j_uri=_env("NEO4J_URI", "bolt://localhost:7687"),
            neo4j_user=_env("NEO4J_USER", "neo4j"),
            neo4j_password=_env("NEO4J_PASSWORD", "password"),
            use_polling=_flag("USE_POLLING"),
        )
