from __future__ import annotations
import os, json, pathlib, random


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


HEARTBEAT_PERIOD_SEC: float = 5.0
TICK_PERIOD_SEC: float = 1.0

RETRY_MAX: int = 2
RETRY_BASE_DELAY: float = 1.0
HTTP_TIMEOUT_SEC: float = 15.0

PASS_RATIO: float = 0.8
DEFAULT_GRADE: int = 12
BATCH_LABEL_BASE: int = 100
COMPOSER_STRICT: bool = False

# 0 disables the duration budget
ATTEMPT_TIME_LIMIT_SEC: int = 0

TEACHER_ROLES: tuple[str, ...] = ("teacher", "admin")

# in-memory registries in the API; oldest entries are dropped past these
MAX_COMPOSERS: int = 200
MAX_FINISHED_ATTEMPTS: int = 500

BACKEND_URL: str = ""
DATA_DIR: str = "data"

# // env overrides for staging/ops; defaults mirror the classroom deployment.
HEARTBEAT_PERIOD_SEC = _env_float("HEARTBEAT_PERIOD_SEC", HEARTBEAT_PERIOD_SEC)
TICK_PERIOD_SEC = _env_float("TICK_PERIOD_SEC", TICK_PERIOD_SEC)
RETRY_MAX = _env_int("RETRY_MAX", RETRY_MAX)
RETRY_BASE_DELAY = _env_float("RETRY_BASE_DELAY", RETRY_BASE_DELAY)
HTTP_TIMEOUT_SEC = _env_float("HTTP_TIMEOUT_SEC", HTTP_TIMEOUT_SEC)
PASS_RATIO = _env_float("PASS_RATIO", PASS_RATIO)
DEFAULT_GRADE = _env_int("DEFAULT_GRADE", DEFAULT_GRADE)
BATCH_LABEL_BASE = _env_int("BATCH_LABEL_BASE", BATCH_LABEL_BASE)
COMPOSER_STRICT = _env_bool("COMPOSER_STRICT", COMPOSER_STRICT)
ATTEMPT_TIME_LIMIT_SEC = _env_int("ATTEMPT_TIME_LIMIT_SEC", ATTEMPT_TIME_LIMIT_SEC)
MAX_COMPOSERS = _env_int("MAX_COMPOSERS", MAX_COMPOSERS)
MAX_FINISHED_ATTEMPTS = _env_int("MAX_FINISHED_ATTEMPTS", MAX_FINISHED_ATTEMPTS)
BACKEND_URL = os.getenv("BACKEND_URL", BACKEND_URL).strip()
DATA_DIR = os.getenv("DATA_DIR", DATA_DIR)


def load_config() -> dict:
    cfg = {}
    p = pathlib.Path("config.json")
    if p.exists():
        try: cfg = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, ValueError): cfg = {}
    e = os.environ
    if e.get("BACKEND_URL"): cfg["BACKEND_URL"] = e.get("BACKEND_URL")
    if e.get("COMPOSER_STRICT"): cfg["COMPOSER_STRICT"] = _env_bool("COMPOSER_STRICT", False)
    if e.get("SEED"): cfg["SEED"] = int(e.get("SEED"))
    return cfg
def backend_url(cfg: dict) -> str|None:
    url = (cfg.get("BACKEND_URL") or BACKEND_URL or "").strip()
    return url or None
def seed_rng(cfg: dict) -> random.Random:
    s = cfg.get("SEED")
    return random.Random(int(s)) if s is not None else random.Random()
