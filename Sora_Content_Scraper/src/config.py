"""
Configuration for the prober and the remix downloader.

Values come from (highest priority first) CLI flags, files referenced by
CLI flags, and environment variables. Runners call ``load_dotenv()`` first so a
local ``.env`` file can supply the environment.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, FrozenSet

from Sora_Content_Scraper.src.errors import ConfigError

# Sentinel status for "no HTTP exchange happened" (timeout, DNS, reset)
NO_RESPONSE = 0

CODE_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
CODE_LENGTH = 6

DEFAULT_BATCH_SIZE = 100
DEFAULT_PER_TASK_DELAY = 0.1      # seconds, after each probe
DEFAULT_TIMEOUT = 30              # seconds, per probe / per page fetch
DEFAULT_MAX_PAGES = 20

TRIED_FILE = "tried_codes.json"
TRIED_DB_FILE = "tried_codes.db"
LEGACY_SUCCESS_FILE = "success_codes.json"

SORA_HOST = "sora.chatgpt.com"
DEFAULT_API_BASE_URL = f"https://{SORA_HOST}/backend/project_y/post/"
DEFAULT_SHARE_URL = f"https://{SORA_HOST}/p/"
DEFAULT_DEVICE_ID_HEADER = "oai-device-id"
DEFAULT_USER_AGENT = "Sora-Content-Scraper/1.0 (+python aiohttp)"

AUTH_ENV_VARS = ("SORA_AUTH_TOKEN", "HTTP_AUTHORIZATION_HEADER")


@dataclass(frozen=True)
class RejectionPolicy:
    """Statuses that count as "rejected by server" when reconciling a batch."""
    statuses: FrozenSet[int]
    name: str = "custom"

    def is_rejected(self, status: int) -> bool:
        return status in self.statuses


MINIMAL_POLICY = RejectionPolicy(frozenset({403}), name="minimal")
STRICT_POLICY = RejectionPolicy(frozenset({401, 403, 429, NO_RESPONSE}), name="strict")

POLICIES = {
    MINIMAL_POLICY.name: MINIMAL_POLICY,
    STRICT_POLICY.name: STRICT_POLICY,
}


@dataclass
class ProbeConfig:
    """Settings for a probing run."""
    endpoint: str
    headers: Dict[str, str] = field(default_factory=dict)
    state_dir: Path = Path(".")
    batch_size: int = DEFAULT_BATCH_SIZE
    concurrency: Optional[int] = None   # defaults to batch_size
    per_task_delay: float = DEFAULT_PER_TASK_DELAY
    timeout: float = DEFAULT_TIMEOUT
    policy: RejectionPolicy = STRICT_POLICY
    retry_unreachable: bool = False
    max_batches: Optional[int] = None
    store: str = "json"

    def __post_init__(self):
        if not self.endpoint:
            raise ConfigError("Probe endpoint is required (--endpoint or PROBE_ENDPOINT_URL)")
        if not self.endpoint.startswith(("http://", "https://")):
            raise ConfigError(f"Probe endpoint must be an http(s) URL: {self.endpoint}")
        if self.batch_size <= 0:
            raise ConfigError("Batch size must be positive")
        if self.concurrency is None:
            self.concurrency = self.batch_size
        if self.concurrency <= 0:
            raise ConfigError("Concurrency must be positive")
        self.state_dir = Path(self.state_dir)


@dataclass
class CollectorConfig:
    """Settings for the remix collection / download pipeline."""
    base_url: str = DEFAULT_API_BASE_URL
    headers: Dict[str, str] = field(default_factory=dict)
    output_dir: Path = Path("downloads")
    max_pages: int = DEFAULT_MAX_PAGES
    timeout: float = DEFAULT_TIMEOUT
    api_host: str = SORA_HOST
    device_id_header: str = DEFAULT_DEVICE_ID_HEADER
    verify_ssl: bool = True


# ============================================================================
# HEADERS / CREDENTIALS
# ============================================================================

def ensure_bearer(token: Optional[str]) -> Optional[str]:
    if not token:
        return None
    return token if token.startswith("Bearer ") else f"Bearer {token}"


def read_text_file(path: str) -> str:
    try:
        return Path(path).expanduser().read_text(encoding="utf-8").strip()
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e


def resolve_authorization(auth: Optional[str] = None, auth_file: Optional[str] = None,
                          environ: Optional[Dict[str, str]] = None) -> Optional[str]:
    """Authorization header value from an auth file, a flag, or the environment."""
    if auth_file:
        return ensure_bearer(read_text_file(auth_file))
    if auth:
        return ensure_bearer(auth.strip())

    environ = os.environ if environ is None else environ
    for name in AUTH_ENV_VARS:
        value = environ.get(name)
        if value:
            return ensure_bearer(value.strip())
    return None


def build_headers(
    auth: Optional[str] = None,
    auth_file: Optional[str] = None,
    cookie_file: Optional[str] = None,
    device_id: Optional[str] = None,
    user_agent: Optional[str] = None,
    device_id_header: str = DEFAULT_DEVICE_ID_HEADER,
    environ: Optional[Dict[str, str]] = None,
) -> Dict[str, str]:
    """Base header set shared by probe, page and download requests."""
    environ = os.environ if environ is None else environ
    headers = {
        "accept": "*/*",
        "accept-language": "en-US,en;q=0.9",
        "content-type": "application/json",
        "user-agent": user_agent or environ.get("HTTP_USER_AGENT") or DEFAULT_USER_AGENT,
    }

    authorization = resolve_authorization(auth, auth_file, environ)
    if authorization:
        headers["authorization"] = authorization

    device_id = device_id or environ.get("OAI_DEVICE_ID")
    if device_id:
        headers[device_id_header] = device_id

    if cookie_file:
        cookie = read_text_file(cookie_file)
        if cookie:
            headers["cookie"] = cookie

    return headers


def cookie_string_to_list(cookie_txt: Optional[str], domain: str = SORA_HOST,
                          path: str = "/", secure: bool = True,
                          http_only: bool = True) -> List[Dict]:
    """Turn a ``name=value; name2=value2`` header into Playwright cookie dicts (last one wins)."""
    cookies: Dict[str, Dict] = {}
    for entry in (cookie_txt or "").strip().split(";"):
        entry = entry.strip()
        name, sep, value = entry.partition("=")
        name = name.strip()
        if not sep or not name:
            continue
        cookies[name] = {
            "name": name,
            "value": value.strip(),
            "domain": domain,
            "path": path,
            "httpOnly": http_only,
            "secure": secure,
        }
    return list(cookies.values())
