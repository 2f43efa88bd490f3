import math
import secrets
from datetime import datetime, timedelta, timezone
from os import getenv

STATELESS_DEFAULT_TTL_SECONDS = 1200  # 20 minutes, nothing persisted
STATEFUL_DEFAULT_TTL_SECONDS = 120  # 2 minutes
TOKEN_BYTES = 32
TOKEN_TYPE = "Bearer"
DEFAULT_SCOPE = "default"
CLIENT_CREDENTIALS_GRANT = "client_credentials"

# Fixed tokens used by the load-test harness, never looked up in the store
LOAD_TEST_TOKENS = frozenset(
    {
        "HKWjGyT3CthKw8jFqxrYIsdeJ2yL2PkQECEoK2BW0VU",
        "loadtest_token_12345",
    }
)
LOAD_TEST_CLIENT_MARKER = "loadtesting"

STATELESS_TOKENS = getenv("STATELESS_TOKENS", "false").lower() == "true"
TOKEN_STRICTNESS = getenv("TOKEN_STRICTNESS", "strict").lower()
ANONYMOUS_PASSTHROUGH = getenv("ANONYMOUS_PASSTHROUGH", "false").lower() == "true"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """
    Format an aware datetime the way JavaScript's toISOString does: millisecond precision, Z suffix
    """
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def parse_iso(value: str | None) -> datetime | None:
    """
    Parse a stored ISO-8601 instant. Returns None when the value is missing or unparseable.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def generate_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def normalize_ttl(value) -> int | float | None:
    """
    Return the TTL override as a number when it is finite and positive, otherwise None
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        ttl = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(ttl) or ttl <= 0:
        return None
    return int(ttl) if ttl.is_integer() else ttl


def select_ttl(override, fallback: int) -> int | float:
    ttl = normalize_ttl(override)
    return fallback if ttl is None else ttl


def expires_at(now: datetime, ttl_seconds: int | float) -> datetime:
    return now + timedelta(seconds=ttl_seconds)


def remaining_seconds(now: datetime, expiry: datetime) -> int:
    return max(1, math.floor((expiry - now).total_seconds()))


def base36(number: int) -> str:
    alphabet = "0123456789abcdefghijklmnopqrstuvwxyz"
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(alphabet[remainder])
    return "".join(reversed(digits))


def generate_record_id(prefix: str, client_id: str, now: datetime) -> str:
    """
    Build ids like sess_<client>_<base36 epoch millis>
    """
    return f"{prefix}_{client_id}_{base36(int(now.timestamp() * 1000))}"
