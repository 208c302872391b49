"""Prometheus metrics shared by the app middleware and the routers"""

from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "memberbridge_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "memberbridge_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
LOGIN_ATTEMPTS = Counter(
    "memberbridge_login_attempts_total",
    "Login attempts by outcome (success, rejected, locked)",
    ["outcome"],
)
TOKEN_REFRESHES = Counter(
    "memberbridge_token_refreshes_total",
    "Refresh token exchanges by outcome (rotated, rejected)",
    ["outcome"],
)
DEVICE_CODES_CREATED = Counter(
    "memberbridge_device_codes_created_total",
    "Device pairing codes issued",
)
DEVICE_LINKS_CONFIRMED = Counter(
    "memberbridge_device_links_confirmed_total",
    "Device pairing codes confirmed by a signed-in user",
)
