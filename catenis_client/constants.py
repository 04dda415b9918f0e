"""
Constants for the Catenis API client library.
Values must match what the Catenis API and notification service expect.
"""

# HTTP Headers
HEADER_HOST = "host"
HEADER_TIMESTAMP = "x-bcot-timestamp"
HEADER_AUTHORIZATION = "authorization"

# Request signing (CTN1-HMAC-SHA256)
SIGNATURE_SCHEME = "CTN1-HMAC-SHA256"
SIGNING_KEY_PREFIX = "CTN1"
SCOPE_REQUEST = "ctn1_request"
SIGNATURE_VALIDITY_DAYS = 7
TIME_VARIATION_SECS = 5
TIMESTAMP_FORMAT = "%Y%m%dT%H%M%SZ"
SIGN_DATE_FORMAT = "%Y%m%d"

# Notification channel
NOTIFY_WS_PROTOCOL = "notify.catenis.io"
NOTIFY_WS_CHANNEL_OPEN = "NOTIFICATION_CHANNEL_OPEN"
NOTIFY_WS_ENDPOINT = "notify/ws/:event_name"

# WebSocket close codes
CLOSE_NORMAL = 1000
CLOSE_UNSUPPORTED_DATA = 1003
CLOSE_UNEXPECTED_MESSAGE = 4000

# Max number of binary payload bytes quoted in a close reason
BINARY_REASON_LIMIT = 20

# API endpoint
DEFAULT_HOST = "catenis.io"
SANDBOX_SUBDOMAIN = "sandbox."
API_BASE_URL_PATH = "api/:version/"
DEFAULT_API_VERSION = "0.11"

ENVIRONMENT_PROD = "prod"
ENVIRONMENT_SANDBOX = "sandbox"

# Default configuration values
DEFAULT_CONFIG = {
    'host': None,                 # host[:port] replacing DEFAULT_HOST
    'environment': ENVIRONMENT_PROD,
    'secure': True,               # https/wss when True, http/ws otherwise
    'version': DEFAULT_API_VERSION,
    'use_compression': True,
    'compress_threshold': 1024,   # bytes
    'timeout': 30,                # HTTP / WebSocket open timeout in seconds
    'poll_interval': 0.5,         # notification channel read timeout in seconds
    'event_queue_size': 1000,     # pending notification events per channel
}
