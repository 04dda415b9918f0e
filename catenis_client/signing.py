"""
CTN1-HMAC-SHA256 request signing.

Every request sent to the Catenis API is authenticated by an ``Authorization``
header computed from a canonical form of the request and a signing key that is
derived from the device's API access secret. The signing key is bound to a
date and is reused while it stays within its 7-day validity window.
"""

import datetime
import hashlib
import hmac
import logging
import threading
from collections import namedtuple
from typing import Optional
from urllib.parse import urlsplit

from requests.structures import CaseInsensitiveDict

from .constants import (
    HEADER_AUTHORIZATION,
    HEADER_HOST,
    HEADER_TIMESTAMP,
    SCOPE_REQUEST,
    SIGN_DATE_FORMAT,
    SIGNATURE_SCHEME,
    SIGNATURE_VALIDITY_DAYS,
    SIGNING_KEY_PREFIX,
    TIME_VARIATION_SECS,
    TIMESTAMP_FORMAT
)
from .exceptions import ClientError

LOGGER = logging.getLogger(__name__)

DEFAULT_PORTS = {'http': 80, 'https': 443, 'ws': 80, 'wss': 443}

DeviceCredentials = namedtuple('DeviceCredentials', ['device_id', 'api_access_secret'])

SigningKey = namedtuple('SigningKey', ['date', 'key'])


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _as_utc(now: datetime.datetime) -> datetime.datetime:
    # Naive datetimes are taken as UTC
    if now.tzinfo is None:
        return now.replace(tzinfo=datetime.timezone.utc)
    return now.astimezone(datetime.timezone.utc)


def format_timestamp(now: datetime.datetime) -> str:
    """Format instant as compact ISO 8601 (``YYYYMMDDTHHMMSSZ``)."""
    return _as_utc(now).strftime(TIMESTAMP_FORMAT)


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def get_host_with_port(url: str) -> Optional[str]:
    """
    Get host (and port, if not the scheme's default one) from URL.

    Args:
        url: Request URL

    Returns:
        Host value suitable for a ``Host`` header, or None if URL has no host

    Raises:
        ClientError: If URL carries an invalid port
    """
    parts = urlsplit(url)
    host = parts.hostname

    if not host:
        return None

    if ':' in host:
        # IPv6 literal
        host = f"[{host}]"

    try:
        port = parts.port
    except ValueError as e:
        raise ClientError("Inconsistent HTTP request: invalid URL port", e) from e

    if port is not None and port != DEFAULT_PORTS.get(parts.scheme.lower()):
        host = f"{host}:{port}"

    return host


def get_url_path_with_query(url: str) -> str:
    parts = urlsplit(url)
    path = parts.path or '/'

    if parts.query:
        path = f"{path}?{parts.query}"

    return path


def derive_signing_key(api_access_secret: str, sign_date: datetime.date) -> SigningKey:
    """
    Derive signing key for a given date.

    Format: HMAC-SHA256(HMAC-SHA256("CTN1" + secret, "YYYYMMDD"), "ctn1_request")
    """
    date_key = hmac.new(
        (SIGNING_KEY_PREFIX + api_access_secret).encode('utf-8'),
        sign_date.strftime(SIGN_DATE_FORMAT).encode('utf-8'),
        hashlib.sha256
    ).digest()

    key = hmac.new(date_key, SCOPE_REQUEST.encode('utf-8'), hashlib.sha256).digest()

    return SigningKey(sign_date, key)


def build_canonical_request(method: str, path_with_query: str, host: str,
                            timestamp: str, body: bytes = b'') -> str:
    """
    Assemble the canonical (conformed) request.

    Every line is newline terminated: method, path and query, the essential
    headers (host, timestamp), an empty line and the hex SHA-256 of the body.
    """
    return (
        f"{method.upper()}\n"
        f"{path_with_query}\n"
        f"{HEADER_HOST}:{host}\n"
        f"{HEADER_TIMESTAMP}:{timestamp}\n"
        "\n"
        f"{sha256_hex(body)}\n"
    )


def build_scope(sign_date: datetime.date) -> str:
    return f"{sign_date.strftime(SIGN_DATE_FORMAT)}/{SCOPE_REQUEST}"


def build_string_to_sign(timestamp: str, scope: str, canonical_request: str) -> str:
    return (
        f"{SIGNATURE_SCHEME}\n"
        f"{timestamp}\n"
        f"{scope}\n"
        f"{sha256_hex(canonical_request.encode('utf-8'))}\n"
    )


def _check_header_value(name: str, value: str) -> str:
    # Only visible ASCII, space and tab are valid header text
    if not isinstance(value, str) or any(
            not (ch == '\t' or ' ' <= ch <= '~') for ch in value):
        raise ClientError(f"Invalid value for HTTP header '{name}'")
    return value


def _body_bytes(body) -> bytes:
    if body is None:
        return b''
    if isinstance(body, str):
        return body.encode('utf-8')
    if isinstance(body, (bytes, bytearray)):
        return bytes(body)
    raise ClientError("Unable to access request body; body not buffered")


class SigningKeyCache:
    """
    Holds the most recently derived signing key.

    The key is rederived whenever its date falls before
    ``(now + 5s).date() - 7 days``. Not synchronized: callers sharing a cache
    across threads must serialize access (see :class:`RequestSigner`).
    """

    def __init__(self, api_access_secret: str, signing_key: Optional[SigningKey] = None):
        self._api_access_secret = api_access_secret
        self._signing_key = signing_key

    @property
    def signing_key(self) -> Optional[SigningKey]:
        return self._signing_key

    def needs_update(self, now: datetime.datetime) -> bool:
        if self._signing_key is None:
            return True

        lower_bound_date = (
            (_as_utc(now) + datetime.timedelta(seconds=TIME_VARIATION_SECS)).date()
            - datetime.timedelta(days=SIGNATURE_VALIDITY_DAYS)
        )

        return self._signing_key.date < lower_bound_date

    def key_for(self, now: datetime.datetime) -> SigningKey:
        """
        Get signing key valid for a request dated ``now``.

        Args:
            now: Current UTC instant

        Returns:
            Cached signing key, rederived first if expired
        """
        now = _as_utc(now)

        if self.needs_update(now):
            self._signing_key = derive_signing_key(self._api_access_secret, now.date())
            LOGGER.debug("Derived new signing key for %s", self._signing_key.date.isoformat())

        return self._signing_key


class RequestSigner:
    """
    Signs prepared requests with the CTN1-HMAC-SHA256 scheme.

    Adds (or overwrites) exactly three headers: ``host``, ``x-bcot-timestamp``
    and ``authorization``. The request body is read but never changed.
    """

    def __init__(self, credentials: DeviceCredentials, key_cache: Optional[SigningKeyCache] = None):
        self.credentials = credentials
        self.key_cache = key_cache or SigningKeyCache(credentials.api_access_secret)
        self._lock = threading.Lock()

    def sign(self, request, now: Optional[datetime.datetime] = None):
        """
        Sign request in place.

        Args:
            request: ``requests.PreparedRequest`` (or any object exposing
                ``method``, ``url``, ``headers`` and ``body``)
            now: Signing instant; defaults to the current UTC time

        Raises:
            ClientError: If the request has no host, carries invalid header
                text or a body that is not buffered
        """
        now = _as_utc(now or utc_now())

        if not isinstance(request.headers, CaseInsensitiveDict):
            request.headers = CaseInsensitiveDict(request.headers or {})

        headers = request.headers

        if HEADER_HOST not in headers:
            host = get_host_with_port(request.url)

            if host is None:
                raise ClientError("Inconsistent HTTP request: URL missing host")

            headers['Host'] = host

        host = _check_header_value(HEADER_HOST, headers[HEADER_HOST])
        body = _body_bytes(request.body)

        timestamp = format_timestamp(now)
        headers[HEADER_TIMESTAMP] = timestamp

        canonical_request = build_canonical_request(
            request.method,
            get_url_path_with_query(request.url),
            host,
            timestamp,
            body
        )

        with self._lock:
            signing_key = self.key_cache.key_for(now)

        scope = build_scope(signing_key.date)
        string_to_sign = build_string_to_sign(timestamp, scope, canonical_request)

        signature = hmac.new(
            signing_key.key,
            string_to_sign.encode('utf-8'),
            hashlib.sha256
        ).hexdigest()

        headers[HEADER_AUTHORIZATION] = _check_header_value(
            HEADER_AUTHORIZATION,
            f"{SIGNATURE_SCHEME} Credential={self.credentials.device_id}/{scope},Signature={signature}"
        )

        LOGGER.debug("Signed %s request to %s", request.method, request.url)
