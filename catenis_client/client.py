"""
Catenis API client.

This module provides the client used to make CTN1-HMAC-SHA256 authenticated
requests to the Catenis API and to open WebSocket notification channels.
"""

import datetime
import json
import logging
import zlib
from typing import Any, Dict, Optional, Union
from urllib.parse import urljoin, urlsplit, urlunsplit

import requests

from .constants import (
    API_BASE_URL_PATH,
    DEFAULT_CONFIG,
    DEFAULT_HOST,
    ENVIRONMENT_PROD,
    ENVIRONMENT_SANDBOX,
    SANDBOX_SUBDOMAIN
)
from .exceptions import (
    ApiError,
    ClientError,
    ConfigurationError,
    TransportError
)
from .notification import NotificationEvent
from .signing import DeviceCredentials, RequestSigner
from .ws_notify import WsNotifyChannel

LOGGER = logging.getLogger(__name__)


def merge_url_params(url_path: str, params: Optional[Dict[str, str]] = None) -> str:
    """Replace ``:name`` placeholders in URL path."""
    for name, value in (params or {}).items():
        url_path = url_path.replace(f":{name}", str(value))
    return url_path


def _query_value(value) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


class CatenisClient:
    """
    Client for the Catenis API.

    Signs every request with the device's credentials. Not meant to be
    shared among threads without external synchronization, except for
    request signing, which is serialized internally.
    """

    def __init__(self, device_id: str, api_access_secret: str, **config):
        """
        Initialize Catenis API client.

        Args:
            device_id: Catenis virtual device ID
            api_access_secret: Device's API access secret
            **config: Configuration options (host, environment, secure, version,
                use_compression, compress_threshold, timeout, poll_interval,
                event_queue_size)
        """
        self.credentials = DeviceCredentials(device_id, api_access_secret)

        # Merge default config with user overrides
        self.config = {**DEFAULT_CONFIG, **config}

        # Validate configuration
        self._validate_config()

        self.base_api_url = self._build_base_api_url()
        self.signer = RequestSigner(self.credentials)

        # Create HTTP session
        self.session = requests.Session()

    @property
    def device_id(self) -> str:
        return self.credentials.device_id

    def _validate_config(self):
        """Validate client configuration."""
        if not self.credentials.device_id:
            raise ConfigurationError("device_id cannot be empty")

        if not self.credentials.api_access_secret:
            raise ConfigurationError("api_access_secret cannot be empty")

        if self.config['environment'] not in (ENVIRONMENT_PROD, ENVIRONMENT_SANDBOX):
            raise ConfigurationError(f"Unknown environment: {self.config['environment']}")

        if self.config['compress_threshold'] <= 0:
            raise ConfigurationError("compress_threshold must be positive")

        if self.config['timeout'] <= 0:
            raise ConfigurationError("timeout must be positive")

        if self.config['poll_interval'] <= 0:
            raise ConfigurationError("poll_interval must be positive")

        if self.config['event_queue_size'] <= 0:
            raise ConfigurationError("event_queue_size must be positive")

    def _build_base_api_url(self) -> str:
        host = self.config['host'] or DEFAULT_HOST

        try:
            parsed = urlsplit(f"http://{host}")
            hostname = parsed.hostname
            port = parsed.port
        except ValueError as e:
            raise ConfigurationError(f"Invalid host: {host}", e) from e

        if not hostname or parsed.path or parsed.query:
            raise ConfigurationError(f"Invalid host: {host}")

        if self.config['environment'] == ENVIRONMENT_SANDBOX:
            hostname = SANDBOX_SUBDOMAIN + hostname

        netloc = hostname if port is None else f"{hostname}:{port}"
        scheme = 'https' if self.config['secure'] else 'http'

        return urljoin(
            urlunsplit((scheme, netloc, '/', '', '')),
            merge_url_params(API_BASE_URL_PATH, {'version': self.config['version']})
        )

    def sign_request(self, request, now: Optional[datetime.datetime] = None):
        """
        Sign prepared request in place.

        Raises:
            ClientError: If the request cannot be signed
        """
        self.signer.sign(request, now)

    def _prepare_request_body(self, json_data=None) -> bytes:
        """Prepare request body for signing."""
        if json_data is None:
            return b''
        return json.dumps(json_data, separators=(',', ':')).encode('utf-8')

    def _compress_body(self, body: bytes) -> bytes:
        # Raw deflate stream (no zlib header)
        compressor = zlib.compressobj(wbits=-zlib.MAX_WBITS)
        return compressor.compress(body) + compressor.flush()

    def _build_url(self, endpoint_url_path: str, url_params: Optional[Dict[str, str]] = None) -> str:
        return urljoin(self.base_api_url, merge_url_params(endpoint_url_path, url_params))

    def _get_request(self, endpoint_url_path: str, url_params: Optional[Dict[str, str]] = None,
                     query_params: Optional[Dict[str, Any]] = None) -> requests.PreparedRequest:
        """Build unsigned GET request."""
        params = {k: _query_value(v) for k, v in (query_params or {}).items()}
        return requests.Request(
            'GET',
            self._build_url(endpoint_url_path, url_params),
            params=params
        ).prepare()

    def _post_request(self, endpoint_url_path: str, json_data=None,
                      url_params: Optional[Dict[str, str]] = None,
                      query_params: Optional[Dict[str, Any]] = None) -> requests.PreparedRequest:
        """Build unsigned POST request, compressing large bodies."""
        body = self._prepare_request_body(json_data)
        headers = {}

        if body:
            headers['Content-Type'] = 'application/json'

            if self.config['use_compression'] and len(body) >= self.config['compress_threshold']:
                body = self._compress_body(body)
                headers['Content-Encoding'] = 'deflate'

        params = {k: _query_value(v) for k, v in (query_params or {}).items()}

        return requests.Request(
            'POST',
            self._build_url(endpoint_url_path, url_params),
            params=params,
            headers=headers,
            data=body or None
        ).prepare()

    def _get_ws_request(self, endpoint_url_path: str,
                        url_params: Optional[Dict[str, str]] = None) -> requests.PreparedRequest:
        """Build unsigned request whose URL uses the WebSocket scheme."""
        request = self._get_request(endpoint_url_path, url_params)
        parts = urlsplit(request.url)
        request.url = urlunsplit(('wss' if self.config['secure'] else 'ws',) + tuple(parts[1:]))
        return request

    def _send_request(self, request: requests.PreparedRequest) -> requests.Response:
        """
        Send signed request.

        Raises:
            TransportError: If the request fails
            ApiError: If the API returns a non-success status
        """
        try:
            response = self.session.send(request, timeout=self.config['timeout'])
        except requests.RequestException as e:
            raise TransportError("HTTP request failed", e) from e

        if not response.ok:
            error = ApiError.from_response(response)
            LOGGER.debug("Catenis API error: %s", error.error_message)
            raise error

        return response

    def _sign_and_send_request(self, request: requests.PreparedRequest) -> requests.Response:
        self.sign_request(request)
        return self._send_request(request)

    @staticmethod
    def _parse_response(response: requests.Response) -> Any:
        """Return the ``data`` member of a successful API response."""
        try:
            body = response.json()
            return body['data']
        except (ValueError, KeyError, TypeError) as e:
            raise ClientError("Inconsistent Catenis API response", e) from e

    def log_message(self, message: Union[str, Dict[str, Any]], options: Optional[Dict[str, Any]] = None):
        """Log message to the blockchain."""
        body = {'message': message}
        if options:
            body['options'] = options

        request = self._post_request('messages/log', body)
        return self._parse_response(self._sign_and_send_request(request))

    def send_message(self, message: Union[str, Dict[str, Any]], target_device: Dict[str, Any],
                     options: Optional[Dict[str, Any]] = None):
        """Send message to another virtual device."""
        body = {'message': message, 'targetDevice': target_device}
        if options:
            body['options'] = options

        request = self._post_request('messages/send', body)
        return self._parse_response(self._sign_and_send_request(request))

    def read_message(self, message_id: str, options: Optional[Dict[str, Any]] = None):
        """Read message; ``options`` become query parameters."""
        request = self._get_request(
            'messages/:message_id',
            {'message_id': message_id},
            options
        )
        return self._parse_response(self._sign_and_send_request(request))

    def retrieve_message_progress(self, message_id: str):
        request = self._get_request('messages/:message_id/progress', {'message_id': message_id})
        return self._parse_response(self._sign_and_send_request(request))

    def list_notification_events(self):
        request = self._get_request('notification/events')
        return self._parse_response(self._sign_and_send_request(request))

    def new_ws_notify_channel(self, event: Union[NotificationEvent, str], **kwargs) -> WsNotifyChannel:
        """Create (unopened) WebSocket notification channel."""
        return WsNotifyChannel(self, event, **kwargs)

    def close(self):
        """Close HTTP session."""
        if self.session:
            self.session.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
