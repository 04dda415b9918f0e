"""
Unit tests for CTN1-HMAC-SHA256 request signing.
"""

import datetime
import hashlib
import hmac
from types import SimpleNamespace

import pytest
import requests

from catenis_client import ClientError, DeviceCredentials, RequestSigner, SigningKey, SigningKeyCache
from catenis_client.signing import (
    build_canonical_request,
    build_scope,
    build_string_to_sign,
    derive_signing_key,
    format_timestamp,
    get_host_with_port,
    get_url_path_with_query
)

API_ACCESS_SECRET = (
    "4c1749c8e86f65e0a73e5fb19f2aa9e74a716bc22d7956bf3072b4bc3fbfe2a0"
    "d138ad0d4bcfee251e4e5f54d6e92b8fd4eb36958a7aeaeeb51e8d2fcc4552c3"
)
DEVICE_ID = "drc3XdxNtzoucpw9xiRp"

SIGN_TIME = datetime.datetime(2020, 12, 10, 20, 38, 48, tzinfo=datetime.timezone.utc)
SIGNING_KEY_20201210 = "1994cf29b9db63ed8a20a3f14b4be8948dcee558340c3f864648debc3ce9b0b9"
EMPTY_BODY_HASH = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


def utc(*args):
    return datetime.datetime(*args, tzinfo=datetime.timezone.utc)


class TestSigningKeyCache:
    """Test signing key derivation and rotation."""

    def test_derive_signing_key(self):
        """Test key derivation against fixed value."""
        signing_key = derive_signing_key(API_ACCESS_SECRET, datetime.date(2020, 12, 10))

        assert signing_key.date == datetime.date(2020, 12, 10)
        assert len(signing_key.key) == 32
        assert signing_key.key.hex() == SIGNING_KEY_20201210

    def test_derive_signing_key_chain(self):
        """Test key is HMAC of 'ctn1_request' keyed by the date key."""
        date_key = hmac.new(
            ("CTN1" + API_ACCESS_SECRET).encode('utf-8'),
            b"20201210",
            hashlib.sha256
        ).digest()
        expected = hmac.new(date_key, b"ctn1_request", hashlib.sha256).digest()

        assert derive_signing_key(API_ACCESS_SECRET, datetime.date(2020, 12, 10)).key == expected

    def test_key_derived_lazily(self):
        """Test no key exists until first use."""
        cache = SigningKeyCache(API_ACCESS_SECRET)

        assert cache.signing_key is None

        signing_key = cache.key_for(utc(2020, 12, 11))

        assert signing_key.date == datetime.date(2020, 12, 11)
        assert cache.signing_key is signing_key

    def test_no_need_to_update(self):
        """Test key within validity window is kept."""
        cached = SigningKey(datetime.date(2020, 12, 5), b"\x01" * 32)
        cache = SigningKeyCache(API_ACCESS_SECRET, cached)

        assert cache.key_for(utc(2020, 12, 11, 23, 59, 55)) is cached

    def test_indeed_update(self):
        """Test expired key is replaced by one for the current date."""
        cached = SigningKey(datetime.date(2020, 12, 4), b"\x01" * 32)
        cache = SigningKeyCache(API_ACCESS_SECRET, cached)

        signing_key = cache.key_for(utc(2020, 12, 11, 23, 59, 55))

        assert signing_key != cached
        assert signing_key.date == datetime.date(2020, 12, 11)
        assert signing_key == derive_signing_key(API_ACCESS_SECRET, datetime.date(2020, 12, 11))

    def test_rotation_boundary(self):
        """Test key is kept up to the skew-adjusted boundary and rotated one second later."""
        cached = SigningKey(datetime.date(2020, 12, 4), b"\x01" * 32)
        cache = SigningKeyCache(API_ACCESS_SECRET, cached)

        # (now + 5s).date() - 7 days == 2020-12-04
        assert cache.key_for(utc(2020, 12, 11, 23, 59, 54)) is cached

        rotated = cache.key_for(utc(2020, 12, 11, 23, 59, 55))

        assert rotated.date == datetime.date(2020, 12, 11)
        assert cache.signing_key is rotated

    def test_only_latest_key_kept(self):
        """Test rotation replaces the cached key."""
        cache = SigningKeyCache(API_ACCESS_SECRET)

        first = cache.key_for(utc(2020, 12, 1))
        second = cache.key_for(utc(2020, 12, 20))

        assert first.date == datetime.date(2020, 12, 1)
        assert second.date == datetime.date(2020, 12, 20)
        assert cache.signing_key is second

    def test_naive_datetime_is_utc(self):
        """Test naive datetime is taken as UTC."""
        cache = SigningKeyCache(API_ACCESS_SECRET)

        assert cache.key_for(datetime.datetime(2020, 12, 10, 23, 0)).date == datetime.date(2020, 12, 10)


class TestCanonicalRequest:
    """Test canonical request and string to sign."""

    def test_canonical_request_fixture(self):
        """Test canonical request of a POST with empty body."""
        canonical_request = build_canonical_request(
            'POST', '/api/0.10/messages/log', 'catenis.io', '20201210T203848Z'
        )

        assert canonical_request == (
            "POST\n"
            "/api/0.10/messages/log\n"
            "host:catenis.io\n"
            "x-bcot-timestamp:20201210T203848Z\n"
            "\n"
            f"{EMPTY_BODY_HASH}\n"
        )
        assert hashlib.sha256(canonical_request.encode('utf-8')).hexdigest() == \
            "5a3d46b3389d1d81e0f7741d2df2e9f42cba505a051ccf100a152f42171c6cfe"

    def test_string_to_sign(self):
        """Test string to sign layout."""
        canonical_request = build_canonical_request(
            'post', '/api/0.10/messages/log', 'catenis.io', '20201210T203848Z'
        )
        scope = build_scope(datetime.date(2020, 12, 10))

        assert scope == "20201210/ctn1_request"
        assert build_string_to_sign('20201210T203848Z', scope, canonical_request) == (
            "CTN1-HMAC-SHA256\n"
            "20201210T203848Z\n"
            "20201210/ctn1_request\n"
            "5a3d46b3389d1d81e0f7741d2df2e9f42cba505a051ccf100a152f42171c6cfe\n"
        )

    def test_format_timestamp(self):
        """Test compact ISO 8601 timestamp."""
        assert format_timestamp(SIGN_TIME) == "20201210T203848Z"

    def test_format_timestamp_other_timezone(self):
        """Test timestamp is converted to UTC."""
        brt = datetime.timezone(datetime.timedelta(hours=-3))
        now = datetime.datetime(2020, 12, 10, 17, 38, 48, tzinfo=brt)

        assert format_timestamp(now) == "20201210T203848Z"

    @pytest.mark.parametrize("url,expected", [
        ("http://localhost/", "localhost"),
        ("http://localhost:3000/", "localhost:3000"),
        ("https://catenis.io:443/api", "catenis.io"),
        ("ws://localhost:80/", "localhost"),
        ("wss://Sandbox.Catenis.io:8443/", "sandbox.catenis.io:8443"),
        ("http://[::1]:3000/", "[::1]:3000"),
        ("unix:/run/foo.socket", None),
    ])
    def test_get_host_with_port(self, url, expected):
        """Test host header value derived from URL."""
        assert get_host_with_port(url) == expected

    def test_get_host_with_invalid_port(self):
        """Test invalid URL port."""
        with pytest.raises(ClientError):
            get_host_with_port("http://localhost:abc/")

    def test_get_url_path_with_no_query(self):
        assert get_url_path_with_query("http://localhost:3000/dir1/resource1") == "/dir1/resource1"

    def test_get_url_path_with_query(self):
        assert get_url_path_with_query(
            "http://localhost:3000/dir1/resource1?parm1=val1&parm2=val2"
        ) == "/dir1/resource1?parm1=val1&parm2=val2"

    def test_get_url_path_root(self):
        assert get_url_path_with_query("http://localhost:3000") == "/"


class TestRequestSigner:
    """Test request signing."""

    @pytest.fixture
    def signer(self):
        """Create test signer."""
        return RequestSigner(DeviceCredentials(DEVICE_ID, API_ACCESS_SECRET))

    def test_sign_fixture(self, signer):
        """Test authorization header of a POST with empty body."""
        request = requests.Request('POST', 'https://catenis.io/api/0.10/messages/log').prepare()

        signer.sign(request, SIGN_TIME)

        assert request.headers['host'] == 'catenis.io'
        assert request.headers['x-bcot-timestamp'] == '20201210T203848Z'
        assert request.headers['authorization'] == (
            "CTN1-HMAC-SHA256 Credential=drc3XdxNtzoucpw9xiRp/20201210/ctn1_request,"
            "Signature=5fb978416cda16791ea8670b894a0864d778fd44bd7c8017b8f370b7be9f55ad"
        )

    def test_sign_with_body_and_query(self, signer):
        """Test signature covers body hash, query and non-default port."""
        request = requests.Request(
            'POST',
            'http://localhost:3000/api/0.11/messages/log',
            params={'async': 'false'},
            data=b'{"message":"Test message"}'
        ).prepare()

        signer.sign(request, SIGN_TIME)

        assert request.headers['host'] == 'localhost:3000'
        assert request.headers['authorization'] == (
            "CTN1-HMAC-SHA256 Credential=drc3XdxNtzoucpw9xiRp/20201210/ctn1_request,"
            "Signature=27adeb651a322fbfc9f063afce7be76a426a5324949df83127d098e716a9e81e"
        )

    def test_sign_deterministic(self, signer):
        """Test identical requests yield identical signatures."""
        headers = []

        for _ in range(3):
            request = requests.Request('GET', 'https://catenis.io/api/0.11/messages/abc').prepare()
            signer.sign(request, SIGN_TIME)
            headers.append(request.headers['authorization'])

        assert len(set(headers)) == 1

    def test_sign_adds_three_headers(self, signer):
        """Test only host, timestamp and authorization headers are added."""
        request = requests.Request('GET', 'https://catenis.io/api/0.11/messages/abc').prepare()
        before = {name.lower() for name in request.headers}

        signer.sign(request, SIGN_TIME)

        after = {name.lower() for name in request.headers}
        assert after - before == {'host', 'x-bcot-timestamp', 'authorization'}

    def test_sign_overwrites_previous_signature(self, signer):
        """Test signing again replaces timestamp and authorization."""
        request = requests.Request('GET', 'https://catenis.io/api/0.11/messages/abc').prepare()

        signer.sign(request, SIGN_TIME)
        first = request.headers['authorization']
        signer.sign(request, SIGN_TIME + datetime.timedelta(seconds=1))

        assert request.headers['x-bcot-timestamp'] == '20201210T203849Z'
        assert request.headers['authorization'] != first

    def test_sign_keeps_host_header(self, signer):
        """Test existing host header is used as is."""
        request = requests.Request(
            'GET', 'http://127.0.0.1:3000/api/0.11/messages/abc',
            headers={'Host': 'catenis.io'}
        ).prepare()

        signer.sign(request, SIGN_TIME)

        assert request.headers['host'] == 'catenis.io'

    def test_sign_does_not_touch_body(self, signer):
        """Test body is read but never changed."""
        body = b'{"message":"Test message"}'
        request = requests.Request('POST', 'https://catenis.io/api/0.11/messages/log', data=body).prepare()

        signer.sign(request, SIGN_TIME)

        assert request.body == body

    def test_sign_str_body(self, signer):
        """Test str body is hashed as UTF-8."""
        str_request = SimpleNamespace(
            method='POST', url='https://catenis.io/api/0.11/messages/log',
            headers={}, body='{"message":"Test message"}'
        )
        bytes_request = SimpleNamespace(
            method='POST', url='https://catenis.io/api/0.11/messages/log',
            headers={}, body=b'{"message":"Test message"}'
        )

        signer.sign(str_request, SIGN_TIME)
        signer.sign(bytes_request, SIGN_TIME)

        assert str_request.headers['authorization'] == bytes_request.headers['authorization']

    def test_sign_missing_host(self, signer):
        """Test URL without host fails."""
        request = SimpleNamespace(method='GET', url='unix:/run/foo.socket', headers={}, body=None)

        with pytest.raises(ClientError, match="missing host"):
            signer.sign(request, SIGN_TIME)

    def test_sign_invalid_header_value(self):
        """Test credential that is not valid header text fails."""
        signer = RequestSigner(DeviceCredentials("dévice\n", API_ACCESS_SECRET))
        request = requests.Request('GET', 'https://catenis.io/api/0.11/messages/abc').prepare()

        with pytest.raises(ClientError):
            signer.sign(request, SIGN_TIME)

    def test_sign_unbuffered_body(self, signer):
        """Test streamed body fails."""
        request = SimpleNamespace(
            method='POST', url='https://catenis.io/api/0.11/messages/log',
            headers={}, body=iter([b'data'])
        )

        with pytest.raises(ClientError, match="not buffered"):
            signer.sign(request, SIGN_TIME)

    def test_sign_uses_cached_key(self):
        """Test scope carries the date of the cached signing key."""
        cached = derive_signing_key(API_ACCESS_SECRET, datetime.date(2020, 12, 8))
        signer = RequestSigner(
            DeviceCredentials(DEVICE_ID, API_ACCESS_SECRET),
            SigningKeyCache(API_ACCESS_SECRET, cached)
        )
        request = requests.Request('GET', 'https://catenis.io/api/0.11/messages/abc').prepare()

        signer.sign(request, SIGN_TIME)

        assert f"Credential={DEVICE_ID}/20201208/ctn1_request," in request.headers['authorization']
        assert signer.key_cache.signing_key is cached
