"""
Tests for static 404 models
"""
import pytest
from pydantic import ValidationError

from static_404.models import CachedResponse, FetchResult, RequestContext, RuleInstallStatus


class TestFetchResult:
    """
    Test cases for FetchResult model
    """

    def test_response(self):
        result = FetchResult(status_code=404, body=b"Not Found")

        assert result.status_code == 404
        assert result.body == b"Not Found"
        assert result.is_transport_error is False

    def test_transport_error(self):
        result = FetchResult(error="ConnectError: refused")

        assert result.status_code is None
        assert result.body == b""
        assert result.is_transport_error is True

    def test_frozen(self):
        result = FetchResult(status_code=404, body=b"x")
        with pytest.raises(ValidationError):
            result.status_code = 200


class TestRequestContext:
    """
    Test cases for RequestContext model
    """

    def test_current_url(self):
        request = RequestContext(scheme="https", host="example.com:8443", request_uri="/a/b?x=1")
        assert request.current_url == "https://example.com:8443/a/b?x=1"

    def test_from_url_round_trips_current_url(self):
        url = "http://example.com/shop/missing.php?cache"
        assert RequestContext.from_url(url).current_url == url

    def test_from_url_without_path(self):
        request = RequestContext.from_url("http://example.com")
        assert request.request_uri == "/"

    def test_scheme_is_validated(self):
        assert RequestContext(scheme="HTTPS", host="h").scheme == "https"
        with pytest.raises(ValidationError):
            RequestContext(scheme="ftp", host="h")

    @pytest.mark.parametrize(
        "uri, expected",
        [
            ("/?cache", True),
            ("/page?cache=1", True),
            ("/page?foo=bar&cache", True),
            ("/page?cached", False),
            ("/page", False),
        ],
    )
    def test_query_flag(self, uri, expected):
        request = RequestContext(host="example.com", request_uri=uri)
        assert request.has_query_flag("cache") is expected

    def test_headers_are_case_insensitive(self):
        request = RequestContext(host="h", headers={"X-Static-404-Cache-Request": "1"})
        assert request.header("x-static-404-cache-request") == "1"
        assert request.header("X-STATIC-404-CACHE-REQUEST") == "1"
        assert request.header("Other") is None


class TestCachedResponse:
    def test_defaults(self):
        response = CachedResponse(body=b"<h1>Not Found</h1>")

        assert response.status_code == 404
        assert response.content_type.startswith("text/html")


class TestRuleInstallStatus:
    @pytest.mark.parametrize(
        "status, ok",
        [
            (RuleInstallStatus.INSTALLED, True),
            (RuleInstallStatus.ALREADY_INSTALLED, True),
            (RuleInstallStatus.REFRESHED, True),
            (RuleInstallStatus.STALE, False),
            (RuleInstallStatus.NOT_CACHED, False),
            (RuleInstallStatus.FAILED, False),
        ],
    )
    def test_ok(self, status, ok):
        assert status.ok is ok
