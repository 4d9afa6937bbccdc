from __future__ import annotations

import pytest
from pydantic import ValidationError

from feedguard.errors import TooManyRedirectsError, UpstreamHttpError
from feedguard.schemas import (
    FetchOptions,
    IpClassification,
    RedirectChain,
    SecureResponse,
    ValidatedUrl,
    ValidationResult,
)


def _hop(url: str = "https://example.com/", host: str = "example.com", port: int = 443) -> ValidatedUrl:
    return ValidatedUrl(
        url=url,
        scheme=url.split(":", 1)[0],
        host=host,
        port=port,
        target="/",
        addresses=("93.184.216.34",),
    )


class TestValidatedUrl:
    def test_frozen(self):
        with pytest.raises(AttributeError):
            _hop().host = "evil.example"  # type: ignore[misc]


class TestRedirectChain:
    def test_tracks_hops(self):
        chain = RedirectChain(max_redirects=2)
        chain.append(_hop("https://a.example/"))
        chain.append(_hop("https://b.example/"))
        assert len(chain) == 2
        assert chain.redirects == 1
        assert chain.urls() == ("https://a.example/", "https://b.example/")

    def test_follow_allowed_up_to_max(self):
        chain = RedirectChain(max_redirects=1)
        chain.append(_hop())
        chain.check_can_follow()

    def test_follow_refused_past_max(self):
        chain = RedirectChain(max_redirects=1)
        chain.append(_hop())
        chain.append(_hop())
        with pytest.raises(TooManyRedirectsError) as exc_info:
            chain.check_can_follow()
        assert exc_info.value.details["max_redirects"] == 1

    def test_zero_redirects_refuses_first_follow(self):
        chain = RedirectChain(max_redirects=0)
        chain.append(_hop())
        with pytest.raises(TooManyRedirectsError):
            chain.check_can_follow()

    def test_empty_chain_has_no_redirects(self):
        assert RedirectChain(3).redirects == 0


class TestSecureResponse:
    def _response(self, status=200, content=b"", content_type="application/rss+xml"):
        return SecureResponse(
            status_code=status,
            raw_headers=(("content-type", content_type),),
            content=content,
            url="https://example.com/feed",
        )

    def test_headers_case_insensitive(self):
        assert self._response().headers["Content-Type"] == "application/rss+xml"

    def test_header_edits_do_not_leak(self):
        response = self._response()
        headers = response.headers
        headers["content-type"] = "text/html"
        headers["x-injected"] = "1"
        assert response.headers["content-type"] == "application/rss+xml"
        assert "x-injected" not in response.headers
        assert response.raw_headers == (("content-type", "application/rss+xml"),)

    def test_repeated_headers_kept(self):
        response = SecureResponse(
            status_code=200,
            raw_headers=(("set-cookie", "a=1"), ("set-cookie", "b=2")),
            content=b"",
            url="https://example.com/feed",
        )
        assert response.headers.get_list("set-cookie") == ["a=1", "b=2"]

    def test_default_encoding(self):
        assert self._response().encoding == "utf-8"

    def test_charset_from_content_type(self):
        response = self._response(content="caf\xe9".encode("latin-1"), content_type='text/xml; charset="ISO-8859-1"')
        assert response.encoding == "ISO-8859-1"
        assert response.text == "caf\xe9"

    def test_unknown_charset_falls_back(self):
        response = self._response(content=b"feed", content_type="text/xml; charset=x-bogus")
        assert response.text == "feed"

    def test_invalid_bytes_replaced(self):
        assert self._response(content=b"ok\xff").text == "ok\ufffd"

    def test_raise_for_status(self):
        assert self._response(200).raise_for_status().status_code == 200
        with pytest.raises(UpstreamHttpError) as exc_info:
            self._response(503).raise_for_status()
        assert exc_info.value.retryable is True


class TestModels:
    def test_validation_result_frozen(self):
        result = ValidationResult(valid=True, normalized_url="https://example.com/")
        with pytest.raises(ValidationError):
            result.valid = False

    def test_fetch_options_defaults(self):
        options = FetchOptions()
        assert options.max_redirects is None
        assert options.timeout is None
        assert options.max_bytes is None

    def test_fetch_options_bounds(self):
        with pytest.raises(ValidationError):
            FetchOptions(max_redirects=-1)
        with pytest.raises(ValidationError):
            FetchOptions(timeout=0)

    def test_classification_values(self):
        assert IpClassification.IPV4_MAPPED_V6.value == "ipv4_mapped_v6"
        assert IpClassification("public") is IpClassification.PUBLIC
