"""
Data models for the static 404 cache
"""
from enum import Enum
from typing import Optional
from urllib.parse import parse_qs, urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RuleInstallStatus(str, Enum):
    """
    Outcome of a rule installation attempt.

    Intent:
    Separates "nothing to do" from "could not write", which a plain boolean
    cannot express. ``ok`` gives callers the boolean view when that is all
    they need.
    """

    INSTALLED = "installed"
    ALREADY_INSTALLED = "already_installed"
    REFRESHED = "refreshed"
    STALE = "stale"
    NOT_CACHED = "not_cached"
    FAILED = "failed"

    @property
    def ok(self) -> bool:
        return self in (
            RuleInstallStatus.INSTALLED,
            RuleInstallStatus.ALREADY_INSTALLED,
            RuleInstallStatus.REFRESHED,
        )


class FetchResult(BaseModel):
    """
    Raw outcome of the probe request.

    Intent:
    The fetcher never interprets what it got back; it records the status
    code and body, or the transport error that prevented a response. The
    validator is the only place that decides whether this is a usable
    not-found page.
    """

    model_config = ConfigDict(frozen=True)

    status_code: Optional[int] = Field(default=None, description="HTTP status, None on transport error")
    body: bytes = Field(default=b"", description="Raw response body")
    error: Optional[str] = Field(default=None, description="Transport error description")

    @property
    def is_transport_error(self) -> bool:
        return self.error is not None or self.status_code is None


class RequestContext(BaseModel):
    """
    The parts of an incoming request the live handler needs.

    Intent:
    Hosts build one of these from whatever request object their framework
    provides. The current URL is reconstructed from scheme, host and request
    URI the same way the probe URL is built, so the two compare exactly.
    """

    scheme: str = Field(default="http", description="Request scheme")
    host: str = Field(description="Host header, including any port")
    request_uri: str = Field(default="/", description="Path plus query string as requested")
    headers: dict[str, str] = Field(default_factory=dict)
    is_feed: bool = Field(default=False, description="Whether the host resolved a feed request")

    @field_validator("scheme")
    @classmethod
    def validate_scheme(cls, v: str) -> str:
        v = v.lower()
        if v not in ("http", "https"):
            raise ValueError("scheme must be http or https")
        return v

    @field_validator("headers", mode="before")
    @classmethod
    def normalize_headers(cls, v):
        """Header names are case-insensitive; store them lower-cased."""
        if v is None:
            return {}
        return {str(k).lower(): str(val) for k, val in dict(v).items()}

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RequestContext":
        parts = urlsplit(url)
        request_uri = parts.path or "/"
        if parts.query:
            request_uri = f"{request_uri}?{parts.query}"
        return cls(scheme=parts.scheme or "http", host=parts.netloc, request_uri=request_uri, **kwargs)

    @property
    def current_url(self) -> str:
        return f"{self.scheme}://{self.host}{self.request_uri}"

    @property
    def query_params(self) -> dict[str, list[str]]:
        return parse_qs(urlsplit(self.request_uri).query, keep_blank_values=True)

    def has_query_flag(self, name: str) -> bool:
        """True when ``name`` appears in the query string, with or without a value."""
        return name in self.query_params

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())


class CachedResponse(BaseModel):
    """
    Response the host must send verbatim, then stop processing the request.
    """

    model_config = ConfigDict(frozen=True)

    status_code: int = 404
    body: bytes
    content_type: str = "text/html; charset=utf-8"
