"""
Configuration module for the static 404 cache
"""
import hashlib
import os
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import urlsplit

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

load_dotenv()

PRODUCT_NAME = "Static 404 Page"

PROBE_PATH_PREFIX = "cache-404-request-"

# Sent with every probe request so the live handler can recognise it
PROBE_HEADER_NAME = "X-Static-404-Cache-Request"

RULES_MARKER = "Static404Site"

DEFAULT_HTTP_TIMEOUT = 5.0
DEFAULT_RECACHE_DELAY = 30.0
DEFAULT_FILE_NAME = "static-404.html"

DEFAULT_RECACHE_ACTIONS = (
    "trashed_post",
    "untrash_post",
    "delete_post",
    "edit_post",
    "publish_page",
    "publish_post",
    "save_post",
    "publish_future_post",
    "add_attachment",
    "delete_attachment",
    "edit_attachment",
    "add_category",
    "edit_category",
    "delete_category",
    "created_term",
    "added_term_relationship",
    "edited_terms",
    "edited_term_taxonomy",
    "deleted_term_taxonomy",
    "deleted_term_relationships",
    "deleted_taxonomy",
    "comment_post",
    "deleted_comment",
    "trashed_comment",
    "untrashed_comment",
    "spammed_comment",
    "unspammed_comment",
    "add_link",
    "delete_link",
    "edit_link",
    "activated_plugin",
    "deactivated_plugin",
    "after_switch_theme",
)

DEFAULT_FILE_EXTENSIONS = (
    "asf", "asx", "avi", "bmp", "class", "css", "divx", "doc", "docx", "env",
    "exe", "gif", "gz", "gzip", "htm", "html", "htaccess", "ico", "jpe",
    "jpeg", "jpg", "js", "json", "midi", "mid", "m4a", "m4v", "mdb", "mov",
    "mp3", "mpeg", "mpg", "mpe", "mp4", "mpp", "odc", "odb", "odf", "odg",
    "odp", "ods", "odt", "ogg", "pdf", "png", "pot", "pps", "ppt", "pptx",
    "qt", "ra", "ram", "rtf", "rtx", "svg", "svgz", "swf", "tar", "tif",
    "tiff", "txt", "wav", "webm", "webmanifest", "webp", "wax", "wmv", "wmx",
    "wma", "wri", "xls", "xlsx", "xla", "xlt", "xlw", "xml", "xsd", "xsl",
    "yaml", "zip", "php", "woff", "woff2",
)


def _env_list(name: str, default: tuple[str, ...]) -> list[str]:
    raw = os.getenv(name)
    if raw is None:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_optional(name: str) -> Optional[str]:
    return os.getenv(name) or None


def probe_fingerprint(identity: str = PRODUCT_NAME) -> str:
    """Short, stable fingerprint used in the reserved probe path."""
    return hashlib.sha1(identity.encode("utf-8")).hexdigest()[:12]


class Static404Config(BaseModel):
    """
    Configuration for one site's static 404 cache with environment variable support.

    Intent:
    Replaces a registry of named filter callbacks with explicit fields, each
    consumed at one point of the pipeline:

    - ``http_timeout`` by the fetcher
    - ``file_name``, ``file_path`` by the cache writer and the handler
    - ``recache_actions``, ``recache_delay`` by the scheduler
    - ``request_url`` by the fetcher and the handler's probe detection
    - ``file_url``, ``file_extensions`` by the rule installer
    - ``response_contents`` by the cache writer, before the body is persisted

    Environment variables supply the defaults, explicit arguments win.
    """

    home_url: str = Field(
        default_factory=lambda: os.getenv("STATIC404_HOME_URL", "http://localhost/")
    )
    site_id: int = Field(default_factory=lambda: int(os.getenv("STATIC404_SITE_ID", "1")))
    upload_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("STATIC404_UPLOAD_DIR", "./uploads"))
    )
    upload_url: str = Field(
        default_factory=lambda: os.getenv("STATIC404_UPLOAD_URL", "/uploads")
    )
    rules_file: Path = Field(
        default_factory=lambda: Path(os.getenv("STATIC404_RULES_FILE", "./.htaccess"))
    )

    http_timeout: float = Field(
        default_factory=lambda: float(
            os.getenv("STATIC404_HTTP_TIMEOUT", str(DEFAULT_HTTP_TIMEOUT))
        )
    )
    file_name: str = Field(
        default_factory=lambda: os.getenv("STATIC404_FILE_NAME", DEFAULT_FILE_NAME)
    )
    recache_actions: list[str] = Field(
        default_factory=lambda: _env_list("STATIC404_RECACHE_ACTIONS", DEFAULT_RECACHE_ACTIONS)
    )
    recache_delay: float = Field(
        default_factory=lambda: float(
            os.getenv("STATIC404_RECACHE_DELAY", str(DEFAULT_RECACHE_DELAY))
        )
    )
    request_url: Optional[str] = Field(
        default_factory=lambda: _env_optional("STATIC404_REQUEST_URL")
    )
    file_path: Optional[Path] = Field(
        default_factory=lambda: _env_optional("STATIC404_FILE_PATH")
    )
    file_url: Optional[str] = Field(
        default_factory=lambda: _env_optional("STATIC404_FILE_URL")
    )
    file_extensions: list[str] = Field(
        default_factory=lambda: _env_list("STATIC404_FILE_EXTENSIONS", DEFAULT_FILE_EXTENSIONS)
    )
    response_contents: Optional[Callable[[bytes], bytes]] = Field(default=None, exclude=True)
    debug: bool = Field(default_factory=lambda: os.getenv("DEBUG", "false").lower() == "true")

    model_config = ConfigDict(validate_assignment=True, validate_default=True)

    @field_validator("http_timeout")
    @classmethod
    def validate_http_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("HTTP timeout must be greater than zero")
        return v

    @field_validator("recache_delay")
    @classmethod
    def validate_recache_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Recache delay must not be negative")
        return v

    @field_validator("site_id")
    @classmethod
    def validate_site_id(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Site id must be a positive integer")
        return v

    @field_validator("file_name")
    @classmethod
    def validate_file_name(cls, v: str) -> str:
        """
        Validate the cache file name.

        Intent:
        The name is joined onto both the upload directory and the upload URL,
        so a separator would silently move the file somewhere the generated
        ErrorDocument directive does not point to.
        """
        if not v or not v.strip():
            raise ValueError("File name must not be empty")
        if "/" in v or "\\" in v:
            raise ValueError("File name must not contain path separators")
        return v

    @field_validator("file_extensions")
    @classmethod
    def normalize_file_extensions(cls, v: list[str]) -> list[str]:
        """
        Normalize extensions to lower-case without a leading dot.

        Duplicates are dropped, first occurrence wins. An empty list is
        allowed through; the rule installer warns about it.
        """
        normalized: list[str] = []
        for ext in v:
            ext = ext.strip().lstrip(".").lower()
            if ext and ext not in normalized:
                normalized.append(ext)
        return normalized

    @property
    def probe_url(self) -> str:
        """
        URL of the reserved path requested to capture the not-found page.

        The path cannot match real content and is identical on every run, so
        the live handler can tell the probe apart from real visitors.
        """
        if self.request_url:
            return self.request_url
        return f"{self.home_url.rstrip('/')}/{PROBE_PATH_PREFIX}{probe_fingerprint()}"

    @property
    def cache_file_path(self) -> Path:
        if self.file_path is not None:
            return self.file_path
        return self.upload_dir / self.file_name

    @property
    def cache_file_url(self) -> str:
        """Public URL of the cache file, as used by ErrorDocument."""
        if self.file_url:
            return self.file_url
        return f"{self.upload_url.rstrip('/')}/{self.file_name}"

    @property
    def base_path(self) -> str:
        return urlsplit(self.home_url).path or "/"

    @property
    def marker(self) -> str:
        return f"{RULES_MARKER}{self.site_id}"
