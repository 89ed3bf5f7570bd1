"""
Generation and installation of the Apache rewrite rules
"""
import asyncio
import logging
import os
import re
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Optional

from filelock import FileLock, Timeout
from pydantic import BaseModel, Field

from .config import Static404Config
from .exceptions import RuleInstallError
from .interfaces import ICacheWriter
from .metrics import RecacheMetrics
from .models import RuleInstallStatus

logger = logging.getLogger(__name__)

HEADER_COMMENTS = (
    "# These directives are generated by the static 404 cache.",
    "# Changes to these lines may be overwritten. Adjust the cache file name,",
    "# URL and extension list through the cache configuration instead.",
)

# Directives that do not depend on configuration, in rendered order
GUARD_DIRECTIVES = (
    "RewriteEngine On",
    "RewriteRule .* - [E=HTTP_AUTHORIZATION:%{HTTP:Authorization}]",
    "RewriteBase /",
)
EXISTENCE_CONDITIONS = (
    "RewriteCond %{REQUEST_FILENAME} !-f",
    "RewriteCond %{REQUEST_FILENAME} !-d",
)
TERMINATING_RULE = "RewriteRule .* - [L,END]"
MODULE_OPEN = "<IfModule mod_rewrite.c>"
MODULE_CLOSE = "</IfModule>"

_ERROR_DOCUMENT_RE = re.compile(r"^ErrorDocument\s+404\s+(\S+)$")
_BASE_PATH_RE = re.compile(r"^RewriteCond\s+%\{REQUEST_URI\}\s+\^(\S*)\s+\[NC\]$")
_EXTENSIONS_RE = re.compile(r"^RewriteCond\s+%\{REQUEST_FILENAME\}\s+\\\.\((.*)\)\$\s+\[NC\]$")


def _normalize(line: str) -> str:
    return " ".join(line.split())


def begin_marker(marker: str) -> str:
    return f"# BEGIN {marker}"


def end_marker(marker: str) -> str:
    return f"# END {marker}"


class RuleBlock(BaseModel):
    """
    One site's rewrite rules.

    Intent:
    The block is compared by its parsed fields rather than by its text, so
    a block that differs only in whitespace or extension order is still
    recognised as installed. ``marker`` already includes the site id, which
    keeps blocks of different sites distinct in a shared file.
    """

    marker: str = Field(description="Marker including the site id")
    error_document: str = Field(description="Public URL of the cached not-found page")
    base_path: str = Field(default="/", description="Site base path the rules apply to")
    extensions: list[str] = Field(default_factory=list)

    def render(self) -> str:
        """Rendered block, newline terminated, ready to write."""
        lines = [
            begin_marker(self.marker),
            *HEADER_COMMENTS,
            MODULE_OPEN,
            f"ErrorDocument 404 {self.error_document}",
            *GUARD_DIRECTIVES,
            f"RewriteCond %{{REQUEST_URI}} ^{self.base_path} [NC]",
            *EXISTENCE_CONDITIONS,
            "RewriteCond %{REQUEST_FILENAME} \\.(" + "|".join(self.extensions) + ")$ [NC]",
            TERMINATING_RULE,
            MODULE_CLOSE,
            end_marker(self.marker),
        ]
        return "\n".join(lines) + "\n"

    @classmethod
    def parse(cls, marker: str, lines: list[str]) -> Optional["RuleBlock"]:
        """
        Parse the body of an installed block (lines between the markers).

        Returns:
            The parsed block, or None when a required directive is missing
            and the block cannot be one this module generated
        """
        directives = [_normalize(line) for line in lines]
        directives = [line for line in directives if line and not line.startswith("#")]

        required = {MODULE_OPEN, MODULE_CLOSE, TERMINATING_RULE}
        required.update(_normalize(d) for d in GUARD_DIRECTIVES)
        required.update(_normalize(d) for d in EXISTENCE_CONDITIONS)
        if not required.issubset(directives):
            return None

        error_document = base_path = extensions = None
        for line in directives:
            if match := _ERROR_DOCUMENT_RE.match(line):
                error_document = match.group(1)
            elif match := _BASE_PATH_RE.match(line):
                base_path = match.group(1)
            elif match := _EXTENSIONS_RE.match(line):
                extensions = [ext for ext in match.group(1).split("|") if ext]

        if error_document is None or base_path is None or extensions is None:
            return None

        return cls(
            marker=marker,
            error_document=error_document,
            base_path=base_path,
            extensions=extensions,
        )

    def equivalent_to(self, other: "RuleBlock") -> bool:
        return (
            self.marker == other.marker
            and self.error_document == other.error_document
            and self.base_path == other.base_path
            and {e.lower() for e in self.extensions} == {e.lower() for e in other.extensions}
        )


def build_rule_block(config: Static404Config) -> RuleBlock:
    return RuleBlock(
        marker=config.marker,
        error_document=config.cache_file_url,
        base_path=config.base_path,
        extensions=list(config.file_extensions),
    )


def find_block(lines: list[str], marker: str) -> Optional[tuple[int, Optional[int]]]:
    """
    Locate a marker-delimited block.

    Markers must match exactly, so site 1 never matches site 12.

    Returns:
        (begin index, end index) of the marker lines, end is None when the
        block is not terminated, or None when there is no such block
    """
    begin_line = begin_marker(marker)
    end_line = end_marker(marker)

    begin = None
    for index, line in enumerate(lines):
        stripped = line.strip()
        if begin is None:
            if stripped == begin_line:
                begin = index
        elif stripped == end_line:
            return begin, index

    if begin is None:
        return None
    return begin, None


def extract_from_markers(text: str, marker: str) -> list[str]:
    """Lines between the BEGIN and END markers of ``marker``, empty if absent."""
    lines = text.splitlines()
    span = find_block(lines, marker)
    if span is None:
        return []
    begin, end = span
    return lines[begin + 1:end]


class RuleInstaller:
    """
    Installs a site's rule block into a rewrite file shared by several sites.

    Intent:
    Several sites can share a single ``.htaccess``. Each site owns exactly
    one block, delimited by its own markers, and never touches anything
    outside it. A new block goes on top of the file since Apache evaluates
    the first matching rules, and it must short-circuit before the
    application's catch-all front-controller rules.

    Key design decisions:
    - Nothing is installed until a cache file exists; rules pointing at a
      missing file would turn every missing asset into a server error page
    - Installation is idempotent: an equivalent block means nothing to do
    - An existing block that differs from the current configuration is
      reported as stale and left alone unless a refresh is requested
    - The read-modify-write is serialized by a lock file next to the rules
      file and the new content replaces the old by atomic rename
    """

    def __init__(
        self,
        config: Static404Config,
        cache: ICacheWriter,
        metrics: Optional[RecacheMetrics] = None,
        lock_timeout: float = 10.0,
    ):
        self.config = config
        self.cache = cache
        self.metrics = metrics or RecacheMetrics()
        self.lock_timeout = lock_timeout

    @property
    def rules_file(self) -> Path:
        return self.config.rules_file

    @property
    def lock_path(self) -> Path:
        return self.rules_file.with_name(self.rules_file.name + ".lock")

    async def ensure_rules_installed(self, refresh: bool = False) -> RuleInstallStatus:
        """
        Install this site's rules unless an equivalent block is present.

        Args:
            refresh: Replace an existing block that no longer matches the
                     configuration instead of reporting it as stale

        Returns:
            RuleInstallStatus describing what happened. I/O failures are
            logged and reported as FAILED, never raised.
        """
        if not await self.cache.exists():
            logger.debug("No cached not-found page at %s, skipping rules", self.cache.path)
            return RuleInstallStatus.NOT_CACHED

        block = build_rule_block(self.config)
        if not block.extensions:
            logger.warning(
                "Extension list is empty, the rule for %s will not match any request",
                block.marker,
            )

        try:
            status = await asyncio.to_thread(self._install_locked, block, refresh)
        except RuleInstallError as e:
            self.metrics.rule_install_failures += 1
            self.metrics.record_error(type(e).__name__)
            logger.warning("Rule installation for %s failed: %s", block.marker, e)
            return RuleInstallStatus.FAILED

        if status in (RuleInstallStatus.INSTALLED, RuleInstallStatus.REFRESHED):
            self.metrics.rule_installs += 1
            logger.info("Rules for %s %s in %s", block.marker, status.value, self.rules_file)
        elif status == RuleInstallStatus.STALE:
            logger.warning(
                "Rules for %s in %s do not match the current configuration",
                block.marker,
                self.rules_file,
            )
        return status

    def _install_locked(self, block: RuleBlock, refresh: bool) -> RuleInstallStatus:
        try:
            with FileLock(str(self.lock_path), timeout=self.lock_timeout):
                return self._install(block, refresh)
        except Timeout as e:
            raise RuleInstallError(f"Timed out waiting for lock {self.lock_path}") from e
        except OSError as e:
            raise RuleInstallError(f"Unable to lock {self.lock_path}: {e}") from e

    def _install(self, block: RuleBlock, refresh: bool) -> RuleInstallStatus:
        text = self._read()
        lines = text.splitlines()
        span = find_block(lines, block.marker)

        if span is None:
            self._write(block.render() + "\n" + text)
            return RuleInstallStatus.INSTALLED

        begin, end = span
        if end is None:
            # Without an END line the block boundary is unknown
            raise RuleInstallError(f"Block {block.marker} has no END marker")

        installed = RuleBlock.parse(block.marker, lines[begin + 1:end])
        if installed is not None and installed.equivalent_to(block):
            return RuleInstallStatus.ALREADY_INSTALLED

        if not refresh:
            return RuleInstallStatus.STALE

        new_lines = lines[:begin] + block.render().splitlines() + lines[end + 1:]
        new_text = "\n".join(new_lines)
        if text.endswith("\n"):
            new_text += "\n"
        self._write(new_text)
        return RuleInstallStatus.REFRESHED

    def _read(self) -> str:
        try:
            return self.rules_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""
        except (OSError, UnicodeDecodeError) as e:
            raise RuleInstallError(f"Unable to read {self.rules_file}: {e}") from e

    def _write(self, text: str) -> None:
        temp_path: Optional[Path] = None
        try:
            self.rules_file.parent.mkdir(parents=True, exist_ok=True)
            with NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.rules_file.parent,
                prefix=f".{self.rules_file.name}.",
                delete=False,
            ) as temp_file:
                temp_path = Path(temp_file.name)
                temp_file.write(text)
                temp_file.flush()
                os.fsync(temp_file.fileno())

            mode = 0o644
            if self.rules_file.exists():
                mode = self.rules_file.stat().st_mode & 0o777
            os.chmod(temp_path, mode)
            temp_path.replace(self.rules_file)
        except OSError as e:
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)
            raise RuleInstallError(f"Unable to write {self.rules_file}: {e}") from e

    async def read_installed_block(self) -> Optional[RuleBlock]:
        """Parse this site's currently installed block, if any."""
        text = await asyncio.to_thread(self._read)
        lines = extract_from_markers(text, self.config.marker)
        if not lines:
            return None
        return RuleBlock.parse(self.config.marker, lines)
