"""
Metrics and monitoring for the static 404 cache
"""
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass
class RecacheMetrics:
    """
    Counters for the recache pipeline and the live handler.

    Intent:
    Every failure in the pipeline is swallowed so it can never break normal
    not-found rendering. These counters are how an operator finds out that
    recaches keep failing, or that events are being coalesced as expected.
    """
    # Scheduler
    events_received: int = 0
    events_ignored: int = 0
    events_coalesced: int = 0
    jobs_scheduled: int = 0

    # Pipeline
    recache_attempts: int = 0
    transport_errors: int = 0
    validation_failures: int = 0
    cache_writes: int = 0
    write_failures: int = 0
    total_recache_time: float = 0.0

    # Rules
    rule_installs: int = 0
    rule_install_failures: int = 0

    # Live handler
    cached_responses_served: int = 0
    probe_passthroughs: int = 0

    errors: dict[str, int] = field(default_factory=dict)

    started_at: datetime = field(default_factory=datetime.now)
    last_reset_at: datetime = field(default_factory=datetime.now)
    last_recache_at: Optional[datetime] = None

    @property
    def recache_success_rate(self) -> float:
        if self.recache_attempts == 0:
            return 0.0
        return self.cache_writes / self.recache_attempts

    def record_recache(self, duration: float, written: bool) -> None:
        self.recache_attempts += 1
        self.total_recache_time += duration
        if written:
            self.cache_writes += 1
            self.last_recache_at = datetime.now()

    def record_error(self, error_type: str) -> None:
        """
        Record an error occurrence.

        Args:
            error_type: Type of error that occurred (typically exception class name)
        """
        self.errors[error_type] = self.errors.get(error_type, 0) + 1

    def to_dict(self) -> dict:
        return {
            "events_received": self.events_received,
            "events_ignored": self.events_ignored,
            "events_coalesced": self.events_coalesced,
            "jobs_scheduled": self.jobs_scheduled,
            "recache_attempts": self.recache_attempts,
            "transport_errors": self.transport_errors,
            "validation_failures": self.validation_failures,
            "cache_writes": self.cache_writes,
            "write_failures": self.write_failures,
            "recache_success_rate": self.recache_success_rate,
            "total_recache_time_ms": self.total_recache_time * 1000,
            "rule_installs": self.rule_installs,
            "rule_install_failures": self.rule_install_failures,
            "cached_responses_served": self.cached_responses_served,
            "probe_passthroughs": self.probe_passthroughs,
            "errors": dict(self.errors),
            "last_recache_at": self.last_recache_at.isoformat() if self.last_recache_at else None,
            "uptime_seconds": (datetime.now() - self.started_at).total_seconds(),
        }

    def to_prometheus(self) -> str:
        """
        Export metrics in Prometheus format.

        Returns:
            String in Prometheus exposition format
        """
        counters = [
            ("static404_events_total", "Content-change events received", self.events_received),
            ("static404_events_coalesced_total", "Events absorbed by a pending job", self.events_coalesced),
            ("static404_jobs_scheduled_total", "Recache jobs scheduled", self.jobs_scheduled),
            ("static404_recache_attempts_total", "Recache attempts", self.recache_attempts),
            ("static404_cache_writes_total", "Successful cache file writes", self.cache_writes),
            ("static404_served_total", "Not-found responses served from cache", self.cached_responses_served),
        ]

        lines: list[str] = []
        for name, help_text, value in counters:
            if lines:
                lines.append("")
            lines.extend([
                f"# HELP {name} {help_text}",
                f"# TYPE {name} counter",
                f"{name} {value}",
            ])

        for error_type, count in self.errors.items():
            lines.extend([
                "",
                f"# HELP static404_errors_total Total errors of type {error_type}",
                "# TYPE static404_errors_total counter",
                f'static404_errors_total{{type="{error_type}"}} {count}',
            ])

        return "\n".join(lines)

    def reset(self) -> None:
        self.events_received = 0
        self.events_ignored = 0
        self.events_coalesced = 0
        self.jobs_scheduled = 0
        self.recache_attempts = 0
        self.transport_errors = 0
        self.validation_failures = 0
        self.cache_writes = 0
        self.write_failures = 0
        self.total_recache_time = 0.0
        self.rule_installs = 0
        self.rule_install_failures = 0
        self.cached_responses_served = 0
        self.probe_passthroughs = 0
        self.errors.clear()
        self.last_reset_at = datetime.now()


class RecacheTimer:
    """
    Context manager timing one recache attempt.

    Records the attempt on exit, counting it as written only when
    ``mark_written`` was called. Exceptions are recorded by type and
    re-raised.
    """
    def __init__(self, metrics: RecacheMetrics):
        self.metrics = metrics
        self.start_time: Optional[float] = None
        self.written: bool = False

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            self.metrics.record_recache(time.time() - self.start_time, self.written)

        if exc_type is not None:
            self.metrics.record_error(exc_type.__name__)

        return False

    def mark_written(self) -> None:
        self.written = True
