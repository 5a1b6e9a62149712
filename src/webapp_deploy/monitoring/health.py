"""
Binary health signal for the web host.

Runs the same four checks as the on-host cron script (service active, HTTP
200 from loopback, disk and memory below threshold) and reports 1 when all
pass, 0 otherwise. `run_periodically` emits it on a fixed interval; a single run
suits an external scheduler such as cron.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from webapp_deploy.config.settings import Settings
from webapp_deploy.models import ManagedHost
from webapp_deploy.remote.host_ops import HostOperations

logger = logging.getLogger(__name__)


@dataclass
class HealthReport:
    host: str
    checks: Dict[str, bool] = field(default_factory=dict)
    details: Dict[str, str] = field(default_factory=dict)

    @property
    def healthy(self) -> bool:
        return bool(self.checks) and all(self.checks.values())

    @property
    def signal(self) -> int:
        return 1 if self.healthy else 0

    @property
    def error_count(self) -> int:
        return sum(1 for passed in self.checks.values() if not passed)


class HealthChecker:
    """Computes and optionally publishes the HealthCheck metric."""

    def __init__(self, settings: Settings, host_ops: HostOperations, provider=None):
        self.settings = settings
        self.host_ops = host_ops
        self.provider = provider

    def run(self, host: ManagedHost) -> HealthReport:
        report = HealthReport(host=host.label)

        active = self.host_ops.service_active(host, self.settings.service_name)
        report.checks["service"] = active
        report.details["service"] = f"{self.settings.service_name} {'running' if active else 'not running'}"

        probe = self.host_ops.probe(host, self.settings.probe_url)
        report.checks["http"] = probe.status_code == self.settings.probe_expected_status
        report.details["http"] = f"HTTP response {probe.status_code:03d}"

        stats = self.host_ops.system_stats(host)
        self._threshold_check(report, "disk", stats.disk_used_percent, self.settings.disk_threshold_percent)
        self._threshold_check(report, "memory", stats.memory_used_percent, self.settings.memory_threshold_percent)

        if report.healthy:
            logger.info("HEALTH_CHECK: All checks passed")
        else:
            logger.warning(f"HEALTH_CHECK: {report.error_count} errors found")
        return report

    @staticmethod
    def _threshold_check(report: HealthReport, name: str, used: Optional[int], threshold: int) -> None:
        # An unreadable value fails the check
        if used is None:
            report.checks[name] = False
            report.details[name] = f"could not read {name} usage"
            return
        report.checks[name] = used < threshold
        report.details[name] = f"{name} usage {used}%"

    def publish(self, report: HealthReport) -> None:
        """Send the signal as one data point; requires a provider."""
        if self.provider is None:
            raise ValueError("No monitoring provider configured")
        self.provider.put_metric(
            self.settings.metric_namespace,
            self.settings.health_metric_name,
            report.signal,
            unit="Count",
        )
        logger.info(f"Published {self.settings.health_metric_name}={report.signal}")

    def run_periodically(self, host: ManagedHost, interval_seconds: float, iterations: Optional[int] = None,
                         publish: bool = True, sleep: Callable[[float], None] = time.sleep) -> HealthReport:
        """Run (and optionally publish) every ``interval_seconds``.

        Runs forever when ``iterations`` is None. Returns the last report.
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        count = 0
        while True:
            report = self.run(host)
            if publish:
                self.publish(report)
            count += 1
            if iterations is not None and count >= iterations:
                return report
            sleep(interval_seconds)
