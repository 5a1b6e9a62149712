"""
Read-only status report for the managed host.

Combines the EC2 instance record, the web server state, the live artifact
and the newest snapshot into one dict for the ``status`` command.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

from webapp_deploy.config.settings import Settings
from webapp_deploy.errors import DeploymentError
from webapp_deploy.remote.executor import RemoteExecutor
from webapp_deploy.remote.host_ops import HostOperations
from webapp_deploy.state.backup_store import BackupStore

logger = logging.getLogger(__name__)


class StatusReporter:
    """Gathers instance, service, artifact and backup status."""

    def __init__(self, settings: Settings, resolver, executor: RemoteExecutor,
                 host_ops: Optional[HostOperations] = None, store: Optional[BackupStore] = None):
        self.settings = settings
        self.resolver = resolver
        self.executor = executor
        self.host_ops = host_ops or HostOperations(executor)
        self.store = store or BackupStore.from_settings(settings, self.host_ops)

    def report(self, tag: Optional[str] = None) -> Dict[str, Any]:
        """
        Build the status report.

        Returns:
            Dict with 'overall_status' (healthy, degraded or unhealthy),
            'instance', 'server', 'artifact', 'backups', 'warnings', 'errors'
        """
        status_report = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'overall_status': 'healthy',
            'instance': {},
            'server': {},
            'artifact': {},
            'backups': {},
            'warnings': [],
            'errors': []
        }

        try:
            instance = self.resolver.describe(tag)
        except DeploymentError as e:
            status_report['overall_status'] = 'unhealthy'
            status_report['errors'].append(str(e))
            return status_report

        status_report['instance'] = {
            'instance_id': instance.instance_id,
            'state': instance.state,
            'instance_type': instance.instance_type,
            'public_ip': instance.address,
            'private_ip': instance.private_address,
            'launch_time': instance.launch_time.isoformat() if instance.launch_time else None,
            'ssh_command': instance.ssh_command,
        }

        if instance.state != 'running':
            status_report['overall_status'] = 'unhealthy'
            status_report['errors'].append(f"Instance is not running (state: {instance.state})")
            return status_report

        try:
            self.executor.check_connection(instance)
            self._check_server(instance, status_report)
        except DeploymentError as e:
            status_report['errors'].append(f"Server check failed: {e}")

        if instance.address:
            self._check_external(instance.address, status_report)

        if status_report['errors']:
            status_report['overall_status'] = 'unhealthy'
        elif status_report['warnings']:
            status_report['overall_status'] = 'degraded'
        return status_report

    def _check_external(self, address: str, status_report: Dict[str, Any]) -> None:
        """Reach the site from this machine; failures only count as warnings."""
        url = f"http://{address}"
        try:
            response = requests.get(url, timeout=10)
            status_report['server']['external_status'] = response.status_code
            if response.status_code != self.settings.probe_expected_status:
                status_report['warnings'].append(f"External access returned HTTP {response.status_code}")
        except requests.RequestException as e:
            logger.debug(f"External check of {url} failed: {e}")
            status_report['server']['external_status'] = None
            status_report['warnings'].append(f"External access failed ({url})")

    def _check_server(self, host, status_report: Dict[str, Any]) -> None:
        settings = self.settings
        active = self.host_ops.service_active(host, settings.service_name)
        probe = self.host_ops.probe(host, settings.probe_url)
        status_report['server'] = {
            'service': settings.service_name,
            'active': active,
            'enabled': self.host_ops.service_enabled(host, settings.service_name),
            'http_status': probe.status_code,
        }
        if not active:
            status_report['errors'].append(f"{settings.service_name} is not running")
        if probe.status_code != settings.probe_expected_status:
            status_report['errors'].append(f"HTTP response {probe.status_code:03d} (Error)")

        info = self.host_ops.file_info(host, settings.live_path)
        if info is None:
            status_report['artifact'] = {'path': settings.live_path, 'present': False}
            status_report['errors'].append(f"Web content missing: {settings.live_path}")
        else:
            status_report['artifact'] = {
                'path': settings.live_path,
                'present': True,
                'size_bytes': info.size,
                'last_modified': datetime.fromtimestamp(info.modified_epoch, timezone.utc).isoformat(),
                'sha256': self.host_ops.checksum(host, settings.live_path),
            }

        snapshots = self.store.list_snapshots(host)
        status_report['backups'] = {
            'count': len(snapshots),
            'newest': snapshots[0].snapshot_id if snapshots else None,
        }
        if not snapshots:
            status_report['warnings'].append("No backups on host; rollback is not possible yet")

