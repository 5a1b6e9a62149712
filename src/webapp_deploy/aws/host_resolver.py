"""
Resolve the managed web host from its Name tag.

Addresses are never cached: every deploy, rollback or status call asks EC2
again, so a stopped-and-started instance with a new public IP is picked up.
"""
import logging
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError, NoCredentialsError, BotoCoreError

from webapp_deploy.aws.aws_clients import AWSClientManager
from webapp_deploy.config.settings import Settings
from webapp_deploy.errors import HostResolutionError, AuthError
from webapp_deploy.models import ManagedHost

logger = logging.getLogger(__name__)


class Ec2HostResolver:
    """Looks up the instance tagged ``Name=<tag>`` through the EC2 API."""

    def __init__(self, settings: Settings, clients: Optional[AWSClientManager] = None):
        self.settings = settings
        self.clients = clients or AWSClientManager(settings)

    def verify_credentials(self) -> str:
        """Return the caller account, failing early when AWS is not configured."""
        try:
            identity = self.clients.sts().get_caller_identity()
        except (NoCredentialsError, ClientError, BotoCoreError) as e:
            raise AuthError(f"AWS credentials not usable: {e}", step="preflight")
        return identity['Account']

    def _describe(self, tag: str, running_only: bool) -> List[Dict[str, Any]]:
        filters = [{'Name': 'tag:Name', 'Values': [tag]}]
        if running_only:
            filters.append({'Name': 'instance-state-name', 'Values': ['running']})

        try:
            response = self.clients.ec2().describe_instances(Filters=filters)
        except NoCredentialsError as e:
            raise AuthError(f"AWS credentials not found: {e}", step="resolve", host=tag)
        except (ClientError, BotoCoreError) as e:
            raise HostResolutionError(f"describe_instances failed: {e}", step="resolve", host=tag)

        instances = []
        for reservation in response.get('Reservations', []):
            instances.extend(reservation.get('Instances', []))
        return instances

    def _to_host(self, tag: str, instance: Dict[str, Any]) -> ManagedHost:
        return ManagedHost(
            tag=tag,
            address=instance.get('PublicIpAddress') or instance.get('PrivateIpAddress') or "",
            user=self.settings.ssh_user,
            key_file=self.settings.ssh_key_file,
            instance_id=instance.get('InstanceId'),
            private_address=instance.get('PrivateIpAddress'),
            state=instance.get('State', {}).get('Name'),
            instance_type=instance.get('InstanceType'),
            launch_time=instance.get('LaunchTime'),
            port=self.settings.ssh_port,
        )

    def resolve(self, tag: Optional[str] = None) -> ManagedHost:
        """Resolve the running instance for ``tag`` to a connectable host."""
        tag = tag or self.settings.instance_tag_name
        instances = self._describe(tag, running_only=True)
        if not instances:
            raise HostResolutionError(
                f"Could not find running instance with tag Name={tag}", step="resolve", host=tag
            )
        if len(instances) > 1:
            logger.warning(f"⚠️  {len(instances)} running instances tagged {tag}, using {instances[0].get('InstanceId')}")

        host = self._to_host(tag, instances[0])
        if not host.address:
            raise HostResolutionError(
                f"Instance {host.instance_id} has no reachable address", step="resolve", host=tag
            )
        logger.info(f"Found instance {host.instance_id} at {host.address}")
        return host

    def describe(self, tag: Optional[str] = None) -> ManagedHost:
        """Return the tagged instance in whatever state it is in, preferring a running one."""
        tag = tag or self.settings.instance_tag_name
        instances = self._describe(tag, running_only=False)
        if not instances:
            raise HostResolutionError(f"No instance found with tag Name={tag}", step="describe", host=tag)
        running = [i for i in instances if i.get('State', {}).get('Name') == 'running']
        return self._to_host(tag, (running or instances)[0])


class StaticHostResolver:
    """Resolves every tag to a fixed address (``--host`` override)."""

    def __init__(self, settings: Settings, address: str):
        self.settings = settings
        self.address = address

    def verify_credentials(self) -> str:
        return "static"

    def resolve(self, tag: Optional[str] = None) -> ManagedHost:
        return ManagedHost(
            tag=tag or self.settings.instance_tag_name,
            address=self.address,
            user=self.settings.ssh_user,
            key_file=self.settings.ssh_key_file,
            state="running",
            port=self.settings.ssh_port,
        )

    describe = resolve
