"""AWS client management."""
import boto3
import logging
from typing import Any, Dict, Optional

from webapp_deploy.config.settings import Settings

logger = logging.getLogger(__name__)


class AWSClientManager:
    """Creates and caches boto3 clients for one Settings instance.

    One manager is built per entry point and passed to whatever needs AWS
    access, so two managers with different settings never share clients.
    """

    def __init__(self, settings: Settings, session: Optional[boto3.session.Session] = None):
        self.settings = settings
        self.region = settings.aws_region
        self.endpoint_url = settings.aws_endpoint_url
        self._session = session
        self._clients: Dict[str, Any] = {}

        logger.debug(f"Initializing AWSClientManager (region={self.region}, endpoint={self.endpoint_url})")

    @property
    def session(self) -> boto3.session.Session:
        if self._session is None:
            if self.settings.aws_profile:
                # Named profile (SSO)
                self._session = boto3.Session(profile_name=self.settings.aws_profile)
                logger.debug(f"Using AWS profile: {self.settings.aws_profile}")
            else:
                self._session = boto3.Session()
        return self._session

    def get_client(self, service_name: str) -> Any:
        """Get or create an AWS service client."""
        if service_name in self._clients:
            return self._clients[service_name]

        client_kwargs = {
            'region_name': self.region
        }
        if self.endpoint_url:
            client_kwargs['endpoint_url'] = self.endpoint_url

        try:
            client = self.session.client(service_name, **client_kwargs)
        except Exception as e:
            logger.error(f"Error creating {service_name} client: {str(e)}")
            raise
        self._clients[service_name] = client
        logger.debug(f"Created {service_name} client")
        return client

    def ec2(self):
        """Get the EC2 client."""
        return self.get_client('ec2')

    def cloudwatch(self):
        """Get the CloudWatch client."""
        return self.get_client('cloudwatch')

    def sts(self):
        """Get the STS client."""
        return self.get_client('sts')
