# src/webapp_deploy/config/settings.py
import logging
import posixpath
from typing import Optional, Dict, Any
from pydantic import Field, validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Settings for one managed web host.

    Configuration precedence:
    1. Environment variables (highest priority)
    2. .env file (if exists)
    3. Default values in this class (lowest priority)

    Usage:
        from webapp_deploy.config.settings import load_settings
        settings = load_settings()
        controller = DeploymentController(settings, ...)

    Build one instance at the entry point and pass it down; there is
    no module-level instance.
    """

    # Application Settings
    app_name: str = Field(
        default="devops-webapp",
        description="Application name used in alarm and dashboard names"
    )

    # AWS Core Settings
    aws_region: str = Field(
        default="ap-southeast-1",
        alias="AWS_DEFAULT_REGION"
    )

    aws_profile: Optional[str] = Field(
        default=None,
        alias="AWS_PROFILE",
        description="Named profile (SSO) used to build the boto3 session"
    )

    aws_endpoint_url: Optional[str] = Field(
        default=None,
        alias="AWS_ENDPOINT_URL",
        description="Endpoint override for local AWS emulators"
    )

    # Managed host
    instance_tag_name: str = Field(
        default="my-webapp-server",
        description="Value of the Name tag identifying the managed instance"
    )

    ssh_key_file: str = Field(
        default="my-devops-key.pem",
        description="Private key used for SSH and SCP"
    )

    ssh_user: str = Field(default="ec2-user")

    ssh_port: int = Field(default=22)

    connect_timeout: float = Field(
        default=10.0,
        description="Seconds allowed to open the SSH channel"
    )

    command_timeout: float = Field(
        default=120.0,
        description="Seconds allowed for a single remote command"
    )

    # Host-side layout
    live_path: str = Field(
        default="/var/www/html/index.html",
        description="Path of the live artifact on the host"
    )

    backup_dir: str = Field(
        default="/var/www/html/backups",
        description="Directory holding snapshots on the host"
    )

    staging_dir: str = Field(
        default="/tmp",
        description="Directory uploads land in before they move beside the live artifact"
    )

    file_owner: str = Field(default="apache:apache")

    file_mode: str = Field(default="644")

    service_name: str = Field(
        default="httpd",
        description="systemd unit serving the artifact"
    )

    # Liveness probe
    probe_url: str = Field(default="http://localhost")

    probe_expected_status: int = Field(default=200)

    probe_expected_content: Optional[str] = Field(
        default=None,
        description="Substring the served page must contain"
    )

    # Operator serialisation
    lock_dir: str = Field(
        default="~/.webapp-deploy/locks",
        description="Directory holding per-host advisory lock files"
    )

    lock_timeout: float = Field(
        default=0.0,
        description="Seconds to wait for a held host lock (0 fails immediately)"
    )

    # Monitoring
    metric_namespace: str = Field(default="DevOps/WebApp")

    health_metric_name: str = Field(default="HealthCheck")

    alarm_topic_arn: Optional[str] = Field(
        default=None,
        alias="ALARM_TOPIC_ARN",
        description="SNS topic notified by alarms"
    )

    dashboard_name: str = Field(default="DevOps-WebApp-Monitoring")

    disk_threshold_percent: int = Field(default=90)

    memory_threshold_percent: int = Field(default=90)

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    @property
    def artifact_name(self) -> str:
        """File name of the live artifact, used as the snapshot label."""
        return self.live_path.rstrip("/").rsplit("/", 1)[-1]

    @property
    def live_dir(self) -> str:
        return posixpath.dirname(self.live_path.rstrip("/")) or "/"

    @property
    def staging_path(self) -> str:
        """Where the upload lands."""
        return f"{self.staging_dir.rstrip('/')}/{self.artifact_name}"

    @property
    def install_staging_path(self) -> str:
        """Hidden file beside the live artifact; the final rename happens within one directory."""
        return f"{self.live_dir.rstrip('/')}/.{self.artifact_name}.staging"

    @validator('file_mode', pre=True)
    def normalize_file_mode(cls, v):
        """Accept 644, '0644' or '0o644' and store the three-digit form."""
        if isinstance(v, int):
            v = str(v)
        v = str(v).strip().lower().replace("0o", "")
        if len(v) == 4 and v.startswith("0"):
            v = v[1:]
        if len(v) != 3 or any(c not in "01234567" for c in v):
            raise ValueError(f"Invalid file_mode: {v}. Must be an octal permission such as 644")
        return v

    @validator('log_level')
    def validate_log_level(cls, v):
        """Validate log level is one the logging module knows."""
        level = str(v).upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Invalid log_level: {v}")
        return level

    def summary(self) -> Dict[str, Any]:
        """Non-secret settings for display."""
        return {
            "Instance Tag": self.instance_tag_name,
            "AWS Region": self.aws_region,
            "AWS Endpoint": self.aws_endpoint_url,
            "SSH User": self.ssh_user,
            "SSH Key File": self.ssh_key_file,
            "Live Path": self.live_path,
            "Backup Dir": self.backup_dir,
            "Service": self.service_name,
            "Probe URL": self.probe_url,
            "Metric Namespace": self.metric_namespace,
            "Log Level": self.log_level,
        }

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="WEBAPP_",
        extra="ignore",
        populate_by_name=True,
    )


def load_settings(env_file: Optional[str] = None, **overrides: Any) -> Settings:
    """
    Build a fresh Settings instance.

    Args:
        env_file: Path to a .env file to read instead of the default '.env'
        **overrides: Field values that take priority over the environment

    Returns:
        Settings instance
    """
    if env_file:
        return Settings(_env_file=env_file, **overrides)
    return Settings(**overrides)
