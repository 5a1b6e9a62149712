# cli.py
import json
import sys
from dataclasses import dataclass
from typing import Optional

import click
from botocore.exceptions import BotoCoreError, ClientError

from webapp_deploy.aws.aws_clients import AWSClientManager
from webapp_deploy.aws.host_resolver import Ec2HostResolver, StaticHostResolver
from webapp_deploy.config.settings import Settings, load_settings
from webapp_deploy.errors import DeploymentError
from webapp_deploy.locking import HostLock
from webapp_deploy.monitoring.health import HealthChecker
from webapp_deploy.monitoring.provider import CloudWatchMonitoringProvider, default_alarms, default_dashboard
from webapp_deploy.monitoring.status import StatusReporter
from webapp_deploy.orchestration.deploy_controller import DeploymentController
from webapp_deploy.orchestration.rollback_controller import RollbackController
from webapp_deploy.remote.executor import RemoteExecutor, SSHRemoteExecutor
from webapp_deploy.remote.host_ops import HostOperations
from webapp_deploy.remote.transfer import ArtifactTransfer, SCPArtifactTransfer
from webapp_deploy.state.backup_store import BackupStore, select_snapshot
from webapp_deploy.utils.logging import configure_logging


@dataclass
class Components:
    """Everything a command needs, built once from one Settings instance."""
    settings: Settings
    clients: AWSClientManager
    resolver: object
    executor: RemoteExecutor
    transfer: ArtifactTransfer
    host_ops: HostOperations
    store: BackupStore


def build_components(settings: Settings, host_address: Optional[str] = None) -> Components:
    clients = AWSClientManager(settings)
    if host_address:
        resolver = StaticHostResolver(settings, host_address)
    else:
        resolver = Ec2HostResolver(settings, clients)
    executor = SSHRemoteExecutor(settings)
    host_ops = HostOperations(executor)
    return Components(
        settings=settings,
        clients=clients,
        resolver=resolver,
        executor=executor,
        transfer=SCPArtifactTransfer(executor),
        host_ops=host_ops,
        store=BackupStore.from_settings(settings, host_ops),
    )


def _fail(message: str) -> None:
    click.echo(click.style(f"[ERROR] {message}", fg="red"), err=True)
    sys.exit(1)


def _host_lock(settings: Settings) -> HostLock:
    return HostLock(settings.instance_tag_name, settings.lock_dir, timeout_seconds=settings.lock_timeout)


def _print_snapshots(snapshots) -> None:
    click.echo("Available backups (newest first):")
    click.echo("")
    for index, snapshot in enumerate(snapshots):
        kind = " pre-rollback" if snapshot.is_pre_rollback else ""
        click.echo(f"  [{index}] {snapshot.snapshot_id} ({snapshot.created_at:%Y-%m-%d %H:%M:%S}){kind}")
    click.echo("")


@click.group()
@click.option("--env-file", type=click.Path(dir_okay=False), default=None,
              help="Read settings from this .env file")
@click.option("--host-tag", default=None, help="Name tag of the managed instance")
@click.option("--host", "host_address", default=None,
              help="Connect to this address instead of resolving the tag through EC2")
@click.option("--log-level", default=None, help="Logging level (default from settings)")
@click.pass_context
def cli(ctx, env_file, host_tag, host_address, log_level):
    """Deploy, back up and roll back the web page on the managed EC2 host"""
    overrides = {}
    if host_tag:
        overrides["instance_tag_name"] = host_tag
    if log_level:
        overrides["log_level"] = log_level
    try:
        settings = load_settings(env_file, **overrides)
    except ValueError as e:
        _fail(f"Invalid configuration: {e}")

    configure_logging(settings.log_level)
    ctx.obj = build_components(settings, host_address)
    ctx.call_on_close(ctx.obj.executor.close)


@cli.command("show-config")
@click.pass_obj
def show_config(components: Components):
    """Show current configuration"""
    click.echo("Current Configuration:")
    for key, value in components.settings.summary().items():
        click.echo(f"  {key}: {value}")


@cli.command()
@click.argument("artifact_path", type=click.Path(dir_okay=False))
@click.option("--expect-content", default=None, help="Text the served page must contain")
@click.pass_obj
def deploy(components: Components, artifact_path, expect_content):
    """Back up the live page and deploy ARTIFACT_PATH"""
    settings = components.settings
    controller = DeploymentController(
        settings, components.resolver, components.executor, components.transfer,
        store=components.store, host_ops=components.host_ops,
    )

    lock = _host_lock(settings)
    try:
        lock.acquire("deploy")
    except DeploymentError as e:
        _fail(str(e))
    try:
        result = controller.deploy(artifact_path, expected_content=expect_content)
    finally:
        lock.release()

    if not result.success:
        _fail(f"{result.error}: {result.reason}")

    click.echo(click.style("=== DEPLOYMENT COMPLETED SUCCESSFULLY ===", fg="green"))
    click.echo(f"  Host: {result.host}")
    if result.snapshot:
        click.echo(f"  Previous version saved as: {result.snapshot.snapshot_id}")
    else:
        click.echo("  No previous version to back up")


@cli.command()
@click.argument("snapshot_id", required=False)
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.option("--expect-content", default=None, help="Text the served page must contain")
@click.pass_obj
def rollback(components: Components, snapshot_id, yes, expect_content):
    """Restore SNAPSHOT_ID (id or list index); prompts when omitted"""
    settings = components.settings
    controller = RollbackController(
        settings, components.resolver, components.executor,
        store=components.store, host_ops=components.host_ops,
    )

    try:
        snapshots = controller.list_backups()
    except DeploymentError as e:
        _fail(str(e))
    if not snapshots:
        _fail("No backups found")

    if snapshot_id is None:
        _print_snapshots(snapshots)
        snapshot_id = click.prompt("Select backup number to restore (or 'q' to quit)", default="q",
                                   show_default=False)
        if snapshot_id.strip().lower() == "q":
            click.echo("Rollback cancelled")
            return

    try:
        selected = select_snapshot(snapshots, snapshot_id)
    except DeploymentError as e:
        _fail(str(e))

    if not yes and not click.confirm(f"You are about to rollback to: {selected.snapshot_id}. Are you sure?"):
        click.echo("Rollback cancelled")
        return

    lock = _host_lock(settings)
    try:
        lock.acquire("rollback")
    except DeploymentError as e:
        _fail(str(e))
    try:
        result = controller.rollback(selected, expected_content=expect_content)
    finally:
        lock.release()

    if not result.success:
        _fail(f"{result.error}: {result.reason}")

    click.echo(click.style("✅ Rollback completed successfully!", fg="green"))
    click.echo(f"  Restored: {selected.snapshot_id}")
    if result.pre_rollback_snapshot:
        click.echo(f"  Replaced version saved as: {result.pre_rollback_snapshot.snapshot_id}")


@cli.command("list-backups")
@click.pass_obj
def list_backups(components: Components):
    """List snapshots on the host, newest first"""
    try:
        host = components.resolver.resolve()
        snapshots = components.store.list_snapshots(host)
    except DeploymentError as e:
        _fail(str(e))

    if not snapshots:
        click.echo(f"No backups in {components.settings.backup_dir}")
        return
    _print_snapshots(snapshots)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print the raw report as JSON")
@click.pass_obj
def status(components: Components, as_json):
    """Show instance, web server and backup status"""
    reporter = StatusReporter(
        components.settings, components.resolver, components.executor,
        host_ops=components.host_ops, store=components.store,
    )
    report = reporter.report()

    if as_json:
        click.echo(json.dumps(report, indent=2, default=str))
    else:
        click.echo(f"Overall: {report['overall_status']}")
        for section in ('instance', 'server', 'artifact', 'backups'):
            if report[section]:
                click.echo(f"{section.title()}:")
                for key, value in report[section].items():
                    click.echo(f"   {key}: {value}")
        for warning in report['warnings']:
            click.echo(click.style(f"[WARNING] {warning}", fg="yellow"))
        for error in report['errors']:
            click.echo(click.style(f"[ERROR] {error}", fg="red"), err=True)

    if report['overall_status'] == 'unhealthy':
        sys.exit(1)


@cli.command("health-check")
@click.option("--publish/--no-publish", default=True, help="Send the HealthCheck metric to CloudWatch")
@click.option("--interval", type=float, default=0, help="Repeat every N seconds (0 runs once)")
@click.option("--count", type=int, default=None, help="Stop after this many runs when repeating")
@click.pass_obj
def health_check(components: Components, publish, interval, count):
    """Run the health checks and emit the 1/0 signal"""
    provider = CloudWatchMonitoringProvider(components.clients) if publish else None
    checker = HealthChecker(components.settings, components.host_ops, provider)
    try:
        host = components.resolver.resolve()
        if interval > 0:
            report = checker.run_periodically(host, interval, iterations=count, publish=publish)
        else:
            report = checker.run(host)
    except DeploymentError as e:
        _fail(str(e))
    except (ClientError, BotoCoreError) as e:
        _fail(f"Could not publish {components.settings.health_metric_name}: {e}")

    for name, passed in report.checks.items():
        mark = click.style("[✓]", fg="green") if passed else click.style("[✗]", fg="red")
        click.echo(f"{mark} {report.details[name]}")

    if publish and interval <= 0:
        try:
            checker.publish(report)
        except (ClientError, BotoCoreError) as e:
            _fail(f"Could not publish {components.settings.health_metric_name}: {e}")
    click.echo(f"HealthCheck={report.signal}")
    if not report.healthy:
        sys.exit(1)


@cli.command("setup-monitoring")
@click.option("--topic-arn", default=None, help="SNS topic for alarm notifications")
@click.pass_obj
def setup_monitoring(components: Components, topic_arn):
    """Create the CPU and status check alarms and the dashboard"""
    settings = components.settings
    try:
        account = components.resolver.verify_credentials()
        instance = components.resolver.describe()
    except DeploymentError as e:
        _fail(str(e))
    if not instance.instance_id:
        _fail("Instance id unknown; setup-monitoring needs EC2 resolution, not --host")
    click.echo(f"Setting up monitoring for {instance.instance_id} (account {account})")

    provider = CloudWatchMonitoringProvider(components.clients)
    try:
        for alarm in default_alarms(settings.app_name, instance.instance_id, topic_arn or settings.alarm_topic_arn):
            provider.put_alarm(alarm)
        provider.put_dashboard(
            settings.dashboard_name,
            default_dashboard(instance.instance_id, settings.aws_region, settings.metric_namespace,
                              settings.health_metric_name),
        )
    except (ClientError, BotoCoreError) as e:
        _fail(f"CloudWatch rejected the monitoring setup: {e}")
    click.echo(click.style("=== MONITORING SETUP COMPLETE ===", fg="green"))
    click.echo(f"  Dashboard: {settings.dashboard_name}")


def main():
    cli()


if __name__ == "__main__":
    main()
