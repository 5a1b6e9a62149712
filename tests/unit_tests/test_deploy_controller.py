"""
Unit tests for the deployment controller against the in-memory host.
"""

import posixpath

import pytest

from webapp_deploy.aws.host_resolver import StaticHostResolver
from webapp_deploy.errors import HostResolutionError
from webapp_deploy.models import DeploymentState
from webapp_deploy.orchestration import deploy_controller as deploy_controller_module
from webapp_deploy.orchestration.deploy_controller import DeploymentController
from tests.consts import LIVE_PATH, NEW_PAGE, OLD_PAGE
from tests.fixtures.fake_host import FakeTransfer


class UnresolvableHost(StaticHostResolver):
    def resolve(self, tag=None):
        raise HostResolutionError(f"Could not find running instance with tag Name={tag}", step="resolve", host=tag)


@pytest.fixture
def controller(settings, resolver, executor, transfer, store, host_ops):
    return DeploymentController(settings, resolver, executor, transfer, store=store, host_ops=host_ops)


def _write_artifact(tmp_path, name, content):
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")
    return str(path)


class TestDeployScenarios:
    """Deploy, redeploy and failure paths"""

    def test_first_deploy_creates_no_snapshot(self, controller, store, host, fake_host, tmp_path):
        artifact = _write_artifact(tmp_path, "v1.html", "v1")

        result = controller.deploy(artifact)

        assert result.success, result.reason
        assert result.snapshot is None
        assert result.state == DeploymentState.VERIFIED
        assert fake_host.live == "v1"
        assert store.list_snapshots(host) == []

    def test_redeploy_snapshots_previous_version(self, controller, store, host, fake_host, tmp_path):
        controller.deploy(_write_artifact(tmp_path, "v1.html", "v1"))

        result = controller.deploy(_write_artifact(tmp_path, "v2.html", "v2"))

        assert result.success, result.reason
        snapshots = store.list_snapshots(host)
        assert len(snapshots) == 1
        assert snapshots[0] == result.snapshot
        assert fake_host.files[snapshots[0].path] == "v1"
        assert fake_host.live == "v2"

    def test_install_sets_metadata_and_restarts(self, controller, fake_host, artifact):
        result = controller.deploy(artifact)

        assert result.success
        assert fake_host.metadata[LIVE_PATH] == {"owner": "apache:apache", "mode": "644"}
        assert fake_host.restarts == 1
        assert "/tmp/index.html" not in fake_host.files

    def test_missing_local_artifact_makes_no_remote_calls(self, controller, executor, tmp_path):
        result = controller.deploy(str(tmp_path / "nope.html"))

        assert not result.success
        assert result.error == "LocalArtifactMissing"
        assert result.state == DeploymentState.FAILED
        assert executor.call_count == 0

    def test_unreadable_local_artifact_fails_preflight(self, controller, executor, artifact, monkeypatch):
        def denied(path):
            raise PermissionError(13, "Permission denied", path)

        monkeypatch.setattr(deploy_controller_module, "file_sha256", denied)

        result = controller.deploy(artifact)

        assert not result.success
        assert result.error == "LocalArtifactMissing"
        assert "not readable" in result.reason
        assert result.state == DeploymentState.FAILED
        assert executor.call_count == 0

    def test_probe_500_leaves_installed_artifact_live(self, controller, fake_host, artifact):
        fake_host.write(LIVE_PATH, OLD_PAGE)
        fake_host.http_status = 500

        result = controller.deploy(artifact)

        assert not result.success
        assert result.error == "VerificationError"
        assert "Status: 500" in result.reason
        assert fake_host.live == NEW_PAGE
        assert result.snapshot is not None
        assert fake_host.files[result.snapshot.path] == OLD_PAGE

    def test_missing_expected_content_fails_verification(self, controller, fake_host, artifact):
        result = controller.deploy(artifact, expected_content="Maintenance mode")

        assert not result.success
        assert result.error == "VerificationError"
        assert "Maintenance mode" in result.reason

    def test_expected_content_present(self, controller, artifact):
        result = controller.deploy(artifact, expected_content="DevOps Learning Journey")
        assert result.success, result.reason

    def test_unresolvable_host(self, settings, executor, transfer, store, host_ops, artifact):
        controller = DeploymentController(settings, UnresolvableHost(settings, "unused"), executor, transfer,
                                          store=store, host_ops=host_ops)

        result = controller.deploy(artifact)

        assert result.error == "HostResolutionError"
        assert result.host is None
        assert executor.call_count == 0

    def test_unreachable_host(self, controller, fake_host, artifact):
        fake_host.reachable = False

        result = controller.deploy(artifact)

        assert result.error == "HostConnectionError"
        assert "[connect]" in result.reason
        assert "203.0.113.10" in result.reason

    def test_backup_failure_leaves_live_untouched(self, controller, fake_host, artifact):
        fake_host.write(LIVE_PATH, OLD_PAGE)
        fake_host.fail_on("sudo mkdir", "Permission denied")

        result = controller.deploy(artifact)

        assert result.error == "StoreError"
        assert fake_host.live == OLD_PAGE
        assert "/tmp/index.html" not in fake_host.files

    def test_corrupted_upload_is_rejected(self, settings, resolver, executor, store, host_ops, fake_host, artifact):
        fake_host.write(LIVE_PATH, OLD_PAGE)
        controller = DeploymentController(settings, resolver, executor, FakeTransfer(executor, truncate=True),
                                          store=store, host_ops=host_ops)

        result = controller.deploy(artifact)

        assert result.error == "TransferError"
        assert "Checksum mismatch" in result.reason
        assert fake_host.live == OLD_PAGE

    def test_failed_move_keeps_previous_artifact(self, controller, fake_host, artifact):
        fake_host.write(LIVE_PATH, OLD_PAGE)
        fake_host.fail_on("sudo mv", "Read-only file system")

        result = controller.deploy(artifact)

        assert result.error == "InstallError"
        assert fake_host.live == OLD_PAGE

    def test_final_rename_stays_in_the_live_directory(self, controller, settings, executor, fake_host, artifact):
        fake_host.write(LIVE_PATH, OLD_PAGE)

        result = controller.deploy(artifact)

        assert result.success, result.reason
        moves = [c for c in executor.mutating_commands() if c.startswith("sudo mv")]
        assert moves == [
            f"sudo mv -f /tmp/index.html {settings.install_staging_path}",
            f"sudo mv -f {settings.install_staging_path} {LIVE_PATH}",
        ]
        assert posixpath.dirname(settings.install_staging_path) == posixpath.dirname(LIVE_PATH)
        assert settings.install_staging_path not in fake_host.files

    def test_service_not_starting(self, controller, fake_host, artifact):
        fake_host.service_starts = False

        result = controller.deploy(artifact)

        assert result.error == "InstallError"
        assert result.state == DeploymentState.FAILED
        assert fake_host.live == NEW_PAGE

    def test_history_records_each_state(self, controller, artifact):
        result = controller.deploy(artifact)

        states = [entry.split(" ", 1)[1] for entry in result.history]
        assert states == ["idle", "preflight_checked", "connected", "backed_up", "uploaded", "installed",
                          "verified"]
        assert result.to_dict()["state"] == "verified"

    def test_failure_is_not_retried(self, controller, fake_host, executor, artifact):
        fake_host.write(LIVE_PATH, OLD_PAGE)
        fake_host.fail_on("sudo systemctl restart", "Job for httpd.service failed.")

        controller.deploy(artifact)

        restarts = [c for c in executor.commands if c.startswith("sudo systemctl restart")]
        assert len(restarts) == 1


class TestDeployProperties:
    """Backup-before-replace across many deploys"""

    def test_every_deploy_preserves_the_outgoing_version(self, controller, store, host, fake_host, tmp_path):
        versions = [f"v{i}" for i in range(1, 6)]
        previous = None
        for version in versions:
            result = controller.deploy(_write_artifact(tmp_path, f"{version}.html", version))
            assert result.success, result.reason
            if previous is None:
                assert result.snapshot is None
            else:
                assert fake_host.files[result.snapshot.path] == previous
            previous = version

        snapshots = store.list_snapshots(host)
        assert [fake_host.files[s.path] for s in snapshots] == ["v4", "v3", "v2", "v1"]
        assert snapshots == sorted(snapshots, reverse=True)
