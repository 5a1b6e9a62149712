import os
from datetime import datetime

import boto3
import pytest
from moto import mock_aws

from webapp_deploy.aws.host_resolver import StaticHostResolver
from webapp_deploy.config.settings import load_settings
from webapp_deploy.remote.host_ops import HostOperations
from webapp_deploy.state.backup_store import BackupStore
from tests.consts import NEW_PAGE, TEST_ADDRESS, TEST_REGION, TEST_TAG
from tests.fixtures.fake_host import FakeHost, FakeRemoteExecutor, FakeTransfer, FixedClock


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake credentials so nothing can reach a real account."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", TEST_REGION)
    for name in list(os.environ):
        if name.startswith("WEBAPP_") or name in ("AWS_PROFILE", "AWS_ENDPOINT_URL", "ALARM_TOPIC_ARN"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def mocked_aws():
    with mock_aws():
        yield boto3.session.Session(region_name=TEST_REGION)


@pytest.fixture
def settings(tmp_path):
    return load_settings(
        env_file=str(tmp_path / "missing.env"),
        lock_dir=str(tmp_path / "locks"),
        ssh_key_file=str(tmp_path / "id_test.pem"),
    )


@pytest.fixture
def fake_host():
    return FakeHost()


@pytest.fixture
def executor(fake_host):
    return FakeRemoteExecutor(fake_host)


@pytest.fixture
def host_ops(executor):
    return HostOperations(executor)


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 1, 15, 10, 30, 0))


@pytest.fixture
def store(settings, host_ops, clock):
    return BackupStore.from_settings(settings, host_ops, clock=clock)


@pytest.fixture
def transfer(executor):
    return FakeTransfer(executor)


@pytest.fixture
def resolver(settings):
    return StaticHostResolver(settings, TEST_ADDRESS)


@pytest.fixture
def host(resolver):
    return resolver.resolve(TEST_TAG)


@pytest.fixture
def artifact(tmp_path):
    path = tmp_path / "index.html"
    path.write_bytes(NEW_PAGE.encode("utf-8"))
    return str(path)
