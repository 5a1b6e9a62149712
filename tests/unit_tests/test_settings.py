import pytest
from pydantic import ValidationError

from webapp_deploy.config.settings import Settings, load_settings


def test_defaults(tmp_path):
    settings = load_settings(env_file=str(tmp_path / "missing.env"))

    assert settings.instance_tag_name == "my-webapp-server"
    assert settings.ssh_user == "ec2-user"
    assert settings.live_path == "/var/www/html/index.html"
    assert settings.backup_dir == "/var/www/html/backups"
    assert settings.artifact_name == "index.html"
    assert settings.staging_path == "/tmp/index.html"
    assert settings.live_dir == "/var/www/html"
    assert settings.install_staging_path == "/var/www/html/.index.html.staging"
    assert settings.aws_region == "ap-southeast-1"


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("WEBAPP_INSTANCE_TAG_NAME", "staging-webapp")
    monkeypatch.setenv("WEBAPP_SERVICE_NAME", "nginx")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")

    settings = load_settings(env_file=str(tmp_path / "missing.env"))

    assert settings.instance_tag_name == "staging-webapp"
    assert settings.service_name == "nginx"
    assert settings.aws_region == "us-east-1"


def test_env_file_and_explicit_override(monkeypatch, tmp_path):
    env_file = tmp_path / "deploy.env"
    env_file.write_text("WEBAPP_SSH_USER=ubuntu\nWEBAPP_LIVE_PATH=/srv/site/home.html\n")

    settings = load_settings(env_file=str(env_file), ssh_user="admin")

    assert settings.ssh_user == "admin"
    assert settings.artifact_name == "home.html"


def test_instances_are_independent(tmp_path):
    a = load_settings(env_file=str(tmp_path / "missing.env"), instance_tag_name="web-a")
    b = load_settings(env_file=str(tmp_path / "missing.env"), instance_tag_name="web-b")
    assert (a.instance_tag_name, b.instance_tag_name) == ("web-a", "web-b")


@pytest.mark.parametrize("mode,expected", [("644", "644"), ("0644", "644"), ("0o755", "755"), (600, "600")])
def test_file_mode_normalised(mode, expected):
    assert Settings(file_mode=mode).file_mode == expected


@pytest.mark.parametrize("field,value", [("file_mode", "999"), ("log_level", "LOUD")])
def test_invalid_values_rejected(field, value):
    with pytest.raises(ValidationError):
        Settings(**{field: value})


def test_summary_has_no_secrets(settings):
    summary = settings.summary()
    assert summary["Instance Tag"] == "my-webapp-server"
    assert not any("secret" in key.lower() for key in summary)
