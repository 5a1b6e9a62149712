import pytest

from webapp_deploy.errors import InstallError, StoreError
from webapp_deploy.models import CommandResult
from webapp_deploy.remote.host_ops import HostOperations, _parse_df, _parse_free
from tests.consts import LIVE_PATH, OLD_PAGE


class ScriptedExecutor:
    """Returns one canned result per command and records what was sent."""

    def __init__(self, results=None):
        self.results = results or {}
        self.commands = []

    def execute(self, host, command):
        self.commands.append(command)
        return self.results.get(command, CommandResult("", "", 0))


def test_paths_are_shell_quoted(host):
    executor = ScriptedExecutor()
    HostOperations(executor).copy(host, "/var/www/html/my page.html", "/tmp/x; rm -rf /")
    assert executor.commands == ["sudo cp '/var/www/html/my page.html' '/tmp/x; rm -rf /'"]


def test_probe_parses_body_and_status(host):
    url_cmd = "curl -s --max-time 10 -w '\\n%{http_code}' http://localhost"
    executor = ScriptedExecutor({url_cmd: CommandResult("<h1>hi</h1>\n200", "", 0)})

    result = HostOperations(executor).probe(host, "http://localhost")

    assert result.status_code == 200
    assert result.body == "<h1>hi</h1>"


def test_probe_without_answer_is_status_zero(host):
    url_cmd = "curl -s --max-time 10 -w '\\n%{http_code}' http://localhost"
    executor = ScriptedExecutor({url_cmd: CommandResult("", "", 7)})

    assert HostOperations(executor).probe(host, "http://localhost").status_code == 0


def test_mutation_failure_carries_step_and_stderr(host):
    executor = ScriptedExecutor({"sudo systemctl restart httpd": CommandResult("", "Job failed", 1)})

    with pytest.raises(InstallError) as exc_info:
        HostOperations(executor).restart_service(host, "httpd", step="install")

    assert exc_info.value.step == "install"
    assert exc_info.value.host == host.label
    assert "Job failed" in str(exc_info.value)


def test_list_dir_failure_raises_store_error(host):
    executor = ScriptedExecutor({"ls -1 /var/www/html/backups": CommandResult("", "Permission denied", 2)})

    with pytest.raises(StoreError):
        HostOperations(executor).list_dir(host, "/var/www/html/backups")


def test_file_queries_against_fake_host(host_ops, host, fake_host):
    fake_host.write(LIVE_PATH, OLD_PAGE)

    assert host_ops.file_exists(host, LIVE_PATH)
    assert not host_ops.file_exists(host, "/var/www/html/missing.html")
    assert host_ops.read_file(host, LIVE_PATH) == OLD_PAGE
    assert host_ops.file_info(host, LIVE_PATH).size == len(OLD_PAGE)
    assert host_ops.checksum(host, "/nope") is None
    assert host_ops.list_dir(host, "/var/www/html") == ["index.html"]


def test_service_queries(host_ops, host, fake_host):
    assert host_ops.service_active(host, "httpd")
    assert host_ops.service_enabled(host, "httpd")
    fake_host.service_active = False
    assert not host_ops.service_active(host, "httpd")


def test_system_stats(host_ops, host, fake_host):
    fake_host.disk_percent = 93
    fake_host.memory_percent = 37

    stats = host_ops.system_stats(host)

    assert stats.disk_used_percent == 93
    assert stats.memory_used_percent == 37


@pytest.mark.parametrize("output,expected", [
    ("Filesystem 1024-blocks Used Available Capacity Mounted on\n/dev/xvda1 100 42 58 42% /\n", 42),
    ("", None),
    ("df: /: No such file or directory\n", None),
])
def test_parse_df(output, expected):
    assert _parse_df(output) == expected


def test_parse_free_uses_used_over_used_plus_free():
    output = ("              total        used        free      shared  buff/cache   available\n"
              "Mem:         1000          300         100          0         600         650\n")
    assert _parse_free(output) == 75


def test_parse_free_without_mem_row():
    assert _parse_free("") is None


def test_system_stats_unreadable_when_commands_fail(host_ops, host, fake_host):
    fake_host.fail_on("df", "bash: df: command not found", 127)
    fake_host.fail_on("free", "bash: free: command not found", 127)

    stats = host_ops.system_stats(host)

    assert stats.disk_used_percent is None
    assert stats.memory_used_percent is None
