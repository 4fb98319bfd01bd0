"""
Tests for the jitctl command line interface.
"""

from datetime import timedelta

import pytest
from click.testing import CliRunner

from jit_access.cli.jitctl import cli, parse_duration
from jit_access.config import EngineSettings
from jit_access.connectors import InMemoryPolicyStore
from jit_access.engine.orchestrator import IAMReconciler
from jit_access.exceptions import PermanentStoreError

REQUEST = """
policies:
  - resource: folders/bar
    bindings:
      - role: roles/cloudkms.cryptoOperator
        members:
          - user:u1@example.com
  - resource: projects/baz
    bindings:
      - role: roles/bigquery.dataViewer
        members:
          - user:u1@example.com
"""


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def request_file(tmp_path):
    path = tmp_path / "request.yaml"
    path.write_text(REQUEST)
    return str(path)


@pytest.fixture
def invalid_request_file(tmp_path):
    path = tmp_path / "invalid.yaml"
    path.write_text(
        "policies:\n"
        "  - resource: projects/baz\n"
        "    bindings:\n"
        "      - role: roles/viewer\n"
        "        members:\n"
        "          - group:devs@example.com\n"
    )
    return str(path)


class TestParseDuration:
    """Duration flag parsing."""

    @pytest.mark.parametrize("value, expected", [
        ("2h", timedelta(hours=2)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("90s", timedelta(seconds=90)),
        ("1.5h", timedelta(minutes=90)),
        ("500ms", timedelta(milliseconds=500)),
    ])
    def test_valid(self, value, expected):
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["", "2", "2d", "h", "1h 30m", "-1h"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_duration(value)


class TestValidate:
    """jitctl iam validate"""

    def test_valid_file(self, runner, request_file):
        result = runner.invoke(cli, ["iam", "validate", "--path", request_file])

        assert result.exit_code == 0
        assert "is valid (2 resource policies)" in result.output

    def test_invalid_file(self, runner, invalid_request_file):
        result = runner.invoke(cli, ["iam", "validate", "--path", invalid_request_file])

        assert result.exit_code == 1
        assert 'is not of "user" type' in result.output


class TestHandle:
    """jitctl iam handle"""

    def test_grant_in_mock_mode(self, runner, request_file):
        result = runner.invoke(cli, [
            "--mock", "iam", "handle", "--path", request_file, "--duration", "2h",
            "--start-time", "2030-01-01T00:00:00Z",
        ])

        assert result.exit_code == 0, result.output
        assert "Successfully Handled IAM Request" in result.output
        assert "until 2030-01-01T02:00:00Z" in result.output
        assert "roles/bigquery.dataViewer" in result.output

    def test_verbose_prints_policies(self, runner, request_file):
        result = runner.invoke(cli, [
            "--mock", "iam", "handle", "--path", request_file, "--duration", "1h",
            "--start-time", "2030-01-01T00:00:00Z", "--condition-title", "custom-title", "--verbose",
        ])

        assert result.exit_code == 0, result.output
        assert "Updated IAM Policies" in result.output
        assert "title: custom-title" in result.output
        assert "request.time < timestamp('2030-01-01T01:00:00Z')" in result.output

    @pytest.mark.parametrize("duration", ["0s", "abc"])
    def test_bad_duration(self, runner, request_file, duration):
        result = runner.invoke(cli, ["--mock", "iam", "handle", "--path", request_file, "--duration", duration])

        assert result.exit_code == 2

    def test_invalid_request_touches_nothing(self, runner, invalid_request_file, mocker):
        from_settings = mocker.patch.object(IAMReconciler, "from_settings")

        result = runner.invoke(cli, ["--mock", "iam", "handle", "--path", invalid_request_file, "--duration", "1h"])

        assert result.exit_code == 1
        from_settings.assert_not_called()

    def test_partial_failure_exits_non_zero(self, runner, request_file, mocker):
        stores = {prefix: InMemoryPolicyStore() for prefix in ("organizations", "folders", "projects")}
        stores["folders"].fail_set_always = PermanentStoreError("permission denied", status=403)
        reconciler = IAMReconciler(stores["organizations"], stores["folders"], stores["projects"],
                                   settings=EngineSettings(mock_mode=True))
        mocker.patch.object(IAMReconciler, "from_settings", return_value=reconciler)

        result = runner.invoke(cli, ["--mock", "iam", "handle", "--path", request_file, "--duration", "1h"])

        assert result.exit_code == 1
        assert "Successfully Handled IAM Request" in result.output
        assert "Failed to update some resources" in result.output
        assert "failed to handle policy update for resource folders/bar" in result.output
        assert "projects/baz" in stores["projects"].policies

    def test_store_clients_closed_after_run(self, runner, request_file, mocker):
        stores = {prefix: InMemoryPolicyStore() for prefix in ("organizations", "folders", "projects")}
        reconciler = IAMReconciler(stores["organizations"], stores["folders"], stores["projects"])
        mocker.patch.object(IAMReconciler, "from_settings", return_value=reconciler)
        closes = [mocker.spy(store, "close") for store in stores.values()]

        result = runner.invoke(cli, ["--mock", "iam", "handle", "--path", request_file, "--duration", "1h"])

        assert result.exit_code == 0, result.output
        for close in closes:
            close.assert_called_once_with()


class TestCleanup:
    """jitctl iam cleanup"""

    def test_cleanup_in_mock_mode(self, runner, request_file):
        result = runner.invoke(cli, ["--mock", "iam", "cleanup", "--path", request_file])

        assert result.exit_code == 0, result.output
        assert "Successfully Removed Requested Bindings" in result.output

    def test_all_failed(self, runner, request_file, mocker):
        stores = {prefix: InMemoryPolicyStore() for prefix in ("organizations", "folders", "projects")}
        for store in stores.values():
            store.fail_get_always = PermanentStoreError("not found", status=404)
        reconciler = IAMReconciler(stores["organizations"], stores["folders"], stores["projects"])
        mocker.patch.object(IAMReconciler, "from_settings", return_value=reconciler)

        result = runner.invoke(cli, ["--mock", "iam", "cleanup", "--path", request_file])

        assert result.exit_code == 1
        assert "Failed to update all resources" in result.output
        assert "Successfully Removed Requested Bindings" not in result.output


def test_settings_file(runner, request_file, tmp_path):
    settings = tmp_path / "settings.yaml"
    settings.write_text(f"mock_mode: true\ncondition_title: from-file\naudit_dir: {tmp_path / 'audit'}\n")

    result = runner.invoke(cli, [
        "--config", str(settings), "iam", "handle", "--path", request_file, "--duration", "1h", "-v",
    ])

    assert result.exit_code == 0, result.output
    assert "title: from-file" in result.output
    assert list((tmp_path / "audit").glob("audit_*.jsonl"))
