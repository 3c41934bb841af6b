"""Tests for the stacksmith CLI commands."""

import json
import textwrap
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from stacksmith import __version__
from stacksmith.cli import cli
from stacksmith.deployment.provider import ProvisioningStatus
from stacksmith.iac.synthesizer import Template

QUEUE_APP = """
from stacksmith.iac.references import ref
from stacksmith.iac.resources import QueueBuilder
from stacksmith.iac.stack import StackAssembler


def build():
    app = StackAssembler()
    app.new(QueueBuilder, "OrdersDlq").finalize()
    (
        app.new(QueueBuilder, "Orders")
        .queue_name({queue_name!r})
        .dead_letter_queue(ref("OrdersDlq"), 5)
        .finalize()
    )
    return app


app = build()
"""

CYCLIC_APP = """
from stacksmith.iac.references import ref
from stacksmith.iac.resources import QueueBuilder
from stacksmith.iac.stack import StackAssembler

app = StackAssembler()
app.new(QueueBuilder, "A").dead_letter_queue(ref("B"), 3).finalize()
app.new(QueueBuilder, "B").dead_letter_queue(ref("A"), 3).finalize()
"""


@pytest.fixture(autouse=True)
def quiet_logging():
    """Keep the CLI from reconfiguring logging for the whole test session."""
    with patch("stacksmith.cli.configure_logging") as configure:
        yield configure


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def app_file(tmp_path):
    """Write a stack definition module and return its --app reference."""

    def _write(source: str = QUEUE_APP, queue_name: str = "orders") -> str:
        path = tmp_path / "infra.py"
        path.write_text(textwrap.dedent(source.replace("{queue_name!r}", repr(queue_name))))
        return f"{path}:app"

    return _write


@pytest.fixture
def invoke(runner, tmp_path):
    """Invoke the CLI with an injected provisioning client."""

    def _invoke(args, client=None, **kwargs):
        base = ["--config", str(tmp_path / "missing.yaml")]
        return runner.invoke(cli, base + args, obj={"client": client}, **kwargs)

    return _invoke


def _deployed(fake_client_factory, invoke, app_ref):
    """Synthesize the app through the CLI and load it as the deployed template."""
    result = invoke(["synth", "--app", app_ref, "--format", "canonical"])
    return fake_client_factory(deployed=Template.from_json(result.stdout))


class TestCliGroup:
    def test_help_lists_commands(self, runner):
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        for command in ("synth", "diff", "deploy", "destroy"):
            assert command in result.output

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])

        assert __version__ in result.output

    def test_invalid_config_file(self, runner, tmp_path, app_file):
        config_path = tmp_path / "config.yaml"
        config_path.write_text("deployment:\n  max_poll_retries: -1\n")

        result = runner.invoke(
            cli, ["--config", str(config_path), "synth", "--app", app_file()]
        )

        assert result.exit_code == 1
        assert "Configuration validation failed" in result.output

    def test_logging_options(self, invoke, app_file, quiet_logging):
        result = invoke(["--log-level", "debug", "--json-logs", "synth", "--app", app_file()])

        assert result.exit_code == 0
        quiet_logging.assert_called_once_with("DEBUG", True)


class TestSynthCommand:
    """Test template rendering from the command line."""

    def test_prints_cloudformation_json(self, invoke, app_file):
        result = invoke(["synth", "--app", app_file()])

        assert result.exit_code == 0, result.output
        document = json.loads(result.stdout)
        assert document["Resources"]["Orders"]["Properties"]["QueueName"] == "orders"

    def test_canonical_output_is_the_template_json(self, invoke, app_file):
        result = invoke(["synth", "--app", app_file(), "--format", "canonical"])

        template = Template.from_json(result.stdout)
        assert list(template.logical_ids()) == ["Orders", "OrdersDlq"]

    def test_writes_yaml_file(self, invoke, app_file, tmp_path):
        out_dir = tmp_path / "out"

        result = invoke(
            ["synth", "--app", app_file(), "--style", "yaml", "--out", str(out_dir), "--name", "orders"]
        )

        assert result.exit_code == 0, result.output
        assert "Type: AWS::SQS::Queue" in (out_dir / "orders.yaml").read_text()

    def test_validation_failure(self, invoke, app_file):
        result = invoke(["synth", "--app", app_file(CYCLIC_APP)])

        assert result.exit_code == 1
        assert "CyclicDependency" in result.output

    def test_missing_attribute(self, invoke, app_file):
        result = invoke(["synth", "--app", app_file().replace(":app", ":nothing")])

        assert result.exit_code == 2
        assert "has no attribute 'nothing'" in result.output

    def test_callable_attribute(self, invoke, app_file):
        result = invoke(["synth", "--app", app_file().replace(":app", ":build")])

        assert result.exit_code == 0

    def test_missing_module(self, invoke):
        result = invoke(["synth", "--app", "no_such_module_here:app"])

        assert result.exit_code == 2
        assert "Cannot import" in result.output


class TestDiffCommand:
    def test_new_stack(self, invoke, app_file, fake_client):
        result = invoke(["diff", "orders", "--app", app_file()], client=fake_client)

        assert result.exit_code == 0, result.output
        assert "2 to add, 0 to change (0 replaced), 0 to remove" in result.output
        assert "submit" not in fake_client.calls

    def test_no_changes(self, invoke, app_file, fake_client_factory):
        app_ref = app_file()
        client = _deployed(fake_client_factory, invoke, app_ref)

        result = invoke(["diff", "orders", "--app", app_ref], client=client)

        assert result.exit_code == 0
        assert "No changes." in result.output

    def test_validation_failure_exit_code(self, invoke, app_file, fake_client):
        result = invoke(["diff", "orders", "--app", app_file(CYCLIC_APP)], client=fake_client)

        assert result.exit_code == 1
        assert fake_client.calls == []


class TestDeployCommand:
    """Test deploy exit codes and confirmation."""

    def test_successful_deploy(self, invoke, app_file, fake_client):
        result = invoke(["deploy", "orders", "--app", app_file()], client=fake_client)

        assert result.exit_code == 0, result.output
        assert "Stack orders deployed" in result.output
        assert "id-orders" in result.output
        assert fake_client.calls == ["describe", "describe", "submit", "poll_status"]

    def test_dry_run(self, invoke, app_file, fake_client):
        result = invoke(["deploy", "orders", "--app", app_file(), "--dry-run"], client=fake_client)

        assert result.exit_code == 0
        assert "submit" not in fake_client.calls

    def test_replacement_needs_confirmation(self, invoke, app_file, fake_client_factory):
        client = _deployed(fake_client_factory, invoke, app_file(queue_name="orders"))

        result = invoke(
            ["deploy", "orders", "--app", app_file(queue_name="orders-v2")],
            client=client,
            input="n\n",
        )

        assert result.exit_code == 1
        assert "replaced" in result.output
        assert "submit" not in client.calls

    def test_replacement_confirmed(self, invoke, app_file, fake_client_factory):
        client = _deployed(fake_client_factory, invoke, app_file(queue_name="orders"))

        result = invoke(
            ["deploy", "orders", "--app", app_file(queue_name="orders-v2"), "--yes"],
            client=client,
        )

        assert result.exit_code == 0, result.output
        assert "submit" in client.calls

    def test_rolled_back_exit_code(self, invoke, app_file, fake_client_factory):
        client = fake_client_factory(poll_script=[ProvisioningStatus.ROLLED_BACK])

        result = invoke(["deploy", "orders", "--app", app_file()], client=client)

        assert result.exit_code == 2
        assert "rolled_back" in result.output

    def test_validation_failure_exit_code(self, invoke, app_file, fake_client):
        result = invoke(["deploy", "orders", "--app", app_file(CYCLIC_APP)], client=fake_client)

        assert result.exit_code == 1
        assert fake_client.calls == []


class TestDestroyCommand:
    def test_requires_confirmation(self, invoke, fake_client):
        result = invoke(["destroy", "orders"], client=fake_client, input="n\n")

        assert result.exit_code == 1
        assert fake_client.calls == []

    def test_missing_stack(self, invoke, fake_client):
        result = invoke(["destroy", "orders", "--yes"], client=fake_client)

        assert result.exit_code == 0
        assert "nothing to destroy" in result.output

    def test_destroys_deployed_stack(self, invoke, app_file, fake_client_factory):
        client = _deployed(fake_client_factory, invoke, app_file())

        result = invoke(["destroy", "orders", "-y"], client=client)

        assert result.exit_code == 0, result.output
        assert "Stack orders destroyed" in result.output
