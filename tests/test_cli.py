import json

import pytest
from typer.testing import CliRunner

from ticket_provision import cli

runner = CliRunner()

POLICY = """\
groups:
  - match: {}
    groups: ["All Staff"]
licenses:
  - match: {}
    skus: ["SPE_E3"]
sku_labels:
  SPE_E3: "Microsoft 365 E3"
"""


@pytest.fixture
def workspace(tmp_path, monkeypatch, sample_ticket):
    monkeypatch.delenv("TICKET_PROVISION_CONFIG", raising=False)
    policy = tmp_path / "policy.yaml"
    policy.write_text(POLICY, encoding="utf-8")
    settings = tmp_path / "settings.yaml"
    settings.write_text(
        "m365:\n"
        "  tenant_id: t\n"
        "  client_id: c\n"
        "  client_secret: s\n"
        "  default_usage_location: US\n"
        "provisioning:\n"
        "  domain: contoso.com\n"
        "  initial_password: Temp-Password-1!\n"
        "  propagation_wait_seconds: 0\n"
        "  pacing_seconds: 0\n"
        "storage:\n"
        f"  policy_file: '{policy}'\n",
        encoding="utf-8",
    )
    ticket = tmp_path / "ticket.txt"
    ticket.write_text(sample_ticket, encoding="utf-8")
    return {"settings": str(settings), "ticket": str(ticket)}


@pytest.fixture
def tenant(directory, monkeypatch):
    directory.add_user("jane.doe@contoso.com", "Jane Doe", user_id="mgr-1")
    for name in ("Engineering Team", "CNC Group", "All Staff"):
        directory.add_group(displayName=name)
    directory.add_sku("SPE_E3", consumed=2, enabled=10)
    monkeypatch.setattr(cli, "M365Client", lambda config: directory)
    return directory


def test_parse_prints_record_and_policy(workspace):
    result = runner.invoke(cli.app, ["parse", workspace["ticket"], "--config", workspace["settings"]])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["first_name"] == "John"
    assert payload["department"] == "Field Engineering"
    assert payload["requested_groups"] == ["Engineering Team", "CNC Group", "All Staff"]
    assert payload["user_principal_name"] == "John.Doe@contoso.com"
    assert payload["required_skus"] == ["SPE_E3"]


def test_parse_reads_stdin(workspace, sample_ticket):
    result = runner.invoke(cli.app, ["parse", "-", "--config", workspace["settings"]], input=sample_ticket)

    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["last_name"] == "Doe"


def test_parse_rejects_ticket_without_names(workspace, tmp_path):
    ticket = tmp_path / "bad.txt"
    ticket.write_text("### Job Title\nWelder\n", encoding="utf-8")

    result = runner.invoke(cli.app, ["parse", str(ticket), "--config", workspace["settings"]])

    assert result.exit_code == 1
    assert "Error:" in result.output


def test_ticket_that_is_not_utf8_is_reported(workspace, tmp_path):
    ticket = tmp_path / "latin1.txt"
    ticket.write_bytes("### First Name\nJos\u00e9\n### Last Name\nDoe\n".encode("latin-1"))

    result = runner.invoke(cli.app, ["parse", str(ticket), "--config", workspace["settings"]])

    assert result.exit_code == 1
    assert "Error: cannot read ticket file" in result.output


def test_provision_creates_account_and_reports(workspace, tenant):
    result = runner.invoke(cli.app, ["provision", workspace["ticket"], "--config", workspace["settings"]])

    assert result.exit_code == 0, result.output
    assert "Principal name: John.Doe@contoso.com" in result.output
    assert "[ OK ] Microsoft 365 E3" in result.output
    assert "All steps completed." in result.output
    assert tenant.managers == {"new-user": "mgr-1"}
    assert tenant.phones == {"new-user": "+1 5551234567"}


def test_provision_declined_duplicate_exits_aborted(workspace, tenant):
    tenant.add_user("John.Doe@contoso.com", "John Doe")

    result = runner.invoke(
        cli.app, ["provision", workspace["ticket"], "--config", workspace["settings"]], input="n\n"
    )

    assert result.exit_code == cli.EXIT_ABORTED
    assert "No account was created for John Doe." in result.output
    assert "create_user" not in tenant.call_names()


def test_provision_yes_uses_alternate_name(workspace, tenant):
    tenant.add_user("John.Doe@contoso.com", "John Doe")

    result = runner.invoke(
        cli.app, ["provision", workspace["ticket"], "--yes", "--config", workspace["settings"]]
    )

    assert result.exit_code == 0, result.output
    assert "Principal name: John.Doe1@contoso.com" in result.output


def test_provision_fatal_error_exits_one(workspace, tenant):
    tenant.add_user("John.Doe@contoso.com")
    tenant.add_user("John.Doe1@contoso.com")

    result = runner.invoke(
        cli.app, ["provision", workspace["ticket"], "--yes", "--config", workspace["settings"]]
    )

    assert result.exit_code == 1
    assert "Error:" in result.output


def test_seats_lists_availability(workspace, tenant):
    tenant.add_sku("VISIOCLIENT", consumed=3, enabled=3)

    result = runner.invoke(cli.app, ["seats", "--sku", "SPE_E3", "--config", workspace["settings"]])

    assert result.exit_code == 0, result.output
    assert result.output.strip() == "Microsoft 365 E3 (SPE_E3): 8 of 10 available"
