from __future__ import annotations

import json

import pytest
from click.testing import CliRunner


@pytest.fixture(autouse=True)
def _no_external_services(monkeypatch) -> None:
    for name in (
        "WAHA_API_URL",
        "WAHA_API_KEY",
        "WEBSOCKET_ENDPOINT_URL",
        "WEBSOCKET_AUTH_TOKEN",
        "CRM_SUPABASE_URL",
        "SUPABASE_URL",
        "CRM_SUPABASE_SERVICE_ROLE_KEY",
        "SUPABASE_SERVICE_ROLE_KEY",
    ):
        monkeypatch.delenv(name, raising=False)


def test_variants_command() -> None:
    import cli

    result = CliRunner().invoke(cli.main, ["variants", "--json-output", "(11) 98765-4321"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["cleaned"] == "11987654321"
    assert payload["variants"] == ["11987654321", "5511987654321", "551187654321"]


def test_variants_command_flags_invalid_numbers() -> None:
    import cli

    result = CliRunner().invoke(cli.main, ["variants", "n/a"])

    assert result.exit_code == 0
    assert "invalid number" in result.output


def test_import_file_then_job_status(tmp_path) -> None:
    import cli

    contacts = tmp_path / "leads.csv"
    contacts.write_text(
        "Nome,Telefone,Tags\nAna,(11) 98765-4321,VIP\nBruno,,\nCarla,21912345678,VIP;Lead\n",
        encoding="utf-8",
    )
    db_path = tmp_path / "crm.duckdb"
    runner = CliRunner()

    result = runner.invoke(
        cli.main,
        [
            "import-file",
            str(contacts),
            "--company-id",
            "co-1",
            "--tag",
            "Fair",
            "--batch-size",
            "2",
            "--pause",
            "0",
            "--duckdb-path",
            str(db_path),
            "--json-output",
        ],
    )

    assert result.exit_code == 0, result.output
    summary = json.loads(result.output[result.output.index("{\n"):])
    assert summary["success"] is True
    assert summary["data"]["successful_records"] == 3
    assert summary["data"]["noWhatsApp"] == 1
    import_id = summary["importId"]

    status = runner.invoke(cli.main, ["job-status", import_id, "--duckdb-path", str(db_path), "--json-output"])

    assert status.exit_code == 0, status.output
    job = json.loads(status.output[status.output.index("{\n"):])
    assert job["name"] == "leads"
    assert job["status"] == "completed"
    assert job["processed_records"] == 3
    assert job["successful_records"] == 3


def test_import_file_rejects_empty_file(tmp_path) -> None:
    import cli

    contacts = tmp_path / "empty.csv"
    contacts.write_text("Nome,Telefone\n", encoding="utf-8")

    result = CliRunner().invoke(
        cli.main,
        ["import-file", str(contacts), "--company-id", "co-1", "--duckdb-path", str(tmp_path / "crm.duckdb")],
    )

    assert result.exit_code != 0
    assert "contactsData" in result.output


def test_job_status_unknown_import(tmp_path) -> None:
    import cli

    result = CliRunner().invoke(cli.main, ["job-status", "nope", "--duckdb-path", str(tmp_path / "crm.duckdb")])

    assert result.exit_code != 0
    assert "not found" in result.output
