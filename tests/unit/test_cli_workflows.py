from typer.testing import CliRunner

from finagent.cli import app


def _env(tmp_path, monkeypatch):
    monkeypatch.setenv("FINAGENT_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.setenv("FINAGENT_DATABASE_URL", f"sqlite://{tmp_path / 'wf.db'}")
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("FINAGENT_TRANSPORT", raising=False)


def test_workflow_start_list_and_show(tmp_path, monkeypatch):
    _env(tmp_path, monkeypatch)
    runner = CliRunner()

    result = runner.invoke(
        app,
        ["workflow", "start", "analyst", "trader", "-m", "Buy AAPL?", "--workflow-id", "wf-cli"],
    )
    assert result.exit_code == 0, f"Command failed. Output: {result.stdout}"
    assert "Workflow started: wf-cli" in result.stdout
    assert "completed (2/2)" in result.stdout

    result = runner.invoke(app, ["workflow", "list"])
    assert result.exit_code == 0
    assert "wf-cli\tcompleted\t2/2" in result.stdout

    result = runner.invoke(app, ["workflow", "show", "wf-cli"])
    assert result.exit_code == 0
    assert "Workflow wf-cli: completed (100%)" in result.stdout
    assert "- 0 analyst: completed" in result.stdout
    assert "- 1 trader: completed" in result.stdout


def test_workflow_show_missing(tmp_path, monkeypatch):
    _env(tmp_path, monkeypatch)
    result = CliRunner().invoke(app, ["workflow", "show", "wf-missing"])
    assert result.exit_code == 1
    assert "Workflow not found" in result.stdout


def test_workflow_list_empty(tmp_path, monkeypatch):
    _env(tmp_path, monkeypatch)
    result = CliRunner().invoke(app, ["workflow", "list"])
    assert result.exit_code == 0
    assert "No workflows found" in result.stdout


def test_operator_commands_report_errors(tmp_path, monkeypatch):
    _env(tmp_path, monkeypatch)
    runner = CliRunner()

    result = runner.invoke(app, ["workflow", "cancel", "wf-missing"])
    assert result.exit_code == 1
    assert "Workflow not found: wf-missing" in result.stdout

    runner.invoke(app, ["workflow", "start", "economist", "--workflow-id", "wf-done"])
    result = runner.invoke(app, ["workflow", "retry", "wf-done"])
    assert result.exit_code == 1
    assert "rejected" in result.stdout


def test_workflow_start_rejects_unknown_agent(tmp_path, monkeypatch):
    _env(tmp_path, monkeypatch)
    result = CliRunner().invoke(app, ["workflow", "start", "wizard"])
    assert result.exit_code == 1
    assert "Unknown agent persona" in result.stdout


def test_sweep_without_stalled_workflows(tmp_path, monkeypatch):
    _env(tmp_path, monkeypatch)
    result = CliRunner().invoke(app, ["workflow", "sweep"])
    assert result.exit_code == 0
    assert "No stalled workflows" in result.stdout


def test_agent_list_and_templates():
    runner = CliRunner()
    result = runner.invoke(app, ["agent", "list"])
    assert result.exit_code == 0
    assert "riskManager\tRisk Manager" in result.stdout

    result = runner.invoke(app, ["workflow", "templates"])
    assert result.exit_code == 0
    assert "marketDebate - Market Debate" in result.stdout


def test_agent_execute_rejects_unknown_persona():
    result = CliRunner().invoke(app, ["agent", "execute", "wizard"])
    assert result.exit_code == 1
