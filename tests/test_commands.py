"""Tests for CLI commands using Click's test runner."""

import json
import os

import pytest
from click.testing import CliRunner

from doit.cli import cli


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch):
    for name in ("DOIT_DB", "DOIT_TENANT", "DOIT_API_KEY", "DOIT_ACTOR", "DOIT_JSON",
                 "DOIT_ID_PREFIX", "DOIT_MAX_LIMIT", "DOIT_QUERY_TIMEOUT", "DOIT_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def doit_dir(tmp_path, monkeypatch: pytest.MonkeyPatch):
    """Create a temporary directory with doit initialized."""
    monkeypatch.chdir(tmp_path)
    result = CliRunner().invoke(cli, ["init", "--prefix", "test"])
    assert result.exit_code == 0, result.output
    return str(tmp_path / ".doit")


def _create(runner: CliRunner, title: str, *args: str) -> str:
    result = runner.invoke(cli, ["--actor", "alice", "create", "--title", title, "--silent", *args])
    assert result.exit_code == 0, result.output
    return result.output.strip()


def _show(runner: CliRunner, issue_id: str) -> dict:
    result = runner.invoke(cli, ["--json", "show", issue_id])
    assert result.exit_code == 0, result.output
    return json.loads(result.output)


class TestInit:
    def test_init(self, runner: CliRunner):
        with runner.isolated_filesystem():
            result = runner.invoke(cli, ["init", "--prefix", "myproj"])
            assert result.exit_code == 0
            assert "Initialized doit" in result.output
            assert os.path.exists(".doit/config.yaml")
            assert os.path.exists(".doit/doit.db")
            assert os.path.exists(".doit/.gitignore")

    def test_init_twice(self, runner: CliRunner, doit_dir: str):
        result = runner.invoke(cli, ["init"])
        assert result.exit_code == 0
        assert "already initialized" in result.output

    def test_requires_init(self, runner: CliRunner):
        with runner.isolated_filesystem():
            result = runner.invoke(cli, ["list"])
            assert result.exit_code == 1
            assert "not in a doit project" in result.output


class TestCreate:
    def test_create_basic(self, runner: CliRunner, doit_dir: str):
        result = runner.invoke(cli, [
            "create", "--title", "Test Issue", "--type", "task", "--priority", "2"
        ])
        assert result.exit_code == 0
        assert "Created task test-" in result.output

    def test_create_silent(self, runner: CliRunner, doit_dir: str):
        assert _create(runner, "Silent").startswith("test-")

    def test_create_with_labels_and_fields(self, runner: CliRunner, doit_dir: str):
        issue_id = _create(runner, "Labeled", "-l", "urgent", "-l", "backend",
                           "--description", "details", "--defer", "+2d")
        data = _show(runner, issue_id)
        assert sorted(data["labels"]) == ["backend", "urgent"]
        assert data["description"] == "details"
        assert data["created_by"] == "alice"
        assert "defer_until" in data

    def test_create_child(self, runner: CliRunner, doit_dir: str):
        parent = _create(runner, "Epic", "--type", "epic")
        child = _create(runner, "Child", "--parent", parent)
        assert child == f"{parent}.1"
        assert _show(runner, child)["parent_id"] == parent

    def test_create_with_blocker(self, runner: CliRunner, doit_dir: str):
        blocker = _create(runner, "First")
        blocked = _create(runner, "Second", "--deps", blocker)
        deps = _show(runner, blocked)["dependencies"]
        assert deps[0]["depends_on_id"] == blocker
        assert deps[0]["type"] == "blocks"

    def test_create_bad_defer(self, runner: CliRunner, doit_dir: str):
        result = runner.invoke(cli, ["create", "--title", "X", "--defer", "+soon"])
        assert result.exit_code == 2


class TestListAndShow:
    def test_list_empty(self, runner: CliRunner, doit_dir: str):
        result = runner.invoke(cli, ["list"])
        assert result.exit_code == 0
        assert "No issues found" in result.output

    def test_list_hides_closed(self, runner: CliRunner, doit_dir: str):
        open_id = _create(runner, "Open one")
        closed_id = _create(runner, "Closed one")
        runner.invoke(cli, ["close", closed_id])

        result = runner.invoke(cli, ["list"])
        assert open_id in result.output
        assert closed_id not in result.output
        result = runner.invoke(cli, ["list", "--all"])
        assert closed_id in result.output

    def test_list_json_with_filters(self, runner: CliRunner, doit_dir: str):
        _create(runner, "Bug one", "--type", "bug")
        _create(runner, "Task one")
        result = runner.invoke(cli, ["--json", "list", "--type", "bug"])
        assert result.exit_code == 0
        assert [i["title"] for i in json.loads(result.output)] == ["Bug one"]

    def test_list_invalid_filter(self, runner: CliRunner, doit_dir: str):
        result = runner.invoke(cli, ["list", "--type", "story"])
        assert result.exit_code == 1
        assert "Error: invalid issue type" in result.output

    def test_show(self, runner: CliRunner, doit_dir: str):
        issue_id = _create(runner, "Showable", "--description", "Some text")
        result = runner.invoke(cli, ["show", issue_id, "--events"])
        assert result.exit_code == 0
        assert "Showable" in result.output
        assert "Some text" in result.output
        assert "created by alice" in result.output

    def test_show_partial_id(self, runner: CliRunner, doit_dir: str):
        issue_id = _create(runner, "Partial")
        assert _show(runner, issue_id[:-1])["id"] == issue_id

    def test_show_missing(self, runner: CliRunner, doit_dir: str):
        result = runner.invoke(cli, ["show", "test-zzzz"])
        assert result.exit_code == 1
        assert "not found" in result.output


class TestUpdateCloseReopenDelete:
    def test_update(self, runner: CliRunner, doit_dir: str):
        issue_id = _create(runner, "Original")
        result = runner.invoke(cli, ["update", issue_id, "--title", "Renamed", "-p", "0",
                                     "--add-label", "hot"])
        assert result.exit_code == 0, result.output
        data = _show(runner, issue_id)
        assert data["title"] == "Renamed"
        assert data["priority"] == 0
        assert data["labels"] == ["hot"]

    def test_update_claim(self, runner: CliRunner, doit_dir: str):
        issue_id = _create(runner, "Claim me")
        result = runner.invoke(cli, ["--actor", "bob", "update", issue_id, "--claim"])
        assert result.exit_code == 0, result.output
        data = _show(runner, issue_id)
        assert data["assignee"] == "bob"
        assert data["status"] == "in_progress"

    def test_update_invalid_status(self, runner: CliRunner, doit_dir: str):
        issue_id = _create(runner, "Bad status")
        result = runner.invoke(cli, ["update", issue_id, "--status", "doing"])
        assert result.exit_code == 1
        assert "Error: invalid status: doing" in result.output

    def test_update_nothing(self, runner: CliRunner, doit_dir: str):
        issue_id = _create(runner, "Untouched")
        result = runner.invoke(cli, ["update", issue_id])
        assert result.exit_code == 1

    def test_close_batch_and_reopen(self, runner: CliRunner, doit_dir: str):
        a = _create(runner, "A")
        b = _create(runner, "B")
        result = runner.invoke(cli, ["close", a, b, "--reason", "done"])
        assert result.exit_code == 0
        assert f"Closed {a}" in result.output
        assert f"Closed {b}" in result.output
        assert _show(runner, a)["close_reason"] == "done"

        result = runner.invoke(cli, ["reopen", a])
        assert result.exit_code == 0
        assert _show(runner, a)["status"] == "open"

    def test_reopen_open_issue(self, runner: CliRunner, doit_dir: str):
        issue_id = _create(runner, "Open")
        result = runner.invoke(cli, ["reopen", issue_id])
        assert result.exit_code == 1

    def test_delete(self, runner: CliRunner, doit_dir: str):
        issue_id = _create(runner, "Doomed")
        result = runner.invoke(cli, ["delete", issue_id], input="n\n")
        assert result.exit_code == 1
        result = runner.invoke(cli, ["delete", issue_id, "--yes"])
        assert result.exit_code == 0
        assert runner.invoke(cli, ["show", issue_id]).exit_code == 1


class TestReadyAndDeps:
    def test_ready_excludes_blocked(self, runner: CliRunner, doit_dir: str):
        blocker = _create(runner, "Blocker")
        blocked = _create(runner, "Blocked")
        result = runner.invoke(cli, ["dep", "add", blocked, blocker])
        assert result.exit_code == 0, result.output

        result = runner.invoke(cli, ["ready"])
        assert blocker in result.output
        assert blocked not in result.output

        runner.invoke(cli, ["close", blocker])
        result = runner.invoke(cli, ["ready"])
        assert blocked in result.output

    def test_dep_list_and_remove(self, runner: CliRunner, doit_dir: str):
        a = _create(runner, "A")
        b = _create(runner, "B")
        runner.invoke(cli, ["dep", "add", a, b, "--type", "related"])
        result = runner.invoke(cli, ["--json", "dep", "list", b, "--direction", "downstream"])
        assert [d["issue_id"] for d in json.loads(result.output)] == [a]

        runner.invoke(cli, ["dep", "remove", a, b])
        result = runner.invoke(cli, ["dep", "list", a])
        assert "No dependencies" in result.output

    def test_dep_self_edge(self, runner: CliRunner, doit_dir: str):
        a = _create(runner, "A")
        result = runner.invoke(cli, ["dep", "add", a, a])
        assert result.exit_code == 1
        assert "cannot depend on itself" in result.output

    def test_dep_tree(self, runner: CliRunner, doit_dir: str):
        epic = _create(runner, "Epic")
        child = _create(runner, "Child", "--parent", epic)
        grandchild = _create(runner, "Grandchild", "--parent", child)
        result = runner.invoke(cli, ["--json", "dep", "tree", epic, "--max-depth", "1"])
        assert result.exit_code == 0, result.output
        nodes = json.loads(result.output)
        assert [(n["id"], n["depth"]) for n in nodes] == [(epic, 0), (child, 1)]
        assert nodes[1]["truncated"] is True
        assert grandchild not in result.output


class TestLabelsAndComments:
    def test_labels(self, runner: CliRunner, doit_dir: str):
        issue_id = _create(runner, "Labeled")
        runner.invoke(cli, ["label", "add", issue_id, "backend"])
        result = runner.invoke(cli, ["label", "list", issue_id])
        assert "backend" in result.output
        runner.invoke(cli, ["label", "remove", issue_id, "backend"])
        result = runner.invoke(cli, ["label", "list", issue_id])
        assert "No labels" in result.output

    def test_comments(self, runner: CliRunner, doit_dir: str):
        issue_id = _create(runner, "Discussed")
        result = runner.invoke(cli, ["--actor", "bob", "comment", issue_id, "Looks good"])
        assert result.exit_code == 0
        result = runner.invoke(cli, ["comments", issue_id])
        assert "bob: Looks good" in result.output


class TestCompactAndExport:
    def test_compact_nothing(self, runner: CliRunner, doit_dir: str):
        issue_id = _create(runner, "Fresh")
        runner.invoke(cli, ["close", issue_id])
        result = runner.invoke(cli, ["compact"])
        assert result.exit_code == 0
        assert "Nothing to compact" in result.output

    def test_compact_bad_age(self, runner: CliRunner, doit_dir: str):
        result = runner.invoke(cli, ["compact", "--age", "eventually"])
        assert result.exit_code == 1
        assert "Error: invalid duration" in result.output

    def test_export(self, runner: CliRunner, doit_dir: str):
        _create(runner, "Kept")
        _create(runner, "Scratch", "--ephemeral")
        result = runner.invoke(cli, ["export"])
        assert result.exit_code == 0
        assert "Exported 1 issue(s)" in result.output
        with open(os.path.join(doit_dir, "issues.jsonl")) as f:
            assert json.loads(f.readline())["title"] == "Kept"


class TestTenancy:
    def test_tenants(self, runner: CliRunner, doit_dir: str):
        result = runner.invoke(cli, ["tenant", "create", "globex", "--name", "Globex"])
        assert result.exit_code == 0
        result = runner.invoke(cli, ["tenant", "list"])
        assert "default" in result.output
        assert "globex" in result.output

    def test_tenant_isolation(self, runner: CliRunner, doit_dir: str):
        issue_id = _create(runner, "Default tenant work")
        runner.invoke(cli, ["tenant", "create", "globex"])
        result = runner.invoke(cli, ["--tenant", "globex", "list"])
        assert "No issues found" in result.output
        result = runner.invoke(cli, ["--tenant", "globex", "show", issue_id])
        assert result.exit_code == 1

    def test_unknown_tenant(self, runner: CliRunner, doit_dir: str):
        result = runner.invoke(cli, ["--tenant", "nobody", "list"])
        assert result.exit_code == 1
        assert "Error: tenant nobody not found" in result.output

    def test_api_key_lifecycle(self, runner: CliRunner, doit_dir: str):
        _create(runner, "Visible to key")
        result = runner.invoke(cli, ["--json", "apikey", "create", "default", "--label", "ci"])
        assert result.exit_code == 0, result.output
        key = json.loads(result.output)

        result = runner.invoke(cli, ["--api-key", key["key"], "list"])
        assert "Visible to key" in result.output

        result = runner.invoke(cli, ["apikey", "list", "default"])
        assert key["prefix"] in result.output

        assert runner.invoke(cli, ["apikey", "revoke", key["prefix"]]).exit_code == 0
        result = runner.invoke(cli, ["--api-key", key["key"], "list"])
        assert result.exit_code == 1
        assert "invalid or revoked API key" in result.output

    def test_projects(self, runner: CliRunner, doit_dir: str):
        assert runner.invoke(cli, ["project", "create", "web"]).exit_code == 0
        _create(runner, "Web work", "--project", "web")
        _create(runner, "Unfiled work")

        result = runner.invoke(cli, ["project", "list"])
        assert "web" in result.output
        result = runner.invoke(cli, ["--project", "web", "list"])
        assert "Web work" in result.output
        assert "Unfiled work" not in result.output


class TestMessages:
    def test_send_list_read(self, runner: CliRunner, doit_dir: str):
        result = runner.invoke(cli, ["--json", "--actor", "alice", "msg", "send",
                                     "--to", "bob", "--subject", "Hello", "--body", "Hi Bob"])
        assert result.exit_code == 0, result.output
        msg_id = json.loads(result.output)["id"]

        result = runner.invoke(cli, ["--actor", "bob", "msg", "list"])
        assert "Hello" in result.output

        result = runner.invoke(cli, ["--actor", "bob", "msg", "read", msg_id])
        assert result.exit_code == 0
        assert "From:    alice" in result.output
        assert "Hi Bob" in result.output

        result = runner.invoke(cli, ["--actor", "bob", "msg", "list"])
        assert "No messages" in result.output

    def test_reply_threads_to_root(self, runner: CliRunner, doit_dir: str):
        first = json.loads(runner.invoke(cli, [
            "--json", "--actor", "alice", "msg", "send", "--to", "bob", "--subject", "Q",
        ]).output)["id"]
        reply = json.loads(runner.invoke(cli, [
            "--json", "--actor", "bob", "msg", "send", "--to", "alice", "--subject", "A",
            "--reply-to", first,
        ]).output)["id"]
        again = json.loads(runner.invoke(cli, [
            "--json", "--actor", "alice", "msg", "send", "--to", "bob", "--subject", "Thanks",
            "--reply-to", reply,
        ]).output)

        edge = again["dependencies"][0]
        assert edge["type"] == "replies-to"
        assert edge["depends_on_id"] == reply
        assert edge["thread_id"] == first


class TestLessons:
    def test_record_list_resolve(self, runner: CliRunner, doit_dir: str):
        issue_id = _create(runner, "Outage")
        result = runner.invoke(cli, [
            "--json", "--actor", "alice", "lesson", "record", "--title", "Check disk",
            "--mistake", "Ignored the alert", "--correction", "Page on 90%",
            "--issue", issue_id, "--component", "ops", "--severity", "1",
        ])
        assert result.exit_code == 0, result.output
        recorded = json.loads(result.output)
        assert recorded["issue_id"] == issue_id
        assert recorded["components"] == ["ops"]
        assert recorded["created_by"] == "alice"

        result = runner.invoke(cli, ["lesson", "list", "--component", "ops"])
        assert recorded["id"] in result.output
        assert "Check disk" in result.output

        result = runner.invoke(cli, ["--actor", "bob", "lesson", "resolve", recorded["id"]])
        assert result.exit_code == 0
        assert f"Resolved lesson {recorded['id']}" in result.output

        result = runner.invoke(cli, ["lesson", "list", "--status", "open"])
        assert "No lessons found." in result.output

    def test_resolve_unknown(self, runner: CliRunner, doit_dir: str):
        result = runner.invoke(cli, ["lesson", "resolve", "lsn-404"])
        assert result.exit_code == 1
        assert "not found" in result.output
