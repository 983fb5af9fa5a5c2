"""
Tests for the heelix command line.

Commands that would reach the embedding service run with no API key
configured, so nothing leaves the machine.
"""

import io
import json

import pytest

from heelix.cli import COMMANDS, build_parser, main
from heelix.core.config import Config
from heelix.core.schema import initialize_database
from heelix.core.store import RecordStore


class TestParser:

    def test_every_subcommand_has_a_handler(self):
        parser = build_parser()
        subparsers = next(
            action for action in parser._actions if action.dest == "command"
        )
        assert set(subparsers.choices) == set(COMMANDS)

    def test_capture_arguments(self):
        args = build_parser().parse_args(
            ["capture", "notes.txt", "--user", "me", "--title", "Mail", "--interval", "30"]
        )
        assert (args.file, args.user, args.title, args.interval) == ("notes.txt", "me", "Mail", 30)

    def test_capture_requires_user(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["capture"])

    def test_edit_doc_force(self):
        args = build_parser().parse_args(["edit-doc", "12", "-", "--force"])
        assert args.document_id == 12
        assert args.file == "-"
        assert args.force

    def test_reconcile_flags(self):
        args = build_parser().parse_args(["reconcile", "--prune", "--limit", "5"])
        assert args.prune and args.limit == 5

    def test_retrieve_k(self):
        args = build_parser().parse_args(["retrieve", "plans", "-k", "3", "--json"])
        assert (args.query, args.k, args.json) == ("plans", 3, True)


class TestMain:

    @pytest.fixture
    def home(self, tmp_path):
        return tmp_path / "home"

    def run(self, home, *argv):
        return main(["--home", str(home), *argv])

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_init_creates_storage(self, home):
        assert self.run(home, "init") == 0
        config = Config(home)
        assert config.get_database_path().exists()
        assert config.get_index_directory().exists()

    def test_capture_from_file(self, home, tmp_path, capsys):
        source = tmp_path / "capture.txt"
        source.write_text("short capture")

        assert self.run(home, "capture", str(source), "--user", "me", "--title", "Editor") == 0
        assert "too short" in capsys.readouterr().out

        store = RecordStore(initialize_database(Config(home).get_database_path()))
        activity = store.list_activity_history()[0]
        assert activity.full_text == "short capture"
        assert activity.window_title == "Editor"
        assert activity.interval_length == 20

    def test_long_capture_without_key(self, home, monkeypatch, capsys):
        monkeypatch.setattr("sys.stdin", io.StringIO("x" * 300))

        assert self.run(home, "capture", "--user", "me") == 0
        assert "no API key" in capsys.readouterr().out

    def test_document_workflow(self, home, tmp_path, capsys):
        assert self.run(home, "project-create", "Launch") == 0
        assert self.run(home, "new-doc") == 0
        assert self.run(home, "rename-doc", "1", "Checklist") == 0
        assert self.run(home, "move-doc", "1", "--project", "2") == 0

        text_file = tmp_path / "doc.md"
        text_file.write_text("draft")
        assert self.run(home, "edit-doc", "1", str(text_file)) == 0

        store = RecordStore(initialize_database(Config(home).get_database_path()))
        document = store.get_document(1)
        assert (document.name, document.project_id, document.full_text) == ("Checklist", 2, "draft")

        assert self.run(home, "delete-doc", "1") == 0
        assert store.get_document(1) is None

    def test_missing_document_is_an_error(self, home, capsys):
        assert self.run(home, "rename-doc", "99", "Nope") == 1
        assert "No document with id 99" in capsys.readouterr().out

    def test_retrieve_without_key_fails(self, home, capsys):
        assert self.run(home, "retrieve", "plans") == 1
        assert "Retrieval unavailable" in capsys.readouterr().out

    def test_ask_without_key_prints_nothing_found(self, home, capsys):
        assert self.run(home, "ask", "what did I plan?") == 0
        assert "No relevant content found" in capsys.readouterr().out

    def test_stats_json(self, home, capsys):
        self.run(home, "init")
        capsys.readouterr()

        assert self.run(home, "stats", "--json") == 0
        stats = json.loads(capsys.readouterr().out)
        assert stats["indexed_entries"] == 0
        assert stats["by_kind"]["activity"] == {"total": 0, "vectorized": 0}
        assert stats["credential_configured"] is False

    def test_reconcile_runs(self, home, capsys):
        assert self.run(home, "reconcile", "--prune") == 0
        assert "Reconcile" in capsys.readouterr().out

    def test_tagging_and_metadata(self, home, capsys):
        assert self.run(home, "project-create", "Launch") == 0
        assert self.run(home, "new-doc") == 0

        assert self.run(home, "tag-doc", "1", "2") == 0
        assert self.run(home, "tag-doc", "1", "2") == 0
        assert "already in project 2" in capsys.readouterr().out

        assert self.run(home, "doc-projects", "1") == 0
        assert capsys.readouterr().out.strip() == "1, 2"

        assert self.run(home, "doc-meta", "1", "status", "--set", "draft") == 0
        capsys.readouterr()
        assert self.run(home, "doc-meta", "1") == 0
        assert json.loads(capsys.readouterr().out) == {"status": "draft"}

        assert self.run(home, "untag-doc", "1", "2") == 0
        store = RecordStore(initialize_database(Config(home).get_database_path()))
        assert store.get_document_projects(1) == [1]

    def test_doc_meta_set_needs_key(self, home, capsys):
        self.run(home, "new-doc")
        assert self.run(home, "doc-meta", "1", "--set", "draft") == 1
