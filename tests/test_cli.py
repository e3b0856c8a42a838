"""
Tests for the command line interface.
"""

from __future__ import annotations

import json

import pytest

from garden_graph.cli.main import build_parser, main
from garden_graph.settings import settings


@pytest.fixture
def cli_settings(tmp_path, monkeypatch):
    kb = tmp_path / "kbs" / "notes"
    kb.mkdir(parents=True)
    (kb / "a.txt").write_text("Alice Smith writes about compost and compost bins.\n")
    (kb / "b.txt").write_text("Bob reads about compost and Alice Smith.\n")
    (kb / "c.txt").write_text("zz yy\n")

    monkeypatch.setattr(settings, "store", "sqlite")
    monkeypatch.setattr(settings, "sqlite_path", str(tmp_path / "graph.sqlite"))
    monkeypatch.setattr(settings, "documents_backend", "files")
    monkeypatch.setattr(settings, "documents_dir", str(tmp_path / "kbs"))
    monkeypatch.setattr(settings, "extractor", "heuristic")
    return settings


def _run(capsys, *argv) -> tuple[int, object]:
    rc = main(list(argv))
    out = capsys.readouterr().out
    return rc, json.loads(out) if out.strip() else None


class TestCli:
    @pytest.mark.parametrize(
        "argv",
        [
            ["build", "kb"],
            ["rebuild", "g"],
            ["show", "g", "--full"],
            ["list"],
            ["neighbors", "g", "--start", "a", "--start", "b", "--depth", "1", "--limit", "5"],
            ["path", "g", "a", "b"],
            ["delete", "g"],
            ["serve"],
        ],
    )
    def test_parser_accepts(self, argv):
        args = build_parser().parse_args(argv)
        assert args.cmd == argv[0]
        assert callable(args.func)

    def test_build_list_path_delete(self, cli_settings, capsys):
        rc, rec = _run(capsys, "build", "notes", "--name", "Notes")
        assert rc == 0
        gid = rec["id"]
        assert rec["metadata"]["document_count"] == 3

        rc, listed = _run(capsys, "list", "--kb", "notes")
        assert [r["id"] for r in listed] == [gid]

        rc, sub = _run(capsys, "path", gid, "node_doc_a.txt", "node_doc_b.txt")
        assert rc == 0
        assert sub["found"] is True
        assert sub["nodes"][0]["id"] == "node_doc_a.txt"

        rc, sub = _run(capsys, "path", gid, "node_doc_a.txt", "node_doc_c.txt")
        assert rc == 0
        assert sub["found"] is False
        assert sub["nodes"] == []

        rc, sub = _run(capsys, "neighbors", gid, "--start", "node_doc_a.txt", "--depth", "1")
        assert sub["nodes"][0]["id"] == "node_doc_a.txt"

        rc, _ = _run(capsys, "delete", gid)
        assert rc == 0

        rc, out = _run(capsys, "show", gid)
        assert rc == 2
        assert out is None
