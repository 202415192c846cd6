"""Tests for CLI output helpers."""

import json

from kinstore.cli._output import print_counts, print_error, print_json


def test_print_counts_aligns_columns(capsys):
    print_counts({"author": 3, "author_profile": 12_345})
    lines = capsys.readouterr().out.splitlines()
    assert lines[0].split() == ["store", "entries"]
    assert lines[2] == "author" + " " * 16 + "3"
    assert lines[3] == "author_profile   12,345"
    assert len({len(line) for line in lines}) == 1


def test_print_json(capsys):
    print_json({"deleted": {"book": 2}})
    assert json.loads(capsys.readouterr().out) == {"deleted": {"book": 2}}


def test_print_error_goes_to_stderr(capsys):
    print_error("boom")
    captured = capsys.readouterr()
    assert captured.out == ""
    assert captured.err == "Error: boom\n"
