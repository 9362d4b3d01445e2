"""Tests for configuration parsing, file resolution and the entry points."""

import asyncio
import json
import sys

import pytest

import scan_batch
from scan_batch import Config, main, parse_args, resolve_files


class TestParseArgs:

    def test_defaults(self):
        cfg = parse_args([])
        assert cfg == Config()
        assert cfg.field_index == 1
        assert cfg.show_progress is True
        assert cfg.fail_fast is False

    def test_files_are_split_and_blanks_dropped(self):
        cfg = parse_args(["--files", "a.csv, b.csv,,"])
        assert cfg.files == ("a.csv", "b.csv")

    def test_flags(self):
        cfg = parse_args([
            "--pattern", "*.csv", "--field", "0", "--delimiter", ";",
            "--channel_size", "8", "--fail_fast", "--no_progress",
        ])
        assert cfg.pattern == "*.csv"
        assert cfg.field_index == 0
        assert cfg.delimiter == ";"
        assert cfg.channel_size == 8
        assert cfg.fail_fast is True
        assert cfg.show_progress is False

    @pytest.mark.parametrize(
        "argv",
        [
            ["--field", "-1"],
            ["--channel_size", "0"],
            ["--delimiter", ";;"],
            ["--encoding", "bogus"],
        ],
    )
    def test_invalid_values_exit(self, argv):
        with pytest.raises(SystemExit):
            parse_args(argv)

    def test_json_config(self, tmp_path):
        cfg_path = tmp_path / "dupscan.json"
        cfg_path.write_text(json.dumps({
            "files": ["a.csv", "b.csv"],
            "field": 2,
            "fail_fast": True,
            "progress": False,
        }))

        cfg = parse_args(["--config", str(cfg_path)])

        assert cfg.files == ("a.csv", "b.csv")
        assert cfg.field_index == 2
        assert cfg.fail_fast is True
        assert cfg.show_progress is False

    def test_json_config_with_unknown_encoding_exits(self, tmp_path):
        cfg_path = tmp_path / "dupscan.json"
        cfg_path.write_text(json.dumps({"files": ["a.csv"], "encoding": "bogus"}))

        with pytest.raises(SystemExit):
            parse_args(["--config", str(cfg_path)])

    def test_missing_json_config(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            parse_args(["--config", str(tmp_path / "nope.json")])


class TestResolveFiles:

    def test_files_win_over_pattern(self, tmp_path):
        (tmp_path / "z.csv").write_text("h\n")
        cfg = Config(files=("a.csv",), pattern=str(tmp_path / "*.csv"))
        assert resolve_files(cfg) == ["a.csv"]

    def test_pattern_is_sorted(self, tmp_path):
        for name in ("b.csv", "a.csv", "c.txt"):
            (tmp_path / name).write_text("h\n")
        files = resolve_files(Config(pattern=str(tmp_path / "*.csv")))
        assert files == [str(tmp_path / "a.csv"), str(tmp_path / "b.csv")]

    def test_nothing_given(self):
        assert resolve_files(Config()) == []

    def test_pattern_without_matches(self, tmp_path):
        assert resolve_files(Config(pattern=str(tmp_path / "*.csv"))) == []


class TestMain:

    def test_no_files_exits_cleanly(self, capsys):
        assert asyncio.run(main([])) == 0
        out = capsys.readouterr().out
        assert "no filenames or pattern given, exiting" in out
        assert "DUPLICATE FOUND" not in out

    def test_reports_duplicates(self, write_csv, capsys):
        a = write_csv("a.csv", "id,code", "x,CODE1", "x,CODE2")
        b = write_csv("b.csv", "id,code", "x,CODE1")

        code = asyncio.run(main(["--files", f"{a},{b}", "--no_progress"]))
        lines = capsys.readouterr().out.splitlines()

        assert code == 0
        assert [l for l in lines if l.startswith("DUPLICATE")] == [
            "DUPLICATE FOUND: CODE1 found 2 times"
        ]
        assert lines[-1] == "done"

    def test_unreadable_file_exit_code(self, write_csv, missing_file, capsys):
        good = write_csv("good.csv", "id,code", "x,DUP", "x,DUP")

        code = asyncio.run(main(["--files", f"{missing_file},{good}", "--no_progress"]))
        out = capsys.readouterr().out

        assert code == 1
        assert "DUPLICATE FOUND: DUP found 2 times" in out
        assert f"ERROR: could not open file {missing_file}" in out

    def test_decode_failure_exit_code(self, write_csv, capsys):
        bad = write_csv("bad.csv", "id,code", "x,A", "x")
        code = asyncio.run(main(["--pattern", bad, "--no_progress"]))
        assert code == 2

    def test_run_exits_with_scan_status(self, monkeypatch, write_csv, capsys):
        bad = write_csv("bad.csv", "id,code", "x,A", "x")
        monkeypatch.setattr(sys, "argv", ["dupscan", "--files", bad, "--no_progress"])

        with pytest.raises(SystemExit) as exc:
            scan_batch.run()

        assert exc.value.code == 2

    def test_summary_counts_only_scanned_files(self, write_csv, missing_file, capsys):
        good = write_csv("good.csv", "id,code", "x,A")

        asyncio.run(main(["--files", f"{missing_file},{good}", "--no_progress"]))
        out = capsys.readouterr().out

        assert "Files scanned:         1" in out
        assert "Files failed:          1" in out
