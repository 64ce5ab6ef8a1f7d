"""
Tests for the command-line interface.
"""

import json

import pytest

from ..cli import main
from ..games.war import war_document
from .conftest import mini_document


@pytest.fixture
def write_json(tmp_path):
    def write(name, document):
        path = tmp_path / name
        path.write_text(json.dumps(document), encoding="utf-8")
        return str(path)
    return write


class TestValidateCommand:
    """Tests for `cardcore validate`."""

    def test_valid_definition(self, write_json, capsys):
        path = write_json("war.json", war_document())
        assert main(["validate", path]) == 0
        assert "OK: war (2-2 players, 3 rule(s))" in capsys.readouterr().out

    def test_invalid_definition(self, write_json, capsys):
        document = mini_document()
        document["flow"]["initial_state"] = "nowhere"
        path = write_json("broken.json", document)

        assert main(["validate", path]) == 1
        out = capsys.readouterr().out
        assert "Errors:" in out
        assert "Initial state 'nowhere' is not defined" in out

    def test_warnings_are_printed(self, write_json, capsys):
        assert main(["validate", write_json("mini.json", mini_document())]) == 0
        assert "No win condition defined" in capsys.readouterr().out

    def test_missing_file(self, tmp_path, capsys):
        assert main(["validate", str(tmp_path / "nope.json")]) == 1
        assert "File not found" in capsys.readouterr().out

    def test_not_json(self, tmp_path, capsys):
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        assert main(["validate", str(path)]) == 1
        assert "not valid JSON" in capsys.readouterr().out


class TestRunCommands:
    """Tests for `cardcore run` and `cardcore war`."""

    def test_war_with_trace(self, tmp_path, capsys):
        trace_path = tmp_path / "trace.json"
        code = main(["war", "--seed", "3", "--max-steps", "20", "--trace", str(trace_path)])

        assert code == 0
        out = capsys.readouterr().out
        assert "(seed 3)" in out
        assert "Loop ended:" in out
        trace = json.loads(trace_path.read_text(encoding="utf-8"))
        assert trace[0]["tag"] == "state.enter"

    def test_run_definition(self, write_json, capsys):
        path = write_json("war.json", war_document())
        assert main(["run", path, "--players", "2", "--seed", "1", "--max-steps", "6",
                     "--policy", "random"]) == 0
        assert "Loop ended: step_limit" in capsys.readouterr().out

    def test_run_stalled_game(self, write_json, capsys):
        document = mini_document(flow={
            "initial_state": "main",
            "states": {"main": {"phases": ["only"], "loop": False}},
        })
        assert main(["run", write_json("mini.json", document), "--seed", "1"]) == 2
        assert "Loop ended: stalled" in capsys.readouterr().out

    def test_run_rejects_invalid_definition(self, write_json, capsys):
        document = mini_document()
        document["flow"]["initial_state"] = "nowhere"
        assert main(["run", write_json("broken.json", document)]) == 1
        assert "Definition failed validation" in capsys.readouterr().out

    def test_run_rejects_bad_seat_count(self, write_json, capsys):
        path = write_json("war.json", war_document())
        assert main(["run", path, "--players", "5"]) == 1
        assert "could not start the game" in capsys.readouterr().out

    def test_no_command(self, capsys):
        assert main([]) == 1
