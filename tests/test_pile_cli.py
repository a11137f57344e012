import json
from pathlib import Path

import pytest

from pile.pile_cli import main, load_host, EX_USAGE, EX_DATAERR, EX_NOINPUT
from pile.pile_runtime import MappingHost

DATA_DIR = Path(__file__).parent / "data"
SCRIPT = str(DATA_DIR / "sum_names.pile")
ELEMENTS = str(DATA_DIR / "elements.yaml")


def write(tmp_path, name, text):
    p = tmp_path / name
    p.write_text(text, encoding="utf-8")
    return str(p)


def test_runs_script_against_yaml_data(capsys):
    assert main([SCRIPT, "--data", ELEMENTS]) == 0
    out = capsys.readouterr().out
    assert out.strip() == "10.5"

def test_runs_script_against_json_data(tmp_path, capsys):
    data = write(tmp_path, "elements.json", json.dumps({"Elements": [{"Name": "2"}, {"Name": "40"}]}))
    assert main([SCRIPT, "--data", data, "--format", "json"]) == 0
    assert json.loads(capsys.readouterr().out) == [42]

def test_yaml_output(capsys):
    assert main([SCRIPT, "--data", ELEMENTS, "--format", "yaml"]) == 0
    assert capsys.readouterr().out.strip() == "- 10.5"

def test_empty_stack_prints_nothing(tmp_path, capsys):
    script = write(tmp_path, "noop.pile", "; nothing\n")
    assert main([script]) == 0
    assert capsys.readouterr().out == ""

def test_trace_goes_to_stderr(tmp_path, capsys):
    script = write(tmp_path, "t.pile", "push 1 push 2 +")
    assert main([script, "--trace"]) == 0
    captured = capsys.readouterr()
    assert captured.out.strip() == "3"
    assert len(captured.err.strip().splitlines()) == 3
    assert captured.err.splitlines()[-1].startswith("+")

def test_dump_prints_decoded_program(tmp_path, capsys):
    script = write(tmp_path, "d.pile", "iload 0 {tonum}\npush 0 ; reg\nmap")
    assert main([script, "--dump"]) == 0
    assert capsys.readouterr().out.splitlines() == ["iload 0 {tonum}", "push 0", "map"]

def test_runtime_error_exit_status(tmp_path, capsys):
    script = write(tmp_path, "bad.pile", 'push [1]\npush 7\nmap')
    assert main([script]) == 1
    err = capsys.readouterr().err
    assert err.startswith("Error on line 3")
    assert "UndefinedRegister" in err

def test_query_without_data_is_runtime_error(capsys):
    assert main([SCRIPT]) == 1
    assert "HostFailure" in capsys.readouterr().err

def test_parse_error_exit_status(tmp_path, capsys):
    script = write(tmp_path, "bad.pile", "push 1 frobnicate")
    assert main([script]) == EX_DATAERR
    assert "frobnicate" in capsys.readouterr().err

def test_dump_parse_error(tmp_path, capsys):
    script = write(tmp_path, "bad.pile", "iload 0 { tonum")
    assert main([script, "--dump"]) == EX_DATAERR

def test_missing_script(tmp_path, capsys):
    assert main([str(tmp_path / "missing.pile")]) == EX_NOINPUT
    assert "cannot be read" in capsys.readouterr().err

def test_missing_data_file(tmp_path):
    assert main([SCRIPT, "--data", str(tmp_path / "nope.yaml")]) == EX_NOINPUT

def test_bad_data_file(tmp_path, capsys):
    data = write(tmp_path, "bad.yaml", "- just\n- a list\n")
    assert main([SCRIPT, "--data", data]) == EX_DATAERR
    assert "bad data file" in capsys.readouterr().err

def test_usage_error(capsys):
    assert main([]) == EX_USAGE
    assert main([SCRIPT, "--format", "xml"]) == EX_USAGE

def test_load_host_validates_collections(tmp_path):
    good = load_host(ELEMENTS)
    assert isinstance(good, MappingHost)
    assert len(good.query("Elements")) == 3
    with pytest.raises(ValueError):
        load_host(write(tmp_path, "bad.json", '{"Elements": 3}'))
    empty = load_host(write(tmp_path, "empty.yaml", ""))
    with pytest.raises(LookupError):
        empty.query("Elements")

def test_script_that_is_not_utf8(tmp_path, capsys):
    p = tmp_path / "latin1.pile"
    p.write_bytes(b'push "\xff"\n')
    assert main([str(p)]) == EX_DATAERR
    assert "not valid UTF-8" in capsys.readouterr().err
