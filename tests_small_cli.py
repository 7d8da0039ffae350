import subprocess, sys, os, tempfile
from pathlib import Path

import numstat_stream

SCRIPT = str(Path(__file__).with_name("numstat_stream.py"))

def _tmp(text, suffix=".txt"):
    with tempfile.NamedTemporaryFile("w", delete=False, suffix=suffix) as f:
        f.write(text)
        return f.name

def _run(*args, stdin=None):
    return subprocess.run([sys.executable, SCRIPT, *args], input=stdin, capture_output=True, text=True)

def test_stream_prints_default_columns_for_file():
    path = _tmp("1\n2\n3\n4\n5\n")
    try:
        out = subprocess.check_output([sys.executable, SCRIPT, "-H", path], text=True)
        assert out.splitlines() == ["filename\tcount\tmin\tmax\tsum\tavg", f"{path}\t5\t1\t5\t15\t3"]
    finally:
        os.remove(path)

def test_stdin_has_no_filename_column():
    r = _run("-m", "-p", "95", "-D", ",", stdin="4.0\n2.0\n3.0\n5.0\n1.0\na\n")
    assert r.returncode == 0
    assert r.stdout == "3,4\n"
    assert "illegal value. value=a" in r.stderr

def test_field_file_paths_keep_order_and_missing_file():
    csv = _tmp("val1,val2\n1,2\n3,4\n5,6\n", suffix=".csv")
    try:
        r = _run("-d", ",", "-I", "1", "-c", "-u", "-f", f"1:{csv}", "-f", "2:/no/such/file.csv", "-f", f"2:{csv}")
        assert r.returncode == 0
        assert r.stdout.splitlines() == [f"{csv}\t3\t9", "/no/such/file.csv\t0\t0", f"{csv}\t3\t12"]
        assert "cannot open /no/such/file.csv" in r.stderr
    finally:
        os.remove(csv)

def test_percentile_over_100_warns_and_clamps():
    r = _run("-p", "200", "-H", "-N", stdin="1\n2\n3\n")
    assert r.returncode == 0
    assert r.stdout.splitlines() == ["100percentile", "3"]
    assert "WARNING: percentile is from 1 to 100. percentile=200" in r.stderr

def test_outfile_is_overwritten_and_write_failure_is_fatal(tmp_path):
    out = tmp_path / "out.tsv"
    out.write_text("stale\nstale\nstale\n")
    r = _run("-c", "-o", str(out), stdin="1\n2\n")
    assert r.returncode == 0
    assert r.stdout == ""
    assert out.read_text() == "2\n"
    r = _run("-c", "-o", str(tmp_path / "missing" / "out.tsv"), stdin="1\n")
    assert r.returncode == 1
    assert "cannot write" in r.stderr

def test_bad_field_file_path_is_usage_error():
    r = _run("-f", "0:x.txt")
    assert r.returncode == 2
    assert "field index must be 1 or more" in r.stderr

def test_version():
    r = _run("--version")
    assert r.returncode == 0
    assert r.stdout.strip() == numstat_stream.__version__

def test_main_in_process(tmp_path, capsys):
    a = tmp_path / "a.txt"
    a.write_text("".join(f"{i}\n" for i in range(1, 101)))
    b = tmp_path / "b.txt"
    b.write_text("1\n2\n3\n4\n5\n")
    assert numstat_stream.main(["-N", "-m", "-p", "95", str(a), str(b)]) == 0
    out = capsys.readouterr().out
    assert out.splitlines() == ["50\t95", "3\t4"]

def test_stdin_undecodable_line_is_skipped():
    r = subprocess.run([sys.executable, SCRIPT, "-c", "-u"], input=b"1\n\xff\xfe\n2\n", capture_output=True)
    assert r.returncode == 0
    assert r.stdout.decode().splitlines() == ["2\t3"]
    assert b"illegal value" in r.stderr
