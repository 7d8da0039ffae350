import argparse, io, logging, math

import pytest

import numstat_stream as ns
from make_numbers import write_numbers

def lines(*vals):
    return [v + "\n" for v in vals]

# ---- extract_field ----
def test_extract_field_picks_and_passes_through():
    assert ns.extract_field("id,name,note", ",", 1) == "id"
    assert ns.extract_field("id,name,note", ",", 3) == "note"
    assert ns.extract_field("id,name,note", ",", 4) == "id,name,note"
    assert ns.extract_field("id,name,note", "\t", 1) == "id,name,note"
    assert ns.extract_field("", ",", 2) == ""
    assert ns.extract_field("1,2", ",", 0) == "1,2"
    assert ns.extract_field("1,2", ",", -3) == "1,2"
    assert ns.extract_field("1, 2", ",", 2) == " 2"  # no trimming
    assert ns.extract_field("123", "", 2) == "2"
    assert ns.extract_field("123", "", 4) == "123"

# ---- aggregate_lines ----
def test_aggregate_basic():
    agg = ns.aggregate_lines(lines("1.0", "2.0", "3.0", "4.0", "5.0"), ns.StatsConfig())
    assert (agg.count, agg.min, agg.max, agg.sum, agg.average) == (5, 1.0, 5.0, 15.0, 3.0)
    assert agg.values == []

def test_aggregate_keeps_values_in_input_order():
    agg = ns.aggregate_lines(lines("5.0", "4.0", "3.0", "2.0", "1.0"), ns.StatsConfig(need_values=True))
    assert agg.values == [5.0, 4.0, 3.0, 2.0, 1.0]

def test_aggregate_skips_invalid_lines(caplog):
    with caplog.at_level(logging.WARNING):
        agg = ns.aggregate_lines(lines("foobar", "4.0", "2.0", "3.0", "5.0", "1.0", "a"), ns.StatsConfig())
    assert (agg.count, agg.min, agg.max, agg.sum, agg.average) == (5, 1.0, 5.0, 15.0, 3.0)
    assert "illegal value. value=foobar" in caplog.text
    assert "illegal value. value=a" in caplog.text

def test_aggregate_uses_injected_logger(caplog):
    log = logging.getLogger("numstat-test-sink")
    with caplog.at_level(logging.WARNING, logger="numstat-test-sink"):
        ns.aggregate_lines(lines("x"), ns.StatsConfig(), log=log)
    assert [r.name for r in caplog.records] == ["numstat-test-sink"]

def test_aggregate_empty_input():
    agg = ns.aggregate_lines(lines(""), ns.StatsConfig())
    assert (agg.count, agg.min, agg.max, agg.sum, agg.average) == (0, 0.0, 0.0, 0.0, 0.0)
    agg = ns.aggregate_lines([], ns.StatsConfig())
    assert agg.count == 0 and agg.min == 0.0

def test_aggregate_max_starts_at_zero():
    agg = ns.aggregate_lines(lines("-3", "-1", "-2"), ns.StatsConfig())
    assert agg.min == -3.0
    assert agg.max == 0.0
    assert agg.average == -2.0

def test_aggregate_trims_spaces_and_line_endings():
    agg = ns.aggregate_lines(["  1.5  \r\n", " 2.5\n", "3"], ns.StatsConfig())
    assert (agg.count, agg.sum) == (3, 7.0)

def test_aggregate_rejects_whitespace_other_than_spaces(caplog):
    with caplog.at_level(logging.WARNING):
        agg = ns.aggregate_lines(["1\n", "5\t\n", "\t7\n", "8\f\n"], ns.StatsConfig())
    assert (agg.count, agg.sum) == (1, 1.0)
    assert caplog.text.count("illegal value") == 3

def test_aggregate_extracted_field_is_not_trimmed():
    agg = ns.aggregate_lines(["1, 2\n", "3,4\n"], ns.StatsConfig(delimiter=",", field_index=2))
    assert (agg.count, agg.sum) == (1, 4.0)

def test_aggregate_nan_skips_min_max():
    agg = ns.aggregate_lines(lines("2", "nan", "5"), ns.StatsConfig())
    assert (agg.count, agg.min, agg.max) == (3, 2.0, 5.0)
    assert math.isnan(agg.sum)

def test_aggregate_header_rows_never_parsed(caplog):
    with caplog.at_level(logging.WARNING):
        agg = ns.aggregate_lines(lines("title", "unit", "10", "20"), ns.StatsConfig(ignore_header_rows=2))
    assert agg.count == 2
    assert agg.sum == 30.0
    assert caplog.text == ""

def test_aggregate_field_index():
    src = lines("val1,val2", "1,2", "3,4", "5,6")
    cfg = ns.StatsConfig(delimiter=",", ignore_header_rows=1)
    a = ns.aggregate_lines(src, cfg, field_index=1)
    assert (a.count, a.min, a.max, a.sum, a.average) == (3, 1.0, 5.0, 9.0, 3.0)
    b = ns.aggregate_lines(src, cfg._replace(field_index=2))
    assert (b.count, b.min, b.max, b.sum, b.average) == (3, 2.0, 6.0, 12.0, 4.0)

class _BrokenSource:
    def __iter__(self):
        yield "1\n"
        yield "2\n"
        raise OSError("device went away")

def test_aggregate_read_failure_is_not_empty_result():
    with pytest.raises(ns.SourceReadError) as exc:
        ns.aggregate_lines(_BrokenSource(), ns.StatsConfig(), location="dev.txt")
    assert exc.value.location == "dev.txt"
    assert isinstance(exc.value.__cause__, OSError)

def test_aggregate_matches_generated_data(tmp_path):
    path = tmp_path / "gen.tsv"
    valid, total = write_numbers(path, 2000, fields=3, invalid_rate=0.1, seed=7, header=True)
    agg = ns.aggregate_path(str(path), ns.StatsConfig(field_index=1, ignore_header_rows=1))
    assert agg.count == valid
    assert agg.sum == total
    assert math.isclose(agg.average, total / valid)

# ---- order statistics ----
def test_median():
    assert ns.median([1.0, 2.0, 3.0, 4.0, 5.0]) == 3.0
    assert ns.median([1.0, 2.0, 3.0, 4.0, 5.0, 6.0]) == 3.0
    assert ns.median([float(i) for i in range(1, 11)]) == 5.0
    assert ns.median([1.0]) == 1.0
    assert ns.median([1.0, 2.0]) == 1.0
    assert ns.median([]) == 0.0

def test_percentile():
    assert ns.percentile([float(i) for i in range(1, 101)], 95) == 95.0
    assert ns.percentile([1.0], 95) == 1.0
    assert ns.percentile([1.0], 0) == 0.0
    assert ns.percentile([1.0], -1) == 0.0
    assert ns.percentile([], 95) == 0.0
    assert ns.percentile([1.0, 2.0, 3.0, 4.0, 5.0], 95) == 4.0
    assert ns.percentile([1.0, 2.0, 3.0, 4.0, 5.0], 100) == 5.0

# ---- summarize_lines ----
def test_summarize_median_and_percentile():
    r = ns.summarize_lines(lines("3", "1", "5", "2", "4"), ns.StatsConfig(want_median=True, percentile_rank=95))
    assert r == ns.AggregationResult(None, 5, 1.0, 5.0, 15.0, 3.0, 3.0, 4.0)

def test_summarize_sorted_hint_skips_sort():
    cfg = ns.StatsConfig(want_median=True, percentile_rank=95, sorted_hint=True)
    r = ns.summarize_lines(lines("1.0", "2.0", "5.0", "3.0", "4.0"), cfg)
    assert (r.median, r.percentile) == (5.0, 3.0)

def test_summarize_without_order_stats():
    r = ns.summarize_lines(lines("1", "2"), ns.StatsConfig(), label="a.txt")
    assert r == ns.AggregationResult("a.txt", 2, 1.0, 2.0, 3.0, 1.5, 0.0, 0.0)

# ---- run_all ----
def _write(path, values):
    path.write_text("".join(f"{v}\n" for v in values))
    return str(path)

def test_run_all_keeps_submission_order(tmp_path):
    a = _write(tmp_path / "a.txt", range(1, 101))
    b = _write(tmp_path / "b.txt", range(1, 6))
    cfg = ns.StatsConfig(want_median=True, percentile_rank=95)
    descs = [ns.SourceDescriptor(0, a), ns.SourceDescriptor(1, b)]
    for workers in (1, 2, 8):
        res = ns.run_all(descs, cfg, workers=workers)
        assert [r.label for r in res] == [a, b]
        assert res[0] == ns.AggregationResult(a, 100, 1.0, 100.0, 5050.0, 50.5, 50.0, 95.0)
        assert res[1] == ns.AggregationResult(b, 5, 1.0, 5.0, 15.0, 3.0, 3.0, 4.0)

def test_run_all_many_sources(tmp_path):
    descs = []
    for i in range(40):
        descs.append(ns.SourceDescriptor(i, _write(tmp_path / f"s{i}.txt", range(1, i + 2))))
    res = ns.run_all(descs, ns.StatsConfig(), workers=4)
    assert [r.count for r in res] == list(range(1, 41))

def test_run_all_open_failure_gives_empty_record(tmp_path, caplog):
    a = _write(tmp_path / "a.txt", [1, 2, 3])
    missing = str(tmp_path / "missing.txt")
    c = _write(tmp_path / "c.txt", [10])
    descs = [ns.SourceDescriptor(0, a), ns.SourceDescriptor(1, missing), ns.SourceDescriptor(2, c)]
    with caplog.at_level(logging.ERROR):
        res = ns.run_all(descs, ns.StatsConfig())
    assert res[1] == ns.AggregationResult.empty(missing)
    assert (res[0].count, res[2].count) == (3, 1)
    assert "cannot open" in caplog.text

def test_run_all_undecodable_line_is_only_skipped(tmp_path, caplog):
    bad = tmp_path / "bad.txt"
    bad.write_bytes(b"1\n2\n\xff\xfe\n3\n")
    with caplog.at_level(logging.WARNING):
        res = ns.run_all([ns.SourceDescriptor(0, str(bad))], ns.StatsConfig())
    assert (res[0].count, res[0].sum) == (3, 6.0)
    assert "illegal value" in caplog.text
    assert "read failed" not in caplog.text

def test_run_all_read_failure_gives_empty_record(tmp_path, caplog, monkeypatch):
    good = _write(tmp_path / "good.txt", [1, 2])
    flaky = _write(tmp_path / "flaky.txt", [1, 2])
    summarize_path = ns.summarize_path
    def fake(path, *args, **kw):
        if path == flaky:
            return ns.summarize_lines(_BrokenSource(), ns.StatsConfig(), label=path)
        return summarize_path(path, *args, **kw)
    monkeypatch.setattr(ns, "summarize_path", fake)
    with caplog.at_level(logging.ERROR):
        res = ns.run_all([ns.SourceDescriptor(0, flaky), ns.SourceDescriptor(1, good)], ns.StatsConfig(), workers=2)
    assert res[0] == ns.AggregationResult.empty(flaky)
    assert res[1].count == 2
    assert "read failed: " + flaky in caplog.text

def test_run_all_per_source_field_index(tmp_path):
    p = _write(tmp_path / "s.csv", ["val1,val2", "1,2", "3,4", "5,6"])
    cfg = ns.StatsConfig(delimiter=",", ignore_header_rows=1)
    res = ns.run_all([ns.SourceDescriptor(0, p, 1), ns.SourceDescriptor(1, p, 2)], cfg, workers=2)
    assert [r.sum for r in res] == [9.0, 12.0]

def test_run_all_no_sources():
    assert ns.run_all([], ns.StatsConfig()) == []

def test_default_workers_positive():
    assert ns.default_workers() >= 1

# ---- output ----
def _two():
    return [
        ns.AggregationResult(None, 2, 1.0, 2.0, 3.0, 1.5, 1.0, 4.0),
        ns.AggregationResult(None, 100, 1.0, 2.0, 3.0, 1.5, 1.0, 95.0),
    ]

def test_format_number():
    assert ns.format_number(1.5) == "1.5"
    assert ns.format_number(3.0) == "3"
    assert ns.format_number(100.0) == "100"
    assert ns.format_number(0.0) == "0"
    assert ns.format_number(2.345678) == "2.35"

def test_format_records_percentile_and_delimiter():
    opts = ns.OutputOptions(percentile_rank=95)
    assert ns.format_records(_two(), opts) == ["2\t1\t2\t3\t1.5\t4", "100\t1\t2\t3\t1.5\t95"]
    opts = ns.OutputOptions(median=True, percentile_rank=95, delimiter=",")
    assert ns.format_records(_two(), opts) == ["2,1,2,3,1.5,1,4", "100,1,2,3,1.5,1,95"]

def test_format_records_filename_column():
    res = [r._replace(label=name) for r, name in zip(_two(), ["foo.txt", "bar.txt"])]
    assert ns.format_records(res, ns.OutputOptions()) == ["foo.txt\t2\t1\t2\t3\t1.5", "bar.txt\t100\t1\t2\t3\t1.5"]
    assert ns.format_records(res, ns.OutputOptions(no_filename=True)) == ["2\t1\t2\t3\t1.5", "100\t1\t2\t3\t1.5"]

def test_format_records_header():
    res = _two()[:1]
    opts = ns.OutputOptions(header=True, delimiter=",")
    assert ns.format_records(res, opts) == ["count,min,max,sum,avg", "2,1,2,3,1.5"]
    opts = ns.OutputOptions(count=False, max=False, header=True, delimiter=",")
    assert ns.format_records(res, opts) == ["min,sum,avg", "1,3,1.5"]
    opts = ns.OutputOptions(median=True, percentile_rank=90, header=True)
    assert ns.header_columns(res, opts) == ["count", "min", "max", "sum", "avg", "median", "90percentile"]

def test_write_output(tmp_path):
    buf = io.StringIO()
    ns.write_output(["1", "2"], stream=buf)
    assert buf.getvalue() == "1\n2\n"
    out = tmp_path / "out.tsv"
    out.write_text("old content that is longer\n")
    ns.write_output(["3"], str(out))
    assert out.read_text() == "3\n"
    with pytest.raises(OSError):
        ns.write_output([], str(tmp_path / "nodir" / "out.tsv"))

# ---- options ----
@pytest.mark.parametrize("value,expected", [
    ("1:foobar1.txt", (1, "foobar1.txt")),
    ("foobar2.txt", (1, "foobar2.txt")),
    ("   foobar3.txt   ", (1, "   foobar3.txt   ")),
    (" 2 : foobar4.txt ", (2, " foobar4.txt ")),
])
def test_parse_field_file_path(value, expected):
    assert ns.parse_field_file_path(value) == expected

@pytest.mark.parametrize("value", ["1.5:foobar.txt", "0:foobar.txt", "-1:foobar.txt", ":foobar.txt", "1:", ":", " : ", ""])
def test_parse_field_file_path_rejects(value):
    with pytest.raises(argparse.ArgumentTypeError):
        ns.parse_field_file_path(value)

def _resolve(argv):
    return ns.resolve_options(ns.build_parser().parse_args(argv))

def test_resolve_defaults():
    config, out = _resolve([])
    assert (out.count, out.min, out.max, out.sum, out.average, out.median) == (True, True, True, True, True, False)
    assert out.percentile_rank == 0
    assert config == ns.StatsConfig()

def test_resolve_selected_only():
    _, out = _resolve(["--count"])
    assert (out.count, out.min, out.max, out.sum, out.average) == (True, False, False, False, False)
    config, out = _resolve(["-n", "-u", "-s", "-I", "2", "-d", ","])
    assert (out.count, out.min, out.max, out.sum) == (False, True, False, True)
    assert config.sorted_hint and config.ignore_header_rows == 2 and config.delimiter == ","

def test_resolve_percentile_clamped(caplog):
    with caplog.at_level(logging.WARNING):
        config, out = _resolve(["-p", "150"])
    assert config.percentile_rank == out.percentile_rank == 100
    assert config.need_values
    assert "percentile is from 1 to 100" in caplog.text
    _, out = _resolve(["-p", "95"])
    assert not out.count

def test_collect_sources_field_files_replace_positional():
    args = ns.build_parser().parse_args(["data", "-f", "sample.txt", "-f", "2:sample2.txt"])
    assert ns.collect_sources(args) == [ns.SourceDescriptor(0, "sample.txt", 1), ns.SourceDescriptor(1, "sample2.txt", 2)]
    args = ns.build_parser().parse_args(["-F", "3", "a", "b"])
    assert ns.collect_sources(args) == [ns.SourceDescriptor(0, "a", 3), ns.SourceDescriptor(1, "b", 3)]
