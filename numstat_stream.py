#!/usr/bin/env python3
import sys, os, math, argparse, logging, queue, threading
from typing import Callable, Iterable, List, NamedTuple, Optional, TextIO, Tuple

import psutil

__version__ = "1.0.0"

logger = logging.getLogger(__name__)

class NumstatError(Exception):
    pass

class SourceReadError(NumstatError):
    """A source failed while being read (not a parse failure)."""
    def __init__(self, location: str, cause: BaseException):
        super().__init__(f"read failed: {location}: {cause}")
        self.location = location

# ---- Data model ----
class StatsConfig(NamedTuple):
    need_values: bool = False
    delimiter: str = "\t"
    field_index: int = 0  # 1-based, <= 0 means whole line
    ignore_header_rows: int = 0
    sorted_hint: bool = False
    percentile_rank: int = 0  # 0 disables
    want_median: bool = False

    @property
    def wants_order_stats(self) -> bool:
        return self.want_median or self.percentile_rank > 0

class SourceDescriptor(NamedTuple):
    index: int
    location: str
    field_index: int = 0

class Aggregate(NamedTuple):
    count: int
    min: float
    max: float
    sum: float
    average: float
    values: List[float]

class AggregationResult(NamedTuple):
    label: Optional[str] = None
    count: int = 0
    min: float = 0.0
    max: float = 0.0
    sum: float = 0.0
    average: float = 0.0
    median: float = 0.0
    percentile: float = 0.0

    @classmethod
    def empty(cls, label: Optional[str] = None) -> "AggregationResult":
        return cls(label=label)

# ---- Field extraction ----
def extract_field(line: str, delimiter: str, field_index: int) -> str:
    """Return the 1-based field of line, or line itself when there is nothing to cut."""
    if field_index <= 0 or line == "":
        return line
    parts = list(line) if delimiter == "" else line.split(delimiter)  # "" cuts per character
    if len(parts) <= 1:
        return line
    n = field_index - 1
    if n < 0: n = 0
    if n >= len(parts):
        return line
    return parts[n]

# ---- Running aggregate ----
class RunningAggregate:
    __slots__ = ("count", "min", "max", "sum", "keep_values", "values")
    def __init__(self, keep_values: bool = False):
        self.count = 0
        self.min = math.inf
        self.max = 0.0  # not -inf: all-negative input reports 0
        self.sum = 0.0
        self.keep_values = keep_values
        self.values: List[float] = []
    def add(self, x: float):
        # strict compares: a NaN value never becomes min or max, but does reach sum
        if x < self.min: self.min = x
        if x > self.max: self.max = x
        self.sum += x
        self.count += 1
        if self.keep_values:
            self.values.append(x)
    def result(self) -> Aggregate:
        if self.count == 0:
            return Aggregate(0, 0.0, self.max, 0.0, 0.0, self.values)
        return Aggregate(self.count, self.min, self.max, self.sum, self.sum / self.count, self.values)

def aggregate_lines(lines: Iterable[str], config: StatsConfig, field_index: Optional[int] = None,
                    log: Optional[logging.Logger] = None, location: str = "<stdin>") -> Aggregate:
    """Stream lines into count/min/max/sum/average.

    Header rows are skipped without being looked at; lines that do not parse
    as a float are reported and left out. Values are kept only when
    config.need_values is set. A failure of the line source itself raises
    SourceReadError.
    """
    log = log or logger
    idx = config.field_index if field_index is None else field_index
    agg = RunningAggregate(keep_values=config.need_values)
    skipped = 0
    try:
        for raw in lines:
            if skipped < config.ignore_header_rows:
                skipped += 1
                continue
            line = raw.rstrip("\r\n").strip(" ")
            cell = extract_field(line, config.delimiter, idx)
            try:
                if cell != cell.strip():
                    raise ValueError(cell)  # only spaces around the line are trimmed
                x = float(cell)
            except ValueError:
                log.warning("illegal value. value=%s", cell)
                continue
            agg.add(x)
    except (OSError, UnicodeDecodeError) as e:
        raise SourceReadError(location, e) from e
    return agg.result()

def aggregate_path(path: str, config: StatsConfig, field_index: Optional[int] = None,
                   log: Optional[logging.Logger] = None) -> Aggregate:
    with open(path, encoding="utf-8", errors="surrogateescape", buffering=1024*1024) as f:
        return aggregate_lines(f, config, field_index, log, location=path)

# ---- Order statistics (input must be sorted ascending) ----
def median(values: List[float]) -> float:
    l = len(values)
    if l == 0:
        return 0.0
    if l % 2 == 1:
        return values[l // 2]
    return values[l // 2 - 1]  # lower middle element, not the mean of the pair

def percentile(values: List[float], rank: int) -> float:
    if rank <= 0 or not values:
        return 0.0
    i = len(values) * rank // 100 - 1
    if i < 0: i = 0
    return values[i]

def summarize_lines(lines: Iterable[str], config: StatsConfig, label: Optional[str] = None,
                    field_index: Optional[int] = None, log: Optional[logging.Logger] = None,
                    location: Optional[str] = None) -> AggregationResult:
    """Aggregate one source and fill in median/percentile when requested."""
    order_stats = config.wants_order_stats
    if order_stats and not config.need_values:
        config = config._replace(need_values=True)
    agg = aggregate_lines(lines, config, field_index, log, location=location or label or "<stdin>")
    med = pct = 0.0
    if order_stats:
        values = agg.values
        if not config.sorted_hint:
            values.sort()
        if config.want_median:
            med = median(values)
        if config.percentile_rank > 0:
            pct = percentile(values, config.percentile_rank)
    return AggregationResult(label, agg.count, agg.min, agg.max, agg.sum, agg.average, med, pct)

def summarize_path(path: str, config: StatsConfig, field_index: Optional[int] = None,
                   log: Optional[logging.Logger] = None) -> AggregationResult:
    with open(path, encoding="utf-8", errors="surrogateescape", buffering=1024*1024) as f:
        return summarize_lines(f, config, label=path, field_index=field_index, log=log, location=path)

# ---- Multi-source scheduler ----
def default_workers() -> int:
    return psutil.cpu_count(logical=True) or os.cpu_count() or 1

def run_all(descriptors: List[SourceDescriptor], config: StatsConfig,
            log: Optional[logging.Logger] = None, workers: Optional[int] = None) -> List[AggregationResult]:
    """Summarize every source on a fixed pool of threads.

    Each descriptor owns slot descriptor.index of the result list, so the
    returned list follows submission order whatever the completion order.
    A source that cannot be opened or read yields an empty record with its
    label; the other sources are unaffected.
    """
    log = log or logger
    if not descriptors:
        return []
    results: List[Optional[AggregationResult]] = [None] * len(descriptors)
    pending: "queue.Queue[SourceDescriptor]" = queue.Queue(maxsize=len(descriptors))
    for d in descriptors:
        pending.put_nowait(d)

    def worker():
        while True:
            try:
                d = pending.get_nowait()
            except queue.Empty:  # preloaded, so empty means done
                return
            try:
                res = summarize_path(d.location, config, d.field_index, log)
            except SourceReadError as e:
                log.error("%s", e)
                res = AggregationResult.empty(d.location)
            except OSError as e:
                log.error("cannot open %s: %s", d.location, e)
                res = AggregationResult.empty(d.location)
            results[d.index] = res
            log.debug("%s: done on %s (count=%d)", d.location, threading.current_thread().name, res.count)

    width = workers or default_workers()
    threads = [threading.Thread(target=worker, name=f"numstat-worker-{i}", daemon=True) for i in range(width)]
    for th in threads:
        th.start()
    for th in threads:
        th.join()
    missing = [d.location for d in descriptors if results[d.index] is None]
    if missing:
        raise NumstatError(f"no result for: {', '.join(missing)}")
    return results  # type: ignore[return-value]

# ---- Output ----
class OutputOptions(NamedTuple):
    count: bool = True
    min: bool = True
    max: bool = True
    sum: bool = True
    average: bool = True
    median: bool = False
    percentile_rank: int = 0
    no_filename: bool = False
    header: bool = False
    delimiter: str = "\t"

def format_number(x: float) -> str:
    # two decimals, trailing zeros and dot dropped: 1.50 -> 1.5, 3.00 -> 3
    s = f"{x:.2f}"
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    return s

def _columns(results: List[AggregationResult], opts: OutputOptions) -> List[Tuple[str, Callable[[AggregationResult], str]]]:
    labelled = bool(results) and bool(results[0].label) and not opts.no_filename
    cols = [
        ("filename", labelled, lambda r: r.label or ""),
        ("count", opts.count, lambda r: str(r.count)),
        ("min", opts.min, lambda r: format_number(r.min)),
        ("max", opts.max, lambda r: format_number(r.max)),
        ("sum", opts.sum, lambda r: format_number(r.sum)),
        ("avg", opts.average, lambda r: format_number(r.average)),
        ("median", opts.median, lambda r: format_number(r.median)),
        (f"{opts.percentile_rank}percentile", opts.percentile_rank > 0, lambda r: format_number(r.percentile)),
    ]
    return [(key, fn) for key, enabled, fn in cols if enabled]

def header_columns(results: List[AggregationResult], opts: OutputOptions) -> List[str]:
    return [key for key, _ in _columns(results, opts)]

def format_records(results: List[AggregationResult], opts: OutputOptions) -> List[str]:
    cols = _columns(results, opts)
    lines = []
    if opts.header:
        lines.append(opts.delimiter.join(key for key, _ in cols))
    for r in results:
        lines.append(opts.delimiter.join(fn(r) for _, fn in cols))
    return lines

def write_output(lines: List[str], outfile: Optional[str] = None, stream: Optional[TextIO] = None):
    text = "".join(line + "\n" for line in lines)
    if outfile is None:
        (stream or sys.stdout).write(text)
        return
    with open(outfile, "w", encoding="utf-8") as f:
        f.write(text)

# ---- CLI ----
def parse_field_file_path(value: str) -> Tuple[int, str]:
    """Parse '[N:]PATH'. PATH alone means field 1; the path is kept verbatim."""
    if value.strip() == "":
        raise argparse.ArgumentTypeError("empty value is not allowed")
    if ":" not in value:
        return (1, value)
    idx_s, _, path = value.partition(":")
    idx_s = idx_s.strip()
    if idx_s == "" or path == "":
        raise argparse.ArgumentTypeError(f"value is empty. index={idx_s} filename={path}")
    try:
        idx = int(idx_s)
    except ValueError:
        raise argparse.ArgumentTypeError(f"field index must be an integer before ':'. input={idx_s}")
    if idx < 1:
        raise argparse.ArgumentTypeError(f"field index must be 1 or more. input={idx}")
    return (idx, path)

def _non_negative_int(value: str) -> int:
    n = int(value)
    if n < 0:
        raise argparse.ArgumentTypeError(f"must be 0 or more. input={n}")
    return n

def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="numstat", description="Streaming count/min/max/sum/avg/median/percentile over numeric lines")
    ap.add_argument("files", nargs="*", help="Input files (stdin when none given)")
    ap.add_argument("-v", "--version", action="version", version=__version__)
    ap.add_argument("-N", "--nofilename", action="store_true", help="Do not print the source file name")
    ap.add_argument("-c", "--count", action="store_true", help="Print the number of values")
    ap.add_argument("-n", "--min", action="store_true", help="Print the minimum")
    ap.add_argument("-x", "--max", action="store_true", help="Print the maximum")
    ap.add_argument("-u", "--sum", action="store_true", help="Print the sum")
    ap.add_argument("-a", "--avg", action="store_true", help="Print the average")
    ap.add_argument("-m", "--median", action="store_true", help="Print the median (keeps all values in memory)")
    ap.add_argument("-p", "--percentile", type=int, default=0, help="Print the Nth percentile (1-100)")
    ap.add_argument("-s", "--sorted", action="store_true", help="Input is already sorted; skip sorting")
    ap.add_argument("-H", "--header", action="store_true", help="Print a header line")
    ap.add_argument("-d", "--indelimiter", default="\t", help="Input field delimiter (default TAB)")
    ap.add_argument("-D", "--outdelimiter", default="\t", help="Output delimiter (default TAB)")
    ap.add_argument("-o", "--outfile", default=None, help="Write output to this file (overwrite)")
    ap.add_argument("-F", "--field", type=_non_negative_int, default=0, help="1-based field to read from each line (0 = whole line)")
    ap.add_argument("-f", "--fieldfilepath", dest="field_files", type=parse_field_file_path, action="append", default=[],
                    metavar="[N:]PATH", help="Input file with its own field index; replaces positional files")
    ap.add_argument("-I", "--ignoreheader", type=_non_negative_int, default=0, help="Skip this many leading rows of every input")
    ap.add_argument("--verbose", action="store_true", help="Debug diagnostics on stderr")
    return ap

def resolve_options(args: argparse.Namespace, log: Optional[logging.Logger] = None) -> Tuple[StatsConfig, OutputOptions]:
    log = log or logger
    count, mn, mx, sm, avg = args.count, args.min, args.max, args.sum, args.avg
    if not (count or mn or mx or sm or avg or args.median or args.percentile > 0):
        count = mn = mx = sm = avg = True
    rank = args.percentile
    if rank > 100:
        log.warning("percentile is from 1 to 100. percentile=%d", rank)
        rank = 100
    if rank < 0: rank = 0
    config = StatsConfig(
        need_values=args.median or rank > 0,
        delimiter=args.indelimiter,
        field_index=args.field,
        ignore_header_rows=args.ignoreheader,
        sorted_hint=args.sorted,
        percentile_rank=rank,
        want_median=args.median,
    )
    out = OutputOptions(
        count=count, min=mn, max=mx, sum=sm, average=avg, median=args.median,
        percentile_rank=rank, no_filename=args.nofilename, header=args.header,
        delimiter=args.outdelimiter,
    )
    return config, out

def collect_sources(args: argparse.Namespace) -> List[SourceDescriptor]:
    if args.field_files:
        return [SourceDescriptor(i, path, idx) for i, (idx, path) in enumerate(args.field_files)]
    return [SourceDescriptor(i, path, args.field) for i, path in enumerate(args.files)]

def run(args: argparse.Namespace, log: logging.Logger) -> int:
    config, out_opts = resolve_options(args, log)
    sources = collect_sources(args)
    if sources:
        results = run_all(sources, config, log)
    else:
        if hasattr(sys.stdin, "reconfigure"):
            sys.stdin.reconfigure(errors="surrogateescape")
        try:
            results = [summarize_lines(sys.stdin, config, log=log)]
        except SourceReadError as e:
            log.error("%s", e)
            return 1
    lines = format_records(results, out_opts)
    try:
        write_output(lines, args.outfile)
    except OSError as e:
        log.error("cannot write %s: %s", args.outfile, e)
        return 1
    return 0

def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    # one handler per run, removed when the run ends
    log = logging.getLogger(f"{__name__}.run")
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    log.addHandler(handler)
    log.setLevel(logging.DEBUG if args.verbose else logging.WARNING)
    try:
        return run(args, log)
    finally:
        log.removeHandler(handler)

if __name__ == "__main__":
    sys.exit(main())
