#!/usr/bin/env python3
import random, sys
from pathlib import Path
from typing import Tuple

# Usage: python make_numbers.py out.txt rows fields invalid_rate seed
# Example: python make_numbers.py /tmp/nums_1gb.txt 50_000_000 3 0.01 1337

INVALID_TOKENS = ("NA", "-", "n/a", "x1", "")

def write_numbers(out, rows: int, fields: int = 1, invalid_rate: float = 0.0, seed: int = 1337,
                  header: bool = False, delimiter: str = "\t") -> Tuple[int, float]:
    """Write rows of delimited numbers; returns (valid count, sum) of the first field."""
    rng = random.Random(seed)
    valid = 0
    total = 0.0
    p = Path(out)
    with p.open("w", encoding="utf-8") as f:
        if header:
            f.write(delimiter.join(f"v{i}" for i in range(fields)) + "\n")
        rr = rng.random
        ri = rng.randint
        ru = rng.uniform
        for _ in range(rows):
            row = []
            for i in range(fields):
                if rr() < invalid_rate:
                    cell = rng.choice(INVALID_TOKENS)
                elif rr() < 0.5:
                    cell = str(ri(-10**6, 10**6))
                else:
                    cell = f"{ru(-1e6, 1e6):.6f}"
                row.append(cell)
            first = row[0]
            if first not in INVALID_TOKENS:
                valid += 1
                total += float(first)
            f.write(delimiter.join(row) + "\n")
    return valid, total

def main():
    if len(sys.argv) != 6:
        print("Usage: python make_numbers.py out.txt rows fields invalid_rate seed", file=sys.stderr)
        sys.exit(2)
    out, rows, fields, invalid_rate, seed = (
        sys.argv[1], int(sys.argv[2].replace('_', '')), int(sys.argv[3]),
        float(sys.argv[4]), int(sys.argv[5])
    )
    valid, total = write_numbers(out, rows, fields, invalid_rate, seed)
    print(f"{out}: {rows:,} rows, {valid:,} valid in field 1, sum {total:,.3f}", file=sys.stderr)

if __name__ == "__main__":
    main()
