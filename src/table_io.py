import csv
import io
import re
from pathlib import Path
from typing import FrozenSet, Iterable, List, Sequence, Tuple, Union

PathLike = Union[str, Path]


def read_text(path: PathLike) -> str:
    # utf-8-sig drops the BOM spreadsheet exports like to add
    with open(path, "r", encoding="utf-8-sig", newline="") as f:
        return f.read()


def parse_table(text: str) -> List[List[str]]:
    """Rows of cells from CSV or TSV text; the first line decides the delimiter."""
    first_line = text.split("\n", 1)[0]
    delimiter = "\t" if "\t" in first_line else ","
    return [row for row in csv.reader(io.StringIO(text), delimiter=delimiter)]


def read_table(path: PathLike) -> List[List[str]]:
    return parse_table(read_text(path))


def write_table(path: PathLike, header: Sequence[str], rows: Iterable[Sequence[str]]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(header)
        writer.writerows(rows)
    return path


def parse_id_list(text: str) -> FrozenSet[str]:
    """Student ids from newline-delimited text or from a CSV with a student_id column."""
    text = text or ""
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines:
        return frozenset()
    header = [c.strip().lower() for c in next(csv.reader([lines[0]]))]
    if "student_id" in header:
        col = header.index("student_id")
        ids = set()
        for row in csv.reader(lines[1:]):
            if col < len(row) and row[col].strip():
                ids.add(row[col].strip())
        return frozenset(ids)
    return frozenset(lines)


def parse_keyword_list(text: str) -> Tuple[str, ...]:
    return tuple(line.strip() for line in (text or "").splitlines() if line.strip())


def school_slug(name: str) -> str:
    slug = re.sub(r"\s+", "_", (name or "").strip().lower())
    return re.sub(r"[^a-z0-9_]", "", slug)


def output_filename(school_name: str, table: str) -> str:
    slug = school_slug(school_name)
    return f"{slug}_{table}.csv" if slug else f"{table}.csv"
