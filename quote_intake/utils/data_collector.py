"""
Data Collector
==============
Flattens intake outcomes (dicts, or objects with ``to_dict()``) into CSV rows.
Columns are JSON paths in dot notation:

    "record.contact.email"
    "record.shipment.destination_options[*]"   # every list element, joined
    "warnings[0]"                              # 0-based index

Missing keys give empty cells; list values are joined with ``join_sep``.

Public API
----------
- get_values_by_path(obj, path) -> list
- get_value_by_path_joined(obj, path, join_sep=" | ") -> str
- extract_rows(records, columns, join_sep=" | ") -> list[dict]
- write_csv(rows, headers, output_csv, encoding="utf-8-sig") -> None
- collect_and_write(records, columns, output_csv, join_sep=" | ") -> None
"""
from __future__ import annotations

import csv
import json
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

Columns = Union[Sequence[str], Dict[str, str]]


def _tokenize(path: str) -> List[Tuple[str, Optional[str]]]:
    """Split a.b[0].c[*] into [("a", None), ("b", "0"), ("c", "*")]."""
    tokens: List[Tuple[str, Optional[str]]] = []
    for part in path.split("."):
        idx = None
        if "[" in part and part.endswith("]"):
            part, idx = part[:-1].split("[", 1)
        tokens.append((part, idx))
    return tokens


def _is_primitive(x: Any) -> bool:
    return x is None or isinstance(x, (str, int, float, bool))


def _stringify(x: Any) -> str:
    if x is None:
        return ""
    if _is_primitive(x):
        return str(x)
    return json.dumps(x, ensure_ascii=False, default=str)


def _as_dict(record: Any) -> Dict[str, Any]:
    if isinstance(record, dict):
        return record
    to_dict = getattr(record, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    raise TypeError(f"cannot collect {type(record).__name__}; expected a dict or an object with to_dict()")


def _step(values: List[Any], key: str, idx: Optional[str]) -> List[Any]:
    out = [v.get(key) if isinstance(v, dict) else None for v in values]
    if idx is None:
        return out
    if idx == "*":
        flat: List[Any] = []
        for v in out:
            flat.extend(v if isinstance(v, list) else [v])
        return flat
    if not idx.isdigit():
        return out
    i = int(idx)
    return [v[i] if isinstance(v, list) and i < len(v) else None for v in out]


def get_values_by_path(obj: Dict[str, Any], path: str) -> List[Any]:
    """All values at a JSON path, honouring [*] and [N]."""
    current: List[Any] = [obj]
    for key, idx in _tokenize(path):
        current = _step(current, key, idx)
    return current


def get_value_by_path_joined(obj: Dict[str, Any], path: str, join_sep: str = " | ") -> str:
    vals = [v for v in get_values_by_path(obj, path) if v is not None]
    if len(vals) == 1 and not isinstance(vals[0], list):
        return _stringify(vals[0])
    flat: List[Any] = []
    for v in vals:
        flat.extend(v if isinstance(v, list) else [v])
    return join_sep.join(_stringify(x) for x in flat if x is not None)


def _normalize_columns(columns: Columns) -> Tuple[List[str], List[str]]:
    """A list of paths (header = path) or a {header: path} mapping."""
    if isinstance(columns, dict):
        headers = list(columns)
        return headers, [columns[h] for h in headers]
    return list(columns), list(columns)


def extract_rows(records: Iterable[Any], columns: Columns, *, join_sep: str = " | ") -> List[Dict[str, str]]:
    headers, paths = _normalize_columns(columns)
    rows = []
    for record in records:
        obj = _as_dict(record)
        rows.append({h: get_value_by_path_joined(obj, p, join_sep=join_sep) for h, p in zip(headers, paths)})
    return rows


def write_csv(rows: Iterable[Dict[str, str]], headers: Sequence[str], output_csv: str, *,
              encoding: str = "utf-8-sig") -> None:
    # utf-8-sig so spreadsheet tools detect the encoding
    with open(output_csv, "w", newline="", encoding=encoding) as f:
        writer = csv.DictWriter(f, fieldnames=list(headers))
        writer.writeheader()
        writer.writerows(rows)


def collect_and_write(records: Iterable[Any], columns: Columns, output_csv: str, *, join_sep: str = " | ") -> None:
    rows = extract_rows(list(records), columns, join_sep=join_sep)
    headers, _ = _normalize_columns(columns)
    write_csv(rows, headers, output_csv)
