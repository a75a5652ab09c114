from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd


def _ensure_exists(path: Path) -> Path:
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    return path


def read_text(path: str | Path, encoding: str = "utf-8") -> str:
    p = _ensure_exists(Path(path))
    return p.read_text(encoding=encoding)


def write_text(path: str | Path, text: str, encoding: str = "utf-8") -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text, encoding=encoding)


def read_json(path: str | Path) -> Any:
    p = _ensure_exists(Path(path))
    with open(p, "r", encoding="utf-8") as f:
        return json.load(f)


def read_json_object(path: str | Path, default: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Read a JSON object, falling back to `default` when the file is absent."""
    p = Path(path)
    if not p.exists():
        return dict(default or {})
    data = read_json(p)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object in {p}, got {type(data).__name__}.")
    return data


def write_json(path: str | Path, obj: Any, indent: int = 2) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "w", encoding="utf-8") as f:
        json.dump(obj, f, ensure_ascii=False, indent=indent)


def write_segment_records(path: str | Path, rows: List[Dict[str, Any]]) -> Path:
    """Write segment records as CSV (pandas) or JSON, chosen by file suffix."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    if p.suffix.lower() == ".csv":
        df = pd.DataFrame(rows, columns=list(rows[0].keys()) if rows else None)
        df.to_csv(p, index=False, encoding="utf-8")
    else:
        write_json(p, rows)
    return p


def read_segment_records(path: str | Path) -> List[Dict[str, Any]]:
    p = _ensure_exists(Path(path))
    if p.suffix.lower() == ".csv":
        df = pd.read_csv(p, keep_default_na=False)
        return df.to_dict(orient="records")
    data = read_json(p)
    return list(data or [])
