"""UTF-8 text and JSON file helpers shared by the ledger and the artifact store."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

PathLike = Path | str


def _as_path(path: PathLike) -> Path:
    return path if isinstance(path, Path) else Path(path)


def read_text(path: PathLike, errors: str = "strict", **kwargs: Any) -> str:
    """Read path as text with UTF-8 encoding. Forwards extra kwargs to Path.read_text."""
    return _as_path(path).read_text(encoding="utf-8", errors=errors, **kwargs)


def write_text(path: PathLike, text: str, **kwargs: Any) -> None:
    """Write text to path with UTF-8 encoding, creating parent directories."""
    p = _as_path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text, encoding="utf-8", **kwargs)


def dump_json(data: Any) -> str:
    """Serialize *data* the way every file in this project is written (2-space indent)."""
    return json.dumps(data, indent=2, ensure_ascii=False)


def write_bytes_atomic(path: PathLike, data: bytes) -> None:
    """Write through a temp file + rename so readers never see a partial file."""
    p = _as_path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{p.name}.", dir=p.parent)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.replace(tmp_name, p)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def write_json_atomic(path: PathLike, data: Any) -> None:
    write_bytes_atomic(path, (dump_json(data) + "\n").encode("utf-8"))
