from __future__ import annotations

"""
Deterministic archive helpers shared by the packager and the build log.

ZIP entries are sorted and stamped with a fixed epoch and fixed modes so the
same inputs always produce byte-identical bundles, which is what lets bundle
file names carry their own content hash.
"""

import hashlib
import io
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Tuple
from zipfile import ZIP_DEFLATED, ZipFile, ZipInfo

ZIP_EPOCH: Tuple[int, int, int, int, int, int] = (2025, 1, 1, 0, 0, 0)


class DeterministicZipBuilder:
    """Collect ZIP entries and render them with deterministic metadata."""

    def __init__(self) -> None:
        self._file_entries: List[Tuple[str, Path, int]] = []
        self._byte_entries: List[Tuple[str, bytes, int]] = []

    def __len__(self) -> int:
        return len(self._file_entries) + len(self._byte_entries)

    def add_file(self, arcname: str, source: Path, *, mode: int = 0o644) -> None:
        self._file_entries.append((arcname, source, mode))

    def add_bytes(self, arcname: str, payload: bytes, *, mode: int = 0o644) -> None:
        self._byte_entries.append((arcname, payload, mode))

    def build(self) -> bytes:
        buffer = io.BytesIO()
        with ZipFile(buffer, "w", compression=ZIP_DEFLATED, compresslevel=9) as zf:
            for arcname, source, mode in sorted(
                self._file_entries, key=lambda item: item[0]
            ):
                info = ZipInfo(arcname)
                info.date_time = ZIP_EPOCH
                info.compress_type = ZIP_DEFLATED
                info.external_attr = mode << 16
                with source.open("rb") as handle:
                    zf.writestr(info, handle.read())
            for arcname, payload, mode in sorted(
                self._byte_entries, key=lambda item: item[0]
            ):
                info = ZipInfo(arcname)
                info.date_time = ZIP_EPOCH
                info.compress_type = ZIP_DEFLATED
                info.external_attr = mode << 16
                zf.writestr(info, payload)
        buffer.seek(0)
        return buffer.read()


def sha256_bytes(payload: bytes) -> str:
    return hashlib.sha256(payload).hexdigest()


def append_json_log(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    line = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(line + os.linesep)


__all__ = [
    "DeterministicZipBuilder",
    "ZIP_EPOCH",
    "append_json_log",
    "sha256_bytes",
]
