from __future__ import annotations

import hashlib
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

LOGGER = logging.getLogger("bundleforge.provenance")

SIDECAR_SUFFIX = ".prov.json"


def hash_file(path: Path | str, *, chunk_size: int = 1 << 20) -> Optional[str]:
    """Return the SHA256 digest for ``path`` or ``None`` when the file is missing."""
    file_path = Path(path)
    if not file_path.exists():
        LOGGER.warning("Provenance hash skipped; file missing: %s", file_path)
        return None

    digest = hashlib.sha256()
    with file_path.open("rb") as handle:
        while True:
            chunk = handle.read(chunk_size)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


@dataclass(frozen=True)
class ProvenanceStamp:
    target: str
    source: str
    timestamp: float = field(default_factory=lambda: time.time())
    stamp_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    inputs: Dict[str, Any] = field(default_factory=dict)
    file_hash: Optional[str] = None
    sidecar_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.stamp_id,
            "target": self.target,
            "source": self.source,
            "timestamp": self.timestamp,
            "inputs": dict(self.inputs),
            "file_hash": self.file_hash,
            "sidecar_path": self.sidecar_path,
        }


def sidecar_for(path: Path | str) -> Path:
    file_path = Path(path)
    return file_path.with_suffix(file_path.suffix + SIDECAR_SUFFIX)


def stamp_path(
    path: Path | str,
    *,
    source: str,
    inputs: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Hash ``path`` and write a ``.prov.json`` sidecar describing how it was made."""
    file_path = Path(path).resolve()
    stamp = ProvenanceStamp(
        target=file_path.as_posix(),
        source=source,
        inputs=dict(inputs or {}),
        file_hash=hash_file(file_path),
    )
    sidecar = sidecar_for(file_path)
    sidecar.write_text(
        json.dumps({"provenance": stamp.to_dict()}, indent=2, ensure_ascii=False),
        encoding="utf-8",
    )
    LOGGER.debug("Wrote provenance sidecar %s", sidecar)

    result = stamp.to_dict()
    result["sidecar_path"] = sidecar.as_posix()
    return result


__all__ = ["ProvenanceStamp", "hash_file", "sidecar_for", "stamp_path"]
