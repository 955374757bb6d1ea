"""
Provenance hashing.

SHA-256 over three things the engine must be able to vouch for:
- corpus files listed in data/corpus/manifest.json
- scoring parameter tables (canonical JSON of the params dict)
- analyzer results (canonical JSON of the result body)

Manifest entries may be stored truncated; a listed hash matches when it is
a case-insensitive prefix of the file's full digest.
"""

import hashlib
from pathlib import Path
from typing import Any, Dict, Iterable, Union

from governance.canonical_json import canonical_dumps

SHORT_HASH_LENGTH = 16


def hash_file(path: Union[str, Path]) -> str:
    """Full lowercase SHA-256 hex digest of a file (FileNotFoundError if absent)."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def hash_corpus_files(data_dir: Union[str, Path], filenames: Iterable[str]) -> Dict[str, str]:
    """{filename: sha256} for the named files in data_dir, in filename order."""
    data_dir = Path(data_dir)
    return {name: hash_file(data_dir / name) for name in sorted(filenames)}


def hash_matches(actual: str, listed: Any) -> bool:
    """True when a manifest entry (possibly truncated) matches a full digest."""
    listed = str(listed or "").strip().lower()
    return bool(listed) and actual.lower().startswith(listed)


def hash_canonical_json(obj: Any) -> str:
    """
    SHA-256 of the compact canonical JSON form of obj.

    Raises:
        ValueError: NaN / Infinity anywhere in obj
        TypeError: Value with no canonical JSON form
    """
    return hashlib.sha256(canonical_dumps(obj, indent=None).encode("utf-8")).hexdigest()


def hash_canonical_json_short(obj: Any, length: int = SHORT_HASH_LENGTH) -> str:
    return hash_canonical_json(obj)[:length]


def combine_file_hashes(file_hashes: Dict[str, str], length: int = SHORT_HASH_LENGTH) -> str:
    """
    Corpus content hash: one short hash over the {filename: sha256} mapping.

    Key order does not matter, so the same set of files always yields the
    same corpus content hash.
    """
    return hash_canonical_json_short(dict(file_hashes), length=length)
