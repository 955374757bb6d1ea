"""
governance - provenance for the opportunity scoring engine.

- canonical_json: byte-stable serialization of analyzer results
- hashing: corpus file hashes, manifest matching, result content hashes
- params_loader: versioned scoring tables (params_archive/) and their hash
"""

from governance.canonical_json import canonical_dumps, to_canonical
from governance.hashing import (
    combine_file_hashes,
    hash_canonical_json,
    hash_canonical_json_short,
    hash_corpus_files,
    hash_file,
    hash_matches,
)
from governance.params_loader import (
    DEFAULT_SCORE_VERSION,
    ParamsLoadError,
    ParamsValidationError,
    compute_parameters_hash,
    load_and_validate_params,
    load_params,
)

__all__ = [
    "canonical_dumps",
    "to_canonical",
    "combine_file_hashes",
    "hash_canonical_json",
    "hash_canonical_json_short",
    "hash_corpus_files",
    "hash_file",
    "hash_matches",
    "DEFAULT_SCORE_VERSION",
    "ParamsLoadError",
    "ParamsValidationError",
    "compute_parameters_hash",
    "load_and_validate_params",
    "load_params",
]
