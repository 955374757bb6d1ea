"""
Build data/corpus/indications.json from the curated indication sheet.

Reads data/sources/indications.csv (list columns are pipe-delimited),
validates it, writes the JSON the corpus loader reads, then refreshes
manifest.json so the file hashes match again.

Validation:
- name, therapy_area and us_prevalence are required
- names are unique (case-insensitive)
- diagnosis_rate / treatment_rate within [0, 1]
- prevalence / incidence are non-negative integers
- product categories are pharma / device / diagnostic

Usage:
    python scripts/build_indication_corpus.py
    python scripts/build_indication_corpus.py --input my_sheet.csv --dry-run
    python scripts/build_indication_corpus.py --refresh-manifest   # hashes only
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List

import pandas as pd

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from common.logging_config import LogContext, settings_from_env, setup_logging  # noqa: E402
from reference_corpus import CORPUS_FILES, MANIFEST_FILE, PRODUCT_CATEGORIES, write_manifest  # noqa: E402

logger = logging.getLogger(__name__)

DEFAULT_INPUT = ROOT / "data" / "sources" / "indications.csv"
DEFAULT_CORPUS_DIR = ROOT / "data" / "corpus"

TEXT_COLUMNS = ["prevalence_source", "market_growth_driver", "pricing_context"]
REQUIRED_COLUMNS = [
    "name", "therapy_area", "aliases", "icd10_codes", "us_prevalence", "us_incidence",
    "diagnosis_rate", "treatment_rate", "cagr_5yr", "product_categories",
]


def read_sheet(path: Path) -> pd.DataFrame:
    """Everything as text; blanks stay empty strings."""
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    df.columns = [c.strip() for c in df.columns]
    for column in TEXT_COLUMNS:
        if column not in df.columns:
            df[column] = ""
    return df.apply(lambda col: col.str.strip())


def split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split("|") if item.strip()]


def validate_sheet(df: pd.DataFrame) -> List[str]:
    """All problems found in the sheet (empty list when clean)."""
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        return [f"Missing columns: {missing}"]

    errors = []

    def lines(mask: pd.Series) -> List[int]:
        return [int(i) + 2 for i in df.index[mask.to_numpy()]]  # header is line 1

    for column in ("name", "therapy_area", "us_prevalence"):
        for line in lines(df[column] == ""):
            errors.append(f"line {line}: '{column}' is required")

    lowered = df["name"].str.lower()
    for name in sorted(df.loc[lowered.duplicated(keep=False) & (lowered != ""), "name"].unique()):
        errors.append(f"duplicate indication name: {name}")

    for column in ("diagnosis_rate", "treatment_rate"):
        rates = pd.to_numeric(df[column], errors="coerce")
        for line in lines(rates.isna() | (rates < 0) | (rates > 1)):
            errors.append(f"line {line}: '{column}' must be a number within [0, 1]")

    for column in ("us_prevalence", "us_incidence"):
        filled = df[column] != ""
        counts = pd.to_numeric(df[column], errors="coerce")
        bad = filled & (counts.isna() | (counts < 0) | (counts % 1 != 0))
        for line in lines(bad):
            errors.append(f"line {line}: '{column}' must be a non-negative integer")

    cagr = pd.to_numeric(df["cagr_5yr"], errors="coerce")
    for line in lines(cagr.isna()):
        errors.append(f"line {line}: 'cagr_5yr' must be a number")

    for line, value in enumerate(df["product_categories"], start=2):
        categories = split_list(value)
        unknown = [c for c in categories if c not in PRODUCT_CATEGORIES]
        if not categories or unknown:
            errors.append(f"line {line}: bad product_categories {value!r}")

    return errors


def sheet_to_records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """Validated sheet -> indications.json records, sorted by name."""
    records = []
    for row in df.sort_values("name", key=lambda s: s.str.lower()).to_dict(orient="records"):
        records.append({
            "name": row["name"],
            "aliases": split_list(row["aliases"]),
            "therapy_area": row["therapy_area"].lower(),
            "icd10_codes": split_list(row["icd10_codes"]),
            "us_prevalence": int(float(row["us_prevalence"])),
            "us_incidence": int(float(row["us_incidence"])) if row["us_incidence"] else 0,
            "diagnosis_rate": float(row["diagnosis_rate"]),
            "treatment_rate": float(row["treatment_rate"]),
            "cagr_5yr": float(row["cagr_5yr"]),
            "product_categories": split_list(row["product_categories"]),
            "prevalence_source": row["prevalence_source"],
            "market_growth_driver": row["market_growth_driver"],
            "pricing_context": row["pricing_context"],
        })
    return records


def read_manifest(corpus_dir: Path) -> Dict[str, Any]:
    path = corpus_dir / MANIFEST_FILE
    if not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def print_summary(df: pd.DataFrame, records: List[Dict[str, Any]]) -> None:
    print(f"\n{'='*60}")
    print("INDICATION CORPUS BUILD")
    print(f"{'='*60}")
    print(f"Indications: {len(records)}")
    print(f"Aliases:     {sum(len(r['aliases']) for r in records)}")

    print("\nBy therapy area:")
    for area, count in df["therapy_area"].str.lower().value_counts().sort_index().items():
        print(f"  {area:<22} {count:>4}")

    categories = pd.Series([c for r in records for c in r["product_categories"]]).value_counts()
    print("\nBy product category:")
    for category, count in categories.sort_index().items():
        print(f"  {category:<22} {count:>4}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Build data/corpus/indications.json from the indication sheet")
    parser.add_argument("--input", type=Path, default=DEFAULT_INPUT, help="Indication sheet (CSV)")
    parser.add_argument("--corpus-dir", type=Path, default=DEFAULT_CORPUS_DIR, help="Corpus directory")
    parser.add_argument("--corpus-version", help="Version to stamp in the manifest (default: keep current)")
    parser.add_argument("--as-of", help="Reference date YYYY-MM-DD (default: keep current)")
    parser.add_argument("--dry-run", action="store_true", help="Validate and summarize only")
    parser.add_argument("--refresh-manifest", action="store_true", help="Only recompute manifest hashes")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    settings = settings_from_env()
    if args.verbose:
        settings["log_level"] = logging.DEBUG
    setup_logging(**settings)
    with LogContext() as run_id:
        logger.info(f"Indication corpus build {run_id}: input={args.input} corpus_dir={args.corpus_dir}")
        return build(args)


def build(args: argparse.Namespace) -> int:
    manifest = read_manifest(args.corpus_dir)
    corpus_version = args.corpus_version or manifest.get("corpus_version")
    as_of = args.as_of or manifest.get("as_of_date")
    if not args.dry_run and (not corpus_version or not as_of):
        print("ERROR: no existing manifest; pass --corpus-version and --as-of")
        return 1

    if not args.refresh_manifest:
        df = read_sheet(args.input)
        errors = validate_sheet(df)
        if errors:
            print(f"ERROR: {len(errors)} problem(s) in {args.input}:")
            for error in errors:
                print(f"  - {error}")
            return 1

        records = sheet_to_records(df)
        print_summary(df, records)
        if args.dry_run:
            print("\nDry run: nothing written")
            return 0

        out_path = args.corpus_dir / CORPUS_FILES["indications"]
        with open(out_path, "w", encoding="utf-8") as f:
            json.dump(records, f, indent=2, ensure_ascii=False)
            f.write("\n")
        print(f"\nWrote {out_path}")
        logger.info(f"Wrote {len(records)} indication records to {out_path}")

    refreshed = write_manifest(args.corpus_dir, corpus_version, as_of, manifest.get("description", ""))
    print(f"Manifest refreshed: {refreshed['corpus_version']} as of {refreshed['as_of_date']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
