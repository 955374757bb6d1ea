#!/usr/bin/env python3
"""
entity_resolver.py

Entity Resolver for the Opportunity Scoring Engine

Resolves free-text identifiers (indication, biomarker, procedure) to
canonical corpus records:

1. Normalize (case, accents, punctuation, hyphens, whitespace)
2. Exact match against any canonical name or alias -> ExactMatch
3. Otherwise fuzzy match (token Jaccard / whole-token containment) against
   the same key space; best-scoring keys win, ties kept -> FuzzyMatch
4. Otherwise the full corpus for that entity kind, tagged NoMatch so a
   caller can tell "not found" apart from "broad match"

Alias groups are symmetric: every spelling in a group maps to the group,
never to a single member, so "TAVR" and "TAVI" (or "PD-L1", "PDL1",
"CD274") always resolve to the same record set.

Author: Wake Robin Capital Management
Version: 1.0.0
"""

import logging
import threading
from collections import OrderedDict, defaultdict
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union

from common.text_normalization import contains_phrase, normalize_text, tokenize
from reference_corpus import ReferenceCorpus, get_corpus

__version__ = "1.0.0"
__author__ = "Wake Robin Capital Management"

logger = logging.getLogger(__name__)


class MatchKind(Enum):
    """How a query was resolved."""
    EXACT = "ExactMatch"
    FUZZY = "FuzzyMatch"
    NO_MATCH = "NoMatch"


class EntityKind(Enum):
    """Entity namespaces the resolver knows about."""
    INDICATION = "indication"
    BIOMARKER = "biomarker"
    PROCEDURE = "procedure"


# ============================================================================
# ALIAS TABLES
# ============================================================================

# canonical biomarker -> alternate spellings
BIOMARKER_ALIAS_GROUPS: Dict[str, Tuple[str, ...]] = {
    "PD-L1": ("PDL1", "CD274"),
    "EGFR": ("HER1", "ERBB1"),
    "HER2": ("ERBB2", "neu"),
    "ALK": ("ALK rearrangement", "EML4-ALK"),
    "BRCA": ("BRCA1", "BRCA2", "BRCA1/2"),
    "MSI": ("MSI-H", "microsatellite instability"),
    "TMB": ("tumor mutational burden",),
    "KRAS": ("KRAS G12C",),
    "MRD": ("ctDNA", "minimal residual disease"),
    "HRD": ("homologous recombination deficiency",),
    "BRAF": ("BRAF V600E",),
    "MET": ("c-MET", "MET exon 14"),
    "NTRK": ("NTRK fusion", "TRK fusion"),
    "RET": ("RET fusion",),
    "ROS1": (),
    "PIK3CA": (),
}

# canonical procedure -> (alternate spellings, phrases matched inside a
# device's procedure_or_condition)
PROCEDURE_ALIAS_GROUPS: Dict[str, Tuple[Tuple[str, ...], Tuple[str, ...]]] = {
    "TAVR": (
        ("TAVI", "transcatheter aortic", "transcatheter aortic valve", "transcatheter aortic valve replacement"),
        ("tavr", "transcatheter aortic valve"),
    ),
    "TKA": (
        ("total knee", "knee replacement", "total knee arthroplasty", "total knee replacement"),
        ("total knee arthroplasty", "total knee replacement"),
    ),
    "THA": (
        ("total hip", "hip replacement", "total hip arthroplasty", "total hip replacement"),
        ("total hip arthroplasty", "total hip replacement"),
    ),
    "DBS": (
        ("deep brain", "deep brain stimulation"),
        ("deep brain stimulation",),
    ),
    "CGM": (
        ("continuous glucose", "continuous glucose monitoring", "continuous glucose monitor"),
        ("continuous glucose monitoring",),
    ),
    "PFA": (
        ("pulsed field", "pulsed field ablation"),
        ("pulsed field ablation",),
    ),
    "LAAC": (
        ("LAA closure", "left atrial appendage", "left atrial appendage closure"),
        ("left atrial appendage closure",),
    ),
    "Robotic surgery": (
        ("surgical robot", "surgical robotics", "robotic-assisted surgery"),
        ("surgical robotics", "robotic-assisted", "robotic surgery"),
    ),
    "EP mapping": (
        ("electrophysiology mapping",),
        ("ep mapping", "cardiac ablation"),
    ),
    "Cardiac ablation": (
        ("catheter ablation",),
        ("cardiac ablation", "pulsed field ablation"),
    ),
    "AF ablation": (
        ("afib ablation", "atrial fibrillation ablation"),
        ("cardiac ablation", "pulsed field ablation"),
    ),
    "Atrial fibrillation": (
        ("afib",),
        ("cardiac ablation", "pulsed field ablation", "left atrial appendage"),
    ),
    "PCI": (
        ("coronary stent", "stent", "percutaneous coronary intervention"),
        ("pci", "coronary stent"),
    ),
    "SCS": (
        ("spinal cord stimulation",),
        ("spinal cord stimulation",),
    ),
    "Thrombectomy": (
        ("stroke", "mechanical thrombectomy"),
        ("mechanical thrombectomy", "thrombectomy", "stroke"),
    ),
    "Digital therapeutics": (
        ("DTx", "digital therapeutic"),
        ("digital therapeutic", "digital health"),
    ),
    "SaMD": (
        ("software as a medical device",),
        ("software as a medical device", "digital health", "samd", "digital"),
    ),
}

FUZZY_THRESHOLD = Decimal("0.5")
# Substring containment only counts when the shorter string is this long
MIN_CONTAINMENT_LENGTH = 4
# Shorter shared tokens ("a", "b", "1") do not count toward Jaccard
MIN_JACCARD_TOKEN_LENGTH = 3

RESOLVER_CACHE_SIZE = 8


# ============================================================================
# RESULT TYPE
# ============================================================================

@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving one query."""
    query: str
    normalized_query: str
    kind: str
    match: MatchKind
    matched_keys: Tuple[str, ...]
    records: Tuple[Any, ...]
    score: Decimal = Decimal("0")

    @property
    def is_fallback(self) -> bool:
        return self.match is MatchKind.NO_MATCH

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "normalized_query": self.normalized_query,
            "entity_kind": self.kind,
            "match": self.match.value,
            "matched": list(self.matched_keys),
            "match_score": self.score,
            "is_fallback": self.is_fallback,
            "record_count": len(self.records),
        }


@dataclass(frozen=True)
class _Entity:
    """One resolvable target: a display label plus the record positions it covers."""
    label: str
    positions: Tuple[int, ...]


# ============================================================================
# RESOLVER
# ============================================================================

class EntityResolver:
    """
    Key index over one corpus snapshot.

    Usage:
        resolver = EntityResolver(corpus)
        resolution = resolver.resolve("PDL1", "biomarker")
    """

    VERSION = "1.0.0"

    def __init__(self, corpus: ReferenceCorpus):
        self.corpus = corpus
        self._records: Dict[str, Tuple[Any, ...]] = {
            EntityKind.INDICATION.value: corpus.indications,
            EntityKind.BIOMARKER.value: corpus.diagnostic_competitors,
            EntityKind.PROCEDURE.value: corpus.device_competitors,
        }
        # kind -> normalized key -> entity ids; kind -> entity id -> _Entity
        self._keys: Dict[str, Dict[str, Tuple[int, ...]]] = {}
        self._entities: Dict[str, List[_Entity]] = {}

        self._index_indications()
        self._index_biomarkers()
        self._index_procedures()

    # ------------------------------------------------------------------
    # Index construction
    # ------------------------------------------------------------------

    def _store(self, kind: str, entities: List[_Entity], keys: Dict[str, List[int]]) -> None:
        self._entities[kind] = entities
        self._keys[kind] = {key: tuple(ids) for key, ids in keys.items()}

    def _index_indications(self) -> None:
        kind = EntityKind.INDICATION.value
        position = {record.name: i for i, record in enumerate(self.corpus.indications)}
        entities = [_Entity(record.name, (i,)) for i, record in enumerate(self.corpus.indications)]
        keys: Dict[str, List[int]] = {
            key: [position[name] for name in names]
            for key, names in self.corpus.indication_keys.items()
        }
        self._store(kind, entities, keys)

    def _index_biomarkers(self) -> None:
        kind = EntityKind.BIOMARKER.value
        tests = self.corpus.diagnostic_competitors
        test_entry_tokens = [
            [tokenize(entry) for entry in test.biomarkers_covered] for test in tests
        ]

        entities: List[_Entity] = []
        keys: Dict[str, List[int]] = defaultdict(list)

        for canonical, aliases in BIOMARKER_ALIAS_GROUPS.items():
            terms = [tokenize(t) for t in (canonical,) + aliases]
            positions = tuple(
                i for i, entries in enumerate(test_entry_tokens)
                if any(contains_phrase(entry, term) for entry in entries for term in terms)
            )
            entity_id = len(entities)
            entities.append(_Entity(canonical, positions))
            for spelling in (canonical,) + aliases:
                key = normalize_text(spelling)
                if entity_id not in keys[key]:
                    keys[key].append(entity_id)

        group_keys = set(keys)
        raw_positions: Dict[str, List[int]] = OrderedDict()
        raw_labels: Dict[str, str] = {}
        for i, test in enumerate(tests):
            for entry in test.biomarkers_covered:
                key = normalize_text(entry)
                if not key or key in group_keys:
                    continue
                raw_labels.setdefault(key, entry)
                positions = raw_positions.setdefault(key, [])
                if i not in positions:
                    positions.append(i)

        for key, positions in raw_positions.items():
            keys[key].append(len(entities))
            entities.append(_Entity(raw_labels[key], tuple(positions)))

        self._store(kind, entities, keys)

    def _index_procedures(self) -> None:
        kind = EntityKind.PROCEDURE.value
        devices = self.corpus.device_competitors
        normalized_procedures = [normalize_text(d.procedure_or_condition) for d in devices]

        entities: List[_Entity] = []
        keys: Dict[str, List[int]] = defaultdict(list)

        for canonical, (aliases, terms) in PROCEDURE_ALIAS_GROUPS.items():
            normalized_terms = [normalize_text(t) for t in terms]
            positions = tuple(
                i for i, procedure in enumerate(normalized_procedures)
                if any(term and term in procedure for term in normalized_terms)
            )
            entity_id = len(entities)
            entities.append(_Entity(canonical, positions))
            for spelling in (canonical,) + aliases:
                key = normalize_text(spelling)
                if entity_id not in keys[key]:
                    keys[key].append(entity_id)

        # Raw procedure strings and their "/"-separated parts
        group_keys = set(keys)
        raw_positions: Dict[str, List[int]] = OrderedDict()
        raw_labels: Dict[str, str] = {}
        for i, device in enumerate(devices):
            spellings = [device.procedure_or_condition] + [
                part.strip() for part in device.procedure_or_condition.split("/")
            ]
            for spelling in spellings:
                key = normalize_text(spelling)
                if not key or key in group_keys:
                    continue
                raw_labels.setdefault(key, spelling)
                positions = raw_positions.setdefault(key, [])
                if i not in positions:
                    positions.append(i)

        for key, positions in raw_positions.items():
            keys[key].append(len(entities))
            entities.append(_Entity(raw_labels[key], tuple(positions)))

        self._store(kind, entities, keys)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, query_text: str, entity_kind: Union[str, EntityKind]) -> Resolution:
        """
        Resolve free text to canonical records of one entity kind.

        Args:
            query_text: Raw identifier as typed by the user
            entity_kind: "indication", "biomarker" or "procedure"

        Returns:
            Resolution (never raises for unknown text)
        """
        kind = entity_kind.value if isinstance(entity_kind, EntityKind) else str(entity_kind).lower()
        if kind not in self._keys:
            raise ValueError(f"Unknown entity kind: {entity_kind!r}")

        normalized = normalize_text(query_text)
        keys = self._keys[kind]

        if normalized and normalized in keys:
            return self._build(query_text, normalized, kind, MatchKind.EXACT, keys[normalized], Decimal("1"))

        if normalized:
            best_score, best_ids = self._fuzzy(normalized, keys)
            if best_ids:
                logger.debug(f"Fuzzy {kind} match for '{query_text}' (score {best_score})")
                return self._build(query_text, normalized, kind, MatchKind.FUZZY, best_ids, best_score)

        logger.debug(f"No {kind} match for '{query_text}'; falling back to full {kind} set")
        return Resolution(
            query=query_text,
            normalized_query=normalized,
            kind=kind,
            match=MatchKind.NO_MATCH,
            matched_keys=(),
            records=self._records[kind],
            score=Decimal("0"),
        )

    def _fuzzy(self, normalized: str, keys: Dict[str, Tuple[int, ...]]) -> Tuple[Decimal, Tuple[int, ...]]:
        query_tokens = set(normalized.split())
        best_score = Decimal("0")
        best_ids: List[int] = []

        for key in sorted(keys):
            score = similarity(normalized, query_tokens, key)
            if score < FUZZY_THRESHOLD:
                continue
            if score > best_score:
                best_score = score
                best_ids = list(keys[key])
            elif score == best_score:
                best_ids.extend(i for i in keys[key] if i not in best_ids)

        return best_score, tuple(best_ids)

    def _build(
        self,
        query_text: str,
        normalized: str,
        kind: str,
        match: MatchKind,
        entity_ids: Sequence[int],
        score: Decimal,
    ) -> Resolution:
        entities = self._entities[kind]
        labels: List[str] = []
        positions: Set[int] = set()
        for entity_id in entity_ids:
            entity = entities[entity_id]
            if entity.label not in labels:
                labels.append(entity.label)
            positions.update(entity.positions)

        # Corpus order keeps downstream "first occurrence wins" stable
        records = tuple(r for i, r in enumerate(self._records[kind]) if i in positions)
        return Resolution(
            query=query_text,
            normalized_query=normalized,
            kind=kind,
            match=match,
            matched_keys=tuple(sorted(labels)),
            records=records,
            score=score,
        )

    def known_keys(self, entity_kind: Union[str, EntityKind]) -> Tuple[str, ...]:
        """Every normalized key of one entity kind (sorted)."""
        kind = entity_kind.value if isinstance(entity_kind, EntityKind) else str(entity_kind).lower()
        return tuple(sorted(self._keys[kind]))


def similarity(normalized_query: str, query_tokens: Set[str], key: str) -> Decimal:
    """
    Fuzzy similarity in [0, 1] between a normalized query and a key:
    the larger of token Jaccard and a containment score
    (0.5 + 0.5 * len(shorter) / len(longer)).

    Jaccard needs a shared token of at least MIN_JACCARD_TOKEN_LENGTH
    characters, so a lone "a" or "b" never pulls in "Hemophilia A".
    Containment only counts whole tokens: the shorter string's tokens
    must appear contiguously in the longer one, its last token allowed
    to be a prefix ("arthritis" inside "arthritiss"). Mid-word fragments
    such as "ancer" never match.
    """
    key_tokens = set(key.split())
    shared = query_tokens & key_tokens
    union = query_tokens | key_tokens
    jaccard = Decimal("0")
    if union and any(len(token) >= MIN_JACCARD_TOKEN_LENGTH for token in shared):
        jaccard = Decimal(len(shared)) / Decimal(len(union))

    containment = Decimal("0")
    shorter, longer = sorted((normalized_query, key), key=len)
    if len(shorter) >= MIN_CONTAINMENT_LENGTH and _token_contained(tuple(shorter.split()), tuple(longer.split())):
        containment = Decimal("0.5") + Decimal("0.5") * Decimal(len(shorter)) / Decimal(len(longer))

    return max(jaccard, containment).quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)


def _token_contained(needle: Tuple[str, ...], haystack: Tuple[str, ...]) -> bool:
    if not needle:
        return False
    if contains_phrase(haystack, needle):
        return True
    head, last = needle[:-1], needle[-1]
    width = len(head)
    return any(
        haystack[i:i + width] == head and haystack[i + width].startswith(last)
        for i in range(len(haystack) - width)
    )


# ============================================================================
# MODULE-LEVEL ENTRY POINT
# ============================================================================

_cache_lock = threading.Lock()
_resolver_cache: "OrderedDict[int, Tuple[ReferenceCorpus, EntityResolver]]" = OrderedDict()


def get_resolver(corpus: Optional[ReferenceCorpus] = None) -> EntityResolver:
    """Resolver for a snapshot (built once per snapshot, small LRU)."""
    corpus = corpus if corpus is not None else get_corpus()
    with _cache_lock:
        cached = _resolver_cache.get(id(corpus))
        if cached is not None and cached[0] is corpus:
            _resolver_cache.move_to_end(id(corpus))
            return cached[1]

    resolver = EntityResolver(corpus)
    with _cache_lock:
        _resolver_cache[id(corpus)] = (corpus, resolver)
        while len(_resolver_cache) > RESOLVER_CACHE_SIZE:
            _resolver_cache.popitem(last=False)
    return resolver


def resolve(
    query_text: str,
    entity_kind: Union[str, EntityKind],
    corpus: Optional[ReferenceCorpus] = None,
) -> Resolution:
    """resolve(query, kind) against the given (default: published) corpus."""
    return get_resolver(corpus).resolve(query_text, entity_kind)


if __name__ == "__main__":
    print("=" * 70)
    print("ENTITY RESOLVER v1.0.0 - DEMONSTRATION")
    print("=" * 70)

    samples = [
        ("PD-L1", "biomarker"),
        ("PDL1", "biomarker"),
        ("TAVI", "procedure"),
        ("crohns", "indication"),
        ("lung cancer", "indication"),
        ("TOTALLY_UNKNOWN_XYZ", "indication"),
    ]
    for text, kind in samples:
        result = resolve(text, kind)
        print(f"\n{kind:<11} '{text}' -> {result.match.value} "
              f"({len(result.records)} records) {list(result.matched_keys)[:4]}")
