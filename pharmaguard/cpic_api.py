"""
CPIC API client with caching.

Fetches pharmacogenomic data from https://api.cpicpgx.org/ with a
read-through in-memory TTL cache. Every network or decode failure is logged
and returned as None so callers fall back to the static tables.
"""
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import httpx

from pharmaguard import config
from pharmaguard.cpic_tables import DRUG_RXNORM_IDS, RiskEntry
from pharmaguard.models import Drug, Gene, Phenotype, RiskLabel, Severity

logger = logging.getLogger(__name__)

# CPIC uses full names, the engine uses abbreviations
PHENOTYPE_MAP = {
    "Poor Metabolizer": Phenotype.PM,
    "Intermediate Metabolizer": Phenotype.IM,
    "Normal Metabolizer": Phenotype.NM,
    "Rapid Metabolizer": Phenotype.RM,
    "Ultrarapid Metabolizer": Phenotype.URM,
    "Indeterminate": Phenotype.UNKNOWN,
    # SLCO1B1 terminology
    "Poor Function": Phenotype.PM,
    "Decreased Function": Phenotype.IM,
    "Intermediate Function": Phenotype.IM,
    "Normal Function": Phenotype.NM,
    "Increased Function": Phenotype.NM,
}

PHENOTYPE_NAMES = {
    Phenotype.PM: "Poor Metabolizer",
    Phenotype.IM: "Intermediate Metabolizer",
    Phenotype.NM: "Normal Metabolizer",
    Phenotype.RM: "Rapid Metabolizer",
    Phenotype.URM: "Ultrarapid Metabolizer",
    Phenotype.UNKNOWN: "Indeterminate",
}

ACTIVITY_SCORE_RANGES = {
    Phenotype.PM: (0.0, 0.0),
    Phenotype.IM: (0.25, 1.0),
    Phenotype.NM: (1.25, 2.25),
    Phenotype.RM: (2.5, 3.0),
    Phenotype.URM: (2.5, 10.0),
    Phenotype.UNKNOWN: (-1.0, -1.0),
}


def _rows(data) -> Optional[List[Dict[str, Any]]]:
    """Dict rows of a list reply; None when the reply is not a list."""
    if not isinstance(data, list):
        return None
    return [row for row in data if isinstance(row, dict)]


def _text(value) -> str:
    return value if isinstance(value, str) else ""


def _gene_text(rec: Dict[str, Any], key: str, gene: str) -> str:
    """Per-gene string field such as phenotypes, implications or activityscore."""
    per_gene = rec.get(key)
    return _text(per_gene.get(gene)) if isinstance(per_gene, dict) else ""


def derive_risk(rec: Dict[str, Any], gene: str) -> RiskEntry:
    """Map a CPIC recommendation record onto a risk label and severity."""
    phenotype = PHENOTYPE_MAP.get(_gene_text(rec, "phenotypes", gene), Phenotype.UNKNOWN)
    recommendation = _text(rec.get("drugrecommendation"))
    text = recommendation.lower()
    implications = _gene_text(rec, "implications", gene).lower()
    classification = _text(rec.get("classification"))

    if "avoid" in text or "not recommended" in text:
        if "toxic" in text or "toxicity" in implications:
            label = RiskLabel.TOXIC
            severity = Severity.CRITICAL if classification == "Strong" else Severity.HIGH
        elif "diminished" in text or "ineffective" in text or "reduced" in implications:
            label = RiskLabel.INEFFECTIVE
            severity = Severity.LOW if phenotype == Phenotype.PM else Severity.MODERATE
        else:
            label, severity = RiskLabel.TOXIC, Severity.HIGH
    elif any(w in text for w in ("reduce", "lower", "adjust", "decrease")) or (
        "consider" in text and ("dose" in text or "alternative" in text)
    ):
        label = RiskLabel.ADJUST_DOSAGE
        if "50%" in text or "50-70%" in text:
            severity = Severity.HIGH
        elif "25%" in text or "25-50%" in text or classification == "Strong":
            severity = Severity.MODERATE
        else:
            severity = Severity.LOW
    elif "standard" in text or "label recommended" in text:
        label, severity = RiskLabel.SAFE, Severity.NONE
    elif "no recommendation" in text:
        label, severity = RiskLabel.UNKNOWN, Severity.NONE
    elif phenotype in (Phenotype.NM, Phenotype.RM):
        label, severity = RiskLabel.SAFE, Severity.NONE
    elif phenotype in (Phenotype.PM, Phenotype.IM, Phenotype.URM):
        label, severity = RiskLabel.ADJUST_DOSAGE, Severity.MODERATE
    else:
        label, severity = RiskLabel.UNKNOWN, Severity.NONE

    return RiskEntry(label, severity, recommendation)


class CPICClient:
    """Thin wrapper over the CPIC REST API with a per-key TTL cache."""

    def __init__(self, base_url: str = None, ttl_seconds: float = None,
                 timeout: float = None, client: Optional[httpx.Client] = None):
        self.base_url = (base_url or config.CPIC_API_BASE).rstrip("/")
        self.ttl_seconds = config.CPIC_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.client = client or httpx.Client(
            timeout=timeout or config.CPIC_FETCH_TIMEOUT_SECONDS,
            headers={"Accept": "application/json"},
        )
        self._cache: Dict[Tuple, Tuple[float, Any]] = {}

    # ── cache ──────────────────────────────────────────────────────────────

    def _cached(self, key: Tuple):
        entry = self._cache.get(key)
        if entry and time.monotonic() - entry[0] < self.ttl_seconds:
            return entry[1]
        return None

    def _store(self, key: Tuple, data: Any) -> Any:
        self._cache[key] = (time.monotonic(), data)
        return data

    def clear_cache(self) -> None:
        self._cache.clear()

    def cache_stats(self) -> Dict[str, Any]:
        kinds = [k[0] for k in self._cache]
        stamps = [t for t, _ in self._cache.values()]
        return {
            "has_pairs": "pairs" in kinds,
            "recommendations_cached": kinds.count("recommendations"),
            "diplotypes_cached": kinds.count("diplotype"),
            "oldest_entry_age_seconds": round(time.monotonic() - min(stamps)) if stamps else None,
        }

    # ── raw fetches ────────────────────────────────────────────────────────

    def _get_json(self, path: str, params: Optional[Dict[str, str]] = None):
        try:
            response = self.client.get(f"{self.base_url}/{path}", params=params)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("CPIC API request %s failed: %s", path, e)
            return None

    def fetch_pairs(self) -> Optional[Dict[str, List[Dict]]]:
        """Gene-drug pairs grouped by drug id."""
        key = ("pairs",)
        cached = self._cached(key)
        if cached is not None:
            return cached

        pairs = _rows(self._get_json("pair"))
        if pairs is None:
            return None

        grouped: Dict[str, List[Dict]] = {}
        for pair in pairs:
            drug_id = pair.get("drugid")
            if isinstance(drug_id, str):
                grouped.setdefault(drug_id, []).append(pair)
        return self._store(key, grouped)

    def fetch_recommendations(self, drug_id: str) -> Optional[List[Dict]]:
        key = ("recommendations", drug_id)
        cached = self._cached(key)
        if cached is not None:
            return cached

        recs = _rows(self._get_json("recommendation", {"drugid": f"eq.{drug_id}"}))
        if recs is None:
            return None
        return self._store(key, recs)

    def fetch_diplotype_phenotype(self, gene: str, diplotype: str) -> Optional[str]:
        key = ("diplotype", gene, diplotype)
        cached = self._cached(key)
        if cached is not None:
            return cached

        rows = _rows(self._get_json("diplotype", {"genesymbol": f"eq.{gene}", "diplotype": f"eq.{diplotype}"}))
        if not rows:
            return None
        result = _text(rows[0].get("generesult"))
        if not result:
            return None
        return self._store(key, result)

    # ── lookups ────────────────────────────────────────────────────────────

    @staticmethod
    def _primary_pair(drug_pairs: List[Dict]) -> Optional[Dict]:
        if not drug_pairs:
            return None
        return next((p for p in drug_pairs if p.get("usedforrecommendation")), drug_pairs[0])

    def _recommendation_pair(self, drug) -> Optional[Dict]:
        pairs = self.fetch_pairs()
        if not pairs:
            return None
        return self._primary_pair(pairs.get(DRUG_RXNORM_IDS[Drug(drug)]) or [])

    def get_cpic_level(self, drug) -> Optional[str]:
        pair = self._recommendation_pair(drug)
        return _text(pair.get("cpiclevel")) or None if pair else None

    def get_guideline_citations(self, drug) -> Optional[List[str]]:
        pair = self._recommendation_pair(drug)
        citations = pair.get("citations") if pair else None
        if not isinstance(citations, list):
            return None
        return [str(c) for c in citations]

    def get_phenotype(self, gene, diplotype: str) -> Optional[Phenotype]:
        name = self.fetch_diplotype_phenotype(Gene(gene).value, diplotype)
        return PHENOTYPE_MAP.get(name) if name else None

    def get_risk(self, drug, phenotype, gene) -> Optional[RiskEntry]:
        recs = self.fetch_recommendations(DRUG_RXNORM_IDS[Drug(drug)])
        if not recs:
            return None

        gene = Gene(gene).value
        wanted = PHENOTYPE_NAMES[Phenotype(phenotype)].lower()
        for rec in recs:
            if wanted in _gene_text(rec, "phenotypes", gene).lower():
                return derive_risk(rec, gene)

        low, high = ACTIVITY_SCORE_RANGES[Phenotype(phenotype)]
        for rec in recs:
            scores = rec.get("activityscore")
            try:
                score = float(scores.get(gene))
            except (AttributeError, TypeError, ValueError):
                continue
            if low <= score <= high:
                return derive_risk(rec, gene)
        return None

    def fetch_all_drugs(self) -> List[Dict[str, Any]]:
        """Catalog of CPIC drugs with a guideline and an associated gene."""
        key = ("drugs",)
        cached = self._cached(key)
        if cached is not None:
            return cached

        drugs = _rows(self._get_json("drug", {"guidelineid": "not.is.null"}))
        if drugs is None:
            return []
        pairs = self.fetch_pairs() or {}

        entries = []
        for d in drugs:
            drug_id, name = _text(d.get("drugid")), _text(d.get("name"))
            pair = self._primary_pair(pairs.get(drug_id) or [])
            if not drug_id or not name or pair is None:
                continue
            entries.append({
                "drug_id": drug_id,
                "name": name.lower(),
                "display_name": name.title(),
                "gene": _text(pair.get("genesymbol")),
                "cpic_level": _text(pair.get("cpiclevel")) or "N/A",
                "has_guideline": d.get("guidelineid") is not None,
            })
        entries.sort(key=lambda e: e["name"])
        return self._store(key, entries)

    def warm_cache(self) -> Dict[str, Any]:
        errors = []
        if self.fetch_pairs() is None:
            errors.append("Failed to fetch gene-drug pairs")
        for drug, drug_id in DRUG_RXNORM_IDS.items():
            if self.fetch_recommendations(drug_id) is None:
                errors.append(f"Failed to fetch recommendations for {drug.value}")
        return {"success": not errors, "errors": errors}

    def check_health(self) -> bool:
        return self._get_json("drug", {"limit": "1"}) is not None

    def close(self) -> None:
        self.client.close()
