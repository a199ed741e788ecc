"""
Deterministic CPIC-aligned risk engine.
Diplotype reconstruction, static table lookups and confidence scoring.
The LLM does NOT make risk decisions; it only explains them.
"""
import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence

from pharmaguard.cpic_tables import (
    CPIC_REFERENCES,
    DRUG_GENE_MAP,
    PHENOTYPE_TABLES,
    RISK_TABLES,
    UNKNOWN_RISK,
    RiskEntry,
)
from pharmaguard.models import (
    WILD_TYPE_ALLELE,
    AnalysisResult,
    ClinicalRecommendation,
    DataSources,
    DecisionTrace,
    DetectedVariant,
    Drug,
    Gene,
    PharmacogenomicProfile,
    Phenotype,
    QualityMetrics,
    RiskAssessment,
    VariantRecord,
    make_timestamp,
)

logger = logging.getLogger(__name__)

LEADING_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?")
LETTERS_RE = re.compile(r"[A-Za-z]")

CONFIDENCE_BOTH_OBSERVED = 0.95
CONFIDENCE_SEQUENCED_REFERENCE = 0.90
CONFIDENCE_SINGLE_INFERRED = 0.85
CONFIDENCE_SINGLE_BASIC = 0.70
CONFIDENCE_NOT_SEQUENCED = 0.30


def _as_gene(gene) -> Optional[Gene]:
    try:
        return Gene(gene)
    except ValueError:
        return None


def _as_drug(drug) -> Optional[Drug]:
    try:
        return Drug(str(drug.value if isinstance(drug, Drug) else drug).strip().upper())
    except ValueError:
        return None


def _as_phenotype(phenotype) -> Phenotype:
    try:
        return Phenotype(phenotype)
    except ValueError:
        return Phenotype.UNKNOWN


def _gene_variants(variants: Iterable[VariantRecord], gene) -> List[VariantRecord]:
    return [v for v in variants if v.gene == gene]


# ─── Diplotype ────────────────────────────────────────────────────────────────

def allele_number(allele: str) -> float:
    """Leading star number of an allele token: *3A -> 3, *2xN -> 2, *A -> 0."""
    stripped = LETTERS_RE.sub("", allele.replace("*", "", 1))
    match = LEADING_NUMBER_RE.match(stripped)
    return float(match.group(0)) if match else 0.0


def allele_sort_key(allele: str):
    return allele_number(allele), allele


def build_diplotype(variants: Sequence[VariantRecord], gene) -> Optional[str]:
    """
    Build a "low/high" diplotype from the first two alleles seen for gene.
    A single observed allele is paired with the wild-type *1.
    Returns None when the gene has no variants.

    Copy-number alleles sort by their base number, so *2xN + *1 yields
    "*1/*2xN" which does not match the "*2xN/*1" table key.
    """
    alleles = [v.star_allele for v in _gene_variants(variants, gene)][:2]
    if not alleles:
        return None
    if len(alleles) == 1:
        alleles.insert(0, WILD_TYPE_ALLELE)
    low, high = sorted(alleles, key=allele_sort_key)
    return f"{low}/{high}"


# ─── Table lookups ────────────────────────────────────────────────────────────

def resolve_phenotype(gene, diplotype: Optional[str]) -> Phenotype:
    table = PHENOTYPE_TABLES.get(_as_gene(gene), {})
    return table.get(diplotype, Phenotype.UNKNOWN)


def resolve_risk(drug, phenotype) -> RiskEntry:
    table = RISK_TABLES.get(_as_drug(drug), {})
    return table.get(_as_phenotype(phenotype), UNKNOWN_RISK)


# ─── Confidence ───────────────────────────────────────────────────────────────

def basic_confidence(variants: Sequence[VariantRecord], gene, gene_was_sequenced: bool = False) -> float:
    """
    Confidence from the number of observed alleles for gene.
    A single allele scores 0.70 unless the gene is known to be sequenced.
    """
    count = len(_gene_variants(variants, gene))
    if count >= 2:
        return CONFIDENCE_BOTH_OBSERVED
    if count == 1:
        return CONFIDENCE_SINGLE_INFERRED if gene_was_sequenced else CONFIDENCE_SINGLE_BASIC
    return CONFIDENCE_SEQUENCED_REFERENCE if gene_was_sequenced else CONFIDENCE_NOT_SEQUENCED


def integrated_confidence(variants: Sequence[VariantRecord], gene, gene_was_sequenced: bool = False) -> float:
    """Pipeline confidence: one observed allele with an inferred *1 always scores 0.85."""
    if len(_gene_variants(variants, gene)) == 1:
        return CONFIDENCE_SINGLE_INFERRED
    return basic_confidence(variants, gene, gene_was_sequenced)


def confidence_reason(count: int, gene_was_sequenced: bool) -> str:
    if count >= 2:
        return "Both alleles directly observed in the VCF."
    if count == 1:
        return "One allele observed; second copy inferred as wild-type *1."
    if gene_was_sequenced:
        return "Gene sequenced with no ALT alleles; presumed homozygous reference."
    return "Gene not present in the VCF; diplotype defaulted to *1/*1."


# ─── Orchestration ────────────────────────────────────────────────────────────

class RiskEngine:
    """
    Composes parser output with the static tables, one assessment per drug.
    When a CPIC API client is supplied, live lookups are tried first and
    each field falls back to the static tables on a miss.
    """

    def __init__(self, cpic_client=None):
        self.cpic_client = cpic_client

    @property
    def mode(self) -> str:
        return "api" if self.cpic_client is not None else "fast"

    def _lookup_phenotype(self, gene: Gene, diplotype: str):
        if self.cpic_client is not None:
            phenotype = self.cpic_client.get_phenotype(gene, diplotype)
            if phenotype is not None:
                return phenotype, "api"
        return resolve_phenotype(gene, diplotype), "hardcoded"

    def _lookup_risk(self, drug: Drug, phenotype: Phenotype, gene: Gene):
        if self.cpic_client is not None:
            risk = self.cpic_client.get_risk(drug, phenotype, gene)
            if risk is not None:
                return risk, "api"
        return resolve_risk(drug, phenotype), "hardcoded"

    def _guideline_reference(self, drug: Drug) -> str:
        if self.cpic_client is not None:
            citations = self.cpic_client.get_guideline_citations(drug)
            if citations:
                return f"CPIC Guideline, PMIDs: {', '.join(citations)}"
        return CPIC_REFERENCES[drug]

    def assess(self, variants: Sequence[VariantRecord], drug: str,
               genes_detected: Optional[Iterable] = None) -> Dict:
        """
        Full pharmacogenomic risk assessment for one drug.
        Returns a flat dict; unsupported drugs yield an error dict.
        """
        drug_enum = _as_drug(drug)
        if drug_enum is None:
            return {
                "error": "unsupported_drug",
                "detail": f"Drug '{drug}' is not supported. Supported: {', '.join(sorted(d.value for d in Drug))}",
                "drug": drug,
            }

        gene = DRUG_GENE_MAP[drug_enum]
        gene_was_sequenced = any(_as_gene(g) == gene for g in (genes_detected or []))
        gene_variants = _gene_variants(variants, gene)

        diplotype = build_diplotype(variants, gene) or f"{WILD_TYPE_ALLELE}/{WILD_TYPE_ALLELE}"
        phenotype, phenotype_source = self._lookup_phenotype(gene, diplotype)
        risk, risk_source = self._lookup_risk(drug_enum, phenotype, gene)

        cpic_level = None
        if self.cpic_client is not None:
            cpic_level = self.cpic_client.get_cpic_level(drug_enum)

        return {
            "drug": drug_enum.value,
            "primary_gene": gene,
            "diplotype": diplotype,
            "phenotype": phenotype,
            "risk_label": risk.risk_label,
            "severity": risk.severity,
            "confidence_score": integrated_confidence(variants, gene, gene_was_sequenced),
            "recommendation": risk.action,
            "alternative_drugs": list(risk.alternatives),
            "guideline_reference": self._guideline_reference(drug_enum),
            "detected_variants": [v.to_dict() for v in gene_variants],
            "confidence_reason": confidence_reason(len(gene_variants), gene_was_sequenced),
            "data_sources": {"phenotype": phenotype_source, "risk": risk_source},
            "cpic_level": cpic_level,
        }

    def analyze(self, patient_id: str, variants: Sequence[VariantRecord], drugs: Iterable[str],
                genes_detected: Optional[Iterable] = None, parse_success: bool = True,
                timestamp: Optional[str] = None) -> List[AnalysisResult]:
        timestamp = timestamp or make_timestamp()
        genes_detected = list(genes_detected or [])

        genes_analyzed: List[str] = []
        for g in list(genes_detected) + [v.gene for v in variants]:
            name = Gene(g).value
            if name not in genes_analyzed:
                genes_analyzed.append(name)

        results = []
        for drug in drugs:
            assessment = self.assess(variants, drug, genes_detected)
            if "error" in assessment:
                logger.warning("Skipping %s: %s", drug, assessment["detail"])
                continue
            results.append(self._to_result(patient_id, timestamp, assessment, variants,
                                           genes_analyzed, parse_success))
        return results

    @staticmethod
    def _to_result(patient_id: str, timestamp: str, assessment: Dict, variants: Sequence[VariantRecord],
                   genes_analyzed: List[str], parse_success: bool) -> AnalysisResult:
        gene = assessment["primary_gene"]
        phenotype = assessment["phenotype"]
        source = assessment["data_sources"]

        return AnalysisResult(
            patient_id=patient_id,
            drug=assessment["drug"],
            timestamp=timestamp,
            risk_assessment=RiskAssessment(
                risk_label=assessment["risk_label"],
                confidence_score=assessment["confidence_score"],
                severity=assessment["severity"],
            ),
            pharmacogenomic_profile=PharmacogenomicProfile(
                primary_gene=gene,
                diplotype=assessment["diplotype"],
                phenotype=phenotype,
                detected_variants=[DetectedVariant(**v) for v in assessment["detected_variants"]],
            ),
            clinical_recommendation=ClinicalRecommendation(
                summary=assessment["recommendation"],
                action=assessment["recommendation"],
                alternative_drugs=assessment["alternative_drugs"],
                guideline_reference=assessment["guideline_reference"],
            ),
            quality_metrics=QualityMetrics(
                vcf_parsing_success=parse_success,
                variants_detected=len(variants),
                genes_analyzed=genes_analyzed,
                decision_trace=DecisionTrace(
                    lookup_source=(
                        f"CPIC API {gene.value}-{assessment['drug']} recommendation"
                        if source["risk"] == "api"
                        else f"Static CPIC {gene.value}-{assessment['drug']} table"
                    ),
                    phenotype_rule=f"{phenotype.value} -> {assessment['risk_label'].value}",
                    evidence_level=assessment["cpic_level"] or "N/A",
                    confidence_reason=assessment["confidence_reason"],
                ),
            ),
            data_sources=DataSources(**source),
            cpic_level=assessment["cpic_level"],
        )
