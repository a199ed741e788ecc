"""
Domain enums, the immutable variant record, and pydantic response models.
All response field names are case-sensitive and match the published JSON schema.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class Gene(str, Enum):
    CYP2D6 = "CYP2D6"
    CYP2C19 = "CYP2C19"
    CYP2C9 = "CYP2C9"
    SLCO1B1 = "SLCO1B1"
    TPMT = "TPMT"
    DPYD = "DPYD"


class Drug(str, Enum):
    CODEINE = "CODEINE"
    WARFARIN = "WARFARIN"
    CLOPIDOGREL = "CLOPIDOGREL"
    SIMVASTATIN = "SIMVASTATIN"
    AZATHIOPRINE = "AZATHIOPRINE"
    FLUOROURACIL = "FLUOROURACIL"
    TRAMADOL = "TRAMADOL"
    OMEPRAZOLE = "OMEPRAZOLE"
    CELECOXIB = "CELECOXIB"
    CAPECITABINE = "CAPECITABINE"


class Phenotype(str, Enum):
    PM = "PM"
    IM = "IM"
    NM = "NM"
    RM = "RM"
    URM = "URM"
    UNKNOWN = "Unknown"


class RiskLabel(str, Enum):
    SAFE = "Safe"
    ADJUST_DOSAGE = "Adjust Dosage"
    TOXIC = "Toxic"
    INEFFECTIVE = "Ineffective"
    UNKNOWN = "Unknown"


class Severity(str, Enum):
    NONE = "none"
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"


SUPPORTED_GENES = frozenset(g.value for g in Gene)
SUPPORTED_DRUGS = frozenset(d.value for d in Drug)

# Mandatory clinical panel; the remaining drugs have full tables too
CORE_DRUGS = frozenset({
    "CODEINE", "WARFARIN", "CLOPIDOGREL",
    "SIMVASTATIN", "AZATHIOPRINE", "FLUOROURACIL",
})

WILD_TYPE_ALLELE = "*1"
RSID_PREFIX = "rs"


def make_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def normalize_rsid(value: str) -> str:
    value = value.strip()
    return value if value.startswith(RSID_PREFIX) else f"{RSID_PREFIX}{value}"


@dataclass(frozen=True)
class VariantRecord:
    """One genetic observation: gene, star allele and dbSNP reference id."""
    gene: Gene
    star_allele: str
    rsid: str

    def __post_init__(self):
        # Gene() raises ValueError for anything outside the supported panel
        object.__setattr__(self, "gene", Gene(self.gene))
        object.__setattr__(self, "rsid", normalize_rsid(self.rsid))

    def to_dict(self) -> Dict[str, str]:
        return {"gene": self.gene.value, "star_allele": self.star_allele, "rsid": self.rsid}


# ─── Response schema ──────────────────────────────────────────────────────────

class DetectedVariant(BaseModel):
    rsid: str
    gene: str
    star_allele: str


class RiskAssessment(BaseModel):
    risk_label: RiskLabel
    confidence_score: float = Field(..., ge=0.0, le=1.0)
    severity: Severity


class PharmacogenomicProfile(BaseModel):
    primary_gene: Gene
    diplotype: str
    phenotype: Phenotype
    detected_variants: List[DetectedVariant]


class ClinicalRecommendation(BaseModel):
    summary: str
    action: str
    alternative_drugs: List[str] = Field(default_factory=list)
    guideline_reference: str


class LLMGeneratedExplanation(BaseModel):
    summary: str
    mechanism: str
    recommendation: str
    citations: str = ""


class DecisionTrace(BaseModel):
    lookup_source: str
    phenotype_rule: str
    evidence_level: str
    classification_type: str = "deterministic_table_lookup"
    confidence_reason: Optional[str] = None
    notes: Optional[str] = None


class QualityMetrics(BaseModel):
    vcf_parsing_success: bool
    variants_detected: int
    genes_analyzed: List[str]
    decision_trace: Optional[DecisionTrace] = None


class DataSources(BaseModel):
    phenotype: str = "hardcoded"  # api | hardcoded
    risk: str = "hardcoded"


class AnalysisResult(BaseModel):
    patient_id: str
    drug: str
    timestamp: str
    risk_assessment: RiskAssessment
    pharmacogenomic_profile: PharmacogenomicProfile
    clinical_recommendation: ClinicalRecommendation
    llm_generated_explanation: Optional[LLMGeneratedExplanation] = None
    quality_metrics: QualityMetrics
    data_sources: DataSources = Field(default_factory=DataSources)
    cpic_level: Optional[str] = None


class ErrorResponse(BaseModel):
    error: str
    detail: str
    patient_id: Optional[str] = None
    drug: Optional[str] = None
    timestamp: str = Field(default_factory=make_timestamp)
