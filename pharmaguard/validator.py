"""
Whitelist validation for inbound analysis requests.
Invalid variants, genes and drugs are dropped one by one; the request is
rejected only when nothing usable remains.
"""
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, List, Optional

from pharmaguard.models import SUPPORTED_DRUGS, SUPPORTED_GENES, Gene, VariantRecord

logger = logging.getLogger(__name__)

STAR_ALLELE_RE = re.compile(r"\*[0-9]{1,3}[A-Za-z]*(?:xN)?")
RSID_RE = re.compile(r"rs\d+")

ERR_INVALID_BODY = "Invalid request body."
ERR_MISSING_PATIENT = "Missing patient ID."
ERR_NO_VARIANTS = "No variants provided."
ERR_NO_VARIANTS_OR_GENES = "No variants or sequenced genes provided."
ERR_NO_DRUGS = "No drugs provided."
ERR_NO_SUPPORTED_DRUGS = "No supported drugs provided."


@dataclass
class ValidationResult:
    valid: bool
    variants: List[VariantRecord] = field(default_factory=list)
    drugs: List[str] = field(default_factory=list)
    patient_id: str = ""
    genes_detected: List[Gene] = field(default_factory=list)
    error: Optional[str] = None


def _field(obj: Mapping, *names: str) -> Any:
    """First present key among snake_case and camelCase spellings."""
    for name in names:
        if name in obj:
            return obj[name]
    return None


def validate_variant(item: Any) -> Optional[VariantRecord]:
    if isinstance(item, VariantRecord):
        gene, star, rsid = item.gene.value, item.star_allele, item.rsid
    elif isinstance(item, Mapping):
        gene = _field(item, "gene")
        star = _field(item, "star_allele", "starAllele")
        rsid = _field(item, "rsid", "reference_id", "referenceId")
    else:
        return None

    if not (isinstance(gene, str) and gene in SUPPORTED_GENES):
        return None
    if not (isinstance(star, str) and STAR_ALLELE_RE.fullmatch(star)):
        return None
    if not (isinstance(rsid, str) and RSID_RE.fullmatch(rsid)):
        return None
    return VariantRecord(gene=gene, star_allele=star, rsid=rsid)


def validate_request(body: Any) -> ValidationResult:
    if not isinstance(body, Mapping):
        return ValidationResult(valid=False, error=ERR_INVALID_BODY)

    patient_id = _field(body, "patient_id", "patientId")
    if not isinstance(patient_id, str) or not patient_id.strip():
        return ValidationResult(valid=False, error=ERR_MISSING_PATIENT)
    patient_id = patient_id.strip()

    raw_variants = _field(body, "variants")
    if not isinstance(raw_variants, list):
        return ValidationResult(valid=False, patient_id=patient_id, error=ERR_NO_VARIANTS)

    variants = [v for v in (validate_variant(item) for item in raw_variants) if v is not None]
    if len(variants) < len(raw_variants):
        logger.debug("Dropped %d invalid variants", len(raw_variants) - len(variants))

    raw_genes = _field(body, "genes_detected", "genesDetected")
    if isinstance(raw_genes, list):
        genes = [Gene(g) for g in raw_genes if isinstance(g, str) and g in SUPPORTED_GENES]
    else:
        genes = []
        for v in variants:
            if v.gene not in genes:
                genes.append(v.gene)

    if not variants and not genes:
        return ValidationResult(valid=False, patient_id=patient_id, error=ERR_NO_VARIANTS_OR_GENES)

    raw_drugs = _field(body, "drugs")
    if not isinstance(raw_drugs, list) or not raw_drugs:
        return ValidationResult(valid=False, patient_id=patient_id, variants=variants,
                                genes_detected=genes, error=ERR_NO_DRUGS)

    drugs = []
    for d in raw_drugs:
        if isinstance(d, str) and d.strip().upper() in SUPPORTED_DRUGS:
            drugs.append(d.strip().upper())
    if not drugs:
        return ValidationResult(valid=False, patient_id=patient_id, variants=variants,
                                genes_detected=genes, error=ERR_NO_SUPPORTED_DRUGS)

    return ValidationResult(valid=True, variants=variants, drugs=drugs,
                            patient_id=patient_id, genes_detected=genes)
