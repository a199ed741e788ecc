"""
Tabular views over analysis output: multi-drug comparison and gene panel coverage.
"""
from typing import Iterable, List, Sequence

import pandas as pd

from pharmaguard.models import WILD_TYPE_ALLELE, AnalysisResult, Gene, VariantRecord
from pharmaguard.risk_engine import build_diplotype, resolve_phenotype

COMPARISON_COLUMNS = ["Drug", "Gene", "Diplotype", "Phenotype", "Risk", "Confidence"]
PANEL_COLUMNS = ["Gene", "Found", "Diplotype", "Phenotype", "Variants"]


def comparison_table(results: Iterable[AnalysisResult]) -> pd.DataFrame:
    rows = []
    for r in results:
        profile = r.pharmacogenomic_profile
        rows.append({
            "Drug": r.drug,
            "Gene": profile.primary_gene.value,
            "Diplotype": profile.diplotype,
            "Phenotype": profile.phenotype.value,
            "Risk": r.risk_assessment.risk_label.value,
            "Confidence": round(r.risk_assessment.confidence_score * 100),
        })
    return pd.DataFrame(rows, columns=COMPARISON_COLUMNS)


def gene_panel_summary(variants: Sequence[VariantRecord], genes_detected: Iterable = ()) -> pd.DataFrame:
    """One row per supported gene; genes absent from the file have no diplotype."""
    found_genes = {Gene(g) for g in genes_detected} | {v.gene for v in variants}

    rows = []
    for gene in Gene:
        found = gene in found_genes
        diplotype = None
        if found:
            diplotype = build_diplotype(variants, gene) or f"{WILD_TYPE_ALLELE}/{WILD_TYPE_ALLELE}"
        rows.append({
            "Gene": gene.value,
            "Found": found,
            "Diplotype": diplotype,
            "Phenotype": resolve_phenotype(gene, diplotype).value,
            "Variants": sum(1 for v in variants if v.gene == gene),
        })
    panel = pd.DataFrame(rows, columns=PANEL_COLUMNS)
    # object dtype so absent genes stay None
    panel["Diplotype"] = pd.Series([r["Diplotype"] for r in rows], dtype=object)
    return panel


def panel_completeness(panel: pd.DataFrame) -> str:
    coverage = int(panel["Found"].sum())
    if coverage >= 5:
        return "High"
    if coverage >= 3:
        return "Moderate"
    return "Low"


def actionable_genes(panel: pd.DataFrame) -> List[str]:
    """Genes whose phenotype is anything other than normal."""
    mask = panel["Found"] & (panel["Phenotype"] != "NM")
    return panel.loc[mask, "Gene"].tolist()
