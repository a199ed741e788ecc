"""
Static CPIC knowledge base.
Diplotype -> phenotype tables per gene and phenotype -> risk tables per drug.
Pure data: every lookup in the risk engine is an exact key match against these maps.
"""
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Tuple

from pharmaguard.models import Drug, Gene, Phenotype, RiskLabel, Severity

PM, IM, NM, RM, URM = Phenotype.PM, Phenotype.IM, Phenotype.NM, Phenotype.RM, Phenotype.URM


@dataclass(frozen=True)
class RiskEntry:
    risk_label: RiskLabel
    severity: Severity
    action: str
    alternatives: Tuple[str, ...] = ()


def _frozen(table: dict) -> Mapping:
    return MappingProxyType(table)


DRUG_GENE_MAP: Mapping[Drug, Gene] = _frozen({
    Drug.CODEINE: Gene.CYP2D6,
    Drug.WARFARIN: Gene.CYP2C9,
    Drug.CLOPIDOGREL: Gene.CYP2C19,
    Drug.SIMVASTATIN: Gene.SLCO1B1,
    Drug.AZATHIOPRINE: Gene.TPMT,
    Drug.FLUOROURACIL: Gene.DPYD,
    Drug.TRAMADOL: Gene.CYP2D6,
    Drug.OMEPRAZOLE: Gene.CYP2C19,
    Drug.CELECOXIB: Gene.CYP2C9,
    Drug.CAPECITABINE: Gene.DPYD,
})

CPIC_REFERENCES: Mapping[Drug, str] = _frozen({
    Drug.CODEINE: "CPIC Guideline for CYP2D6 and Codeine Therapy (2019 Update), PMID: 31006110",
    Drug.TRAMADOL: "CPIC Guideline for CYP2D6 and Tramadol Therapy (2020), PMID: 33387367",
    Drug.WARFARIN: "CPIC Guideline for Pharmacogenetics-Guided Warfarin Dosing (2017 Update), PMID: 28198005",
    Drug.CELECOXIB: "CPIC Guideline for NSAIDs and CYP2C9 (2020), PMID: 32189324",
    Drug.CLOPIDOGREL: "CPIC Guideline for CYP2C19 and Clopidogrel Therapy (2022 Update), PMID: 35034351",
    Drug.OMEPRAZOLE: "CPIC Guideline for CYP2C19 and Proton Pump Inhibitor Dosing (2022), PMID: 35034351",
    Drug.SIMVASTATIN: "CPIC Guideline for SLCO1B1 and Simvastatin-Induced Myopathy (2022 Update), PMID: 35152405",
    Drug.AZATHIOPRINE: "CPIC Guideline for TPMT/NUDT15 and Thiopurine Dosing (2018 Update), PMID: 30447069",
    Drug.FLUOROURACIL: "CPIC Guideline for DPYD and Fluoropyrimidine Dosing (2017 Update), PMID: 29152729",
    Drug.CAPECITABINE: "CPIC Guideline for DPYD and Fluoropyrimidine Dosing (2017 Update), PMID: 29152729",
})

# Identifiers used by the CPIC REST API
DRUG_RXNORM_IDS: Mapping[Drug, str] = _frozen({
    Drug.CODEINE: "RxNorm:2670",
    Drug.TRAMADOL: "RxNorm:10689",
    Drug.WARFARIN: "RxNorm:11289",
    Drug.CELECOXIB: "RxNorm:140587",
    Drug.CLOPIDOGREL: "RxNorm:32968",
    Drug.OMEPRAZOLE: "RxNorm:7646",
    Drug.SIMVASTATIN: "RxNorm:36567",
    Drug.AZATHIOPRINE: "RxNorm:1256",
    Drug.FLUOROURACIL: "RxNorm:4492",
    Drug.CAPECITABINE: "RxNorm:194000",
})

# ─── Diplotype -> phenotype ──────────────────────────────────────────────────
# Keys are in the order produced by build_diplotype (lower star number first).
# The *NxN/*1 keys are kept as published and are not reachable through that sort.

CYP2D6_PHENOTYPE = _frozen({
    "*1/*1": NM, "*1/*2": NM, "*2/*2": NM,
    "*1/*4": IM, "*1/*5": IM, "*1/*6": IM,
    "*1/*10": IM, "*1/*41": IM, "*1/*17": IM,
    "*4/*4": PM, "*4/*5": PM, "*5/*5": PM,
    "*4/*6": PM, "*5/*6": PM,
    "*1xN/*1": URM, "*2xN/*1": URM, "*2xN/*2": URM,
})

CYP2C19_PHENOTYPE = _frozen({
    "*1/*1": NM,
    "*1/*2": IM, "*1/*3": IM,
    "*2/*2": PM, "*2/*3": PM, "*3/*3": PM,
    "*1/*17": RM,
    "*17/*17": URM,
})

CYP2C9_PHENOTYPE = _frozen({
    "*1/*1": NM,
    "*1/*2": IM, "*1/*3": IM,
    "*2/*2": PM, "*2/*3": PM, "*3/*3": PM,
})

SLCO1B1_PHENOTYPE = _frozen({
    "*1a/*1a": NM, "*1a/*1b": NM, "*1b/*1b": NM,
    "*1/*1a": NM, "*1/*1b": NM, "*1/*1": NM,
    "*1a/*5": IM, "*1b/*5": IM, "*1a/*15": IM, "*1b/*15": IM,
    "*1/*5": IM, "*1/*15": IM,
    "*5/*5": PM, "*15/*15": PM, "*5/*15": PM,
})

TPMT_PHENOTYPE = _frozen({
    "*1/*1": NM,
    "*1/*2": IM, "*1/*3A": IM, "*1/*3B": IM, "*1/*3C": IM,
    "*2/*3A": PM, "*3A/*3A": PM, "*3A/*3C": PM, "*2/*3C": PM,
})

DPYD_PHENOTYPE = _frozen({
    "*1/*1": NM,
    "*1/*2A": IM, "*1/*13": IM,
    "*2A/*2A": PM, "*13/*13": PM, "*2A/*13": PM,
})

PHENOTYPE_TABLES: Mapping[Gene, Mapping[str, Phenotype]] = _frozen({
    Gene.CYP2D6: CYP2D6_PHENOTYPE,
    Gene.CYP2C19: CYP2C19_PHENOTYPE,
    Gene.CYP2C9: CYP2C9_PHENOTYPE,
    Gene.SLCO1B1: SLCO1B1_PHENOTYPE,
    Gene.TPMT: TPMT_PHENOTYPE,
    Gene.DPYD: DPYD_PHENOTYPE,
})

# ─── Phenotype -> risk ───────────────────────────────────────────────────────

SAFE, ADJUST, TOXIC, INEFFECTIVE = (
    RiskLabel.SAFE, RiskLabel.ADJUST_DOSAGE, RiskLabel.TOXIC, RiskLabel.INEFFECTIVE
)
NONE, LOW, MODERATE, HIGH, CRITICAL = (
    Severity.NONE, Severity.LOW, Severity.MODERATE, Severity.HIGH, Severity.CRITICAL
)

UNKNOWN_RISK = RiskEntry(
    RiskLabel.UNKNOWN, Severity.NONE,
    "Insufficient pharmacogenomic data to make a recommendation. Consult a clinical pharmacist.",
)

RISK_TABLES: Mapping[Drug, Mapping[Phenotype, RiskEntry]] = _frozen({
    Drug.CODEINE: _frozen({
        PM: RiskEntry(INEFFECTIVE, LOW, "CYP2D6 Poor Metabolizer cannot convert codeine to morphine. Select alternative analgesic.",
                      ("Tramadol", "Morphine", "Oxycodone")),
        IM: RiskEntry(ADJUST, MODERATE, "Slower codeine conversion. Use with caution and monitor for reduced efficacy."),
        NM: RiskEntry(SAFE, NONE, "Standard codeine dosing is appropriate."),
        URM: RiskEntry(TOXIC, CRITICAL, "Ultrarapid conversion to morphine with risk of fatal respiratory depression. AVOID codeine.",
                       ("Tramadol", "NSAIDs")),
    }),
    Drug.CLOPIDOGREL: _frozen({
        PM: RiskEntry(INEFFECTIVE, HIGH, "CYP2C19 Poor Metabolizer cannot activate clopidogrel. High risk of cardiovascular events. Use alternative.",
                      ("Prasugrel", "Ticagrelor")),
        IM: RiskEntry(ADJUST, MODERATE, "Reduced clopidogrel activation. Consider alternative antiplatelet therapy."),
        NM: RiskEntry(SAFE, NONE, "Standard clopidogrel dosing is appropriate."),
        RM: RiskEntry(SAFE, NONE, "Standard dosing is appropriate."),
        URM: RiskEntry(ADJUST, LOW, "Higher active metabolite levels. Monitor for bleeding risk."),
    }),
    Drug.WARFARIN: _frozen({
        PM: RiskEntry(ADJUST, HIGH, "CYP2C9 Poor Metabolizer: warfarin accumulates. Reduce dose by 50-70%. Monitor INR closely."),
        IM: RiskEntry(ADJUST, MODERATE, "Slower warfarin clearance. Reduce starting dose by 25-50%. Frequent INR monitoring required."),
        NM: RiskEntry(SAFE, NONE, "Standard warfarin dosing is appropriate. Routine INR monitoring."),
    }),
    Drug.SIMVASTATIN: _frozen({
        PM: RiskEntry(TOXIC, HIGH, "SLCO1B1 Poor Function: high risk of statin-induced myopathy. Avoid simvastatin. Use pravastatin or rosuvastatin.",
                      ("Pravastatin", "Rosuvastatin")),
        IM: RiskEntry(ADJUST, MODERATE, "Reduced hepatic uptake. Use lower simvastatin dose (<=20mg) or switch to pravastatin."),
        NM: RiskEntry(SAFE, NONE, "Standard simvastatin dosing is appropriate."),
    }),
    Drug.AZATHIOPRINE: _frozen({
        PM: RiskEntry(TOXIC, CRITICAL, "TPMT Poor Metabolizer: life-threatening bone marrow toxicity. AVOID azathioprine. Use alternative.",
                      ("Mycophenolate",)),
        IM: RiskEntry(ADJUST, HIGH, "Reduce starting dose to 30-70% of standard. Monitor blood counts closely."),
        NM: RiskEntry(SAFE, NONE, "Standard azathioprine dosing is appropriate."),
    }),
    Drug.FLUOROURACIL: _frozen({
        PM: RiskEntry(TOXIC, CRITICAL, "DPYD Poor Metabolizer: severe/fatal fluorouracil toxicity likely. AVOID fluorouracil and capecitabine.",
                      ("Alternative chemotherapy regimen, consult oncologist",)),
        IM: RiskEntry(ADJUST, HIGH, "Reduce starting dose by 25-50%. Monitor for toxicity at each cycle."),
        NM: RiskEntry(SAFE, NONE, "Standard fluorouracil dosing is appropriate."),
    }),
    Drug.TRAMADOL: _frozen({
        PM: RiskEntry(INEFFECTIVE, LOW, "CYP2D6 Poor Metabolizer cannot convert tramadol to active metabolite O-desmethyltramadol. Select alternative analgesic.",
                      ("Morphine", "Oxycodone")),
        IM: RiskEntry(ADJUST, MODERATE, "Reduced tramadol activation. Monitor for reduced efficacy and consider dose adjustment."),
        NM: RiskEntry(SAFE, NONE, "Standard tramadol dosing is appropriate."),
        URM: RiskEntry(TOXIC, HIGH, "Ultrarapid conversion to active metabolite with risk of respiratory depression and seizures. AVOID tramadol.",
                       ("NSAIDs", "Non-opioid analgesics")),
    }),
    Drug.OMEPRAZOLE: _frozen({
        PM: RiskEntry(ADJUST, LOW, "CYP2C19 PM: increased omeprazole exposure. Consider reducing dose by 50% for chronic use."),
        IM: RiskEntry(SAFE, NONE, "Standard omeprazole dosing is appropriate."),
        NM: RiskEntry(SAFE, NONE, "Standard omeprazole dosing is appropriate."),
        RM: RiskEntry(ADJUST, MODERATE, "Rapid omeprazole metabolism may reduce efficacy. Consider dose increase or alternative PPI.",
                      ("Rabeprazole", "Esomeprazole")),
        URM: RiskEntry(INEFFECTIVE, MODERATE, "Ultrarapid CYP2C19 metabolism: standard dose likely insufficient. Switch to rabeprazole or use higher dose.",
                       ("Rabeprazole", "Esomeprazole")),
    }),
    Drug.CELECOXIB: _frozen({
        PM: RiskEntry(ADJUST, HIGH, "CYP2C9 Poor Metabolizer: celecoxib accumulates. Reduce starting dose by 50%. Monitor for GI and cardiovascular adverse effects."),
        IM: RiskEntry(ADJUST, MODERATE, "Slower celecoxib clearance. Start at lowest recommended dose and monitor for adverse effects."),
        NM: RiskEntry(SAFE, NONE, "Standard celecoxib dosing is appropriate."),
    }),
    Drug.CAPECITABINE: _frozen({
        PM: RiskEntry(TOXIC, CRITICAL, "DPYD Poor Metabolizer: severe/fatal capecitabine toxicity likely. AVOID capecitabine.",
                      ("Alternative chemotherapy regimen, consult oncologist",)),
        IM: RiskEntry(ADJUST, HIGH, "Reduce capecitabine starting dose by 25-50%. Monitor for toxicity at each cycle."),
        NM: RiskEntry(SAFE, NONE, "Standard capecitabine dosing is appropriate."),
    }),
})
