"""
LLM Explanation Service.
Uses the OpenAI API to generate clinical explanations only.
Risk is pre-determined by the rule engine; the LLM ONLY explains.
"""
import json
import logging
import re
from typing import Dict, List, Optional

from openai import OpenAI, OpenAIError

from pharmaguard import config

logger = logging.getLogger(__name__)

CLINICAL_SYSTEM_PROMPT = """You are a clinical pharmacogenomics expert assistant. Your role is to EXPLAIN a pre-determined drug risk assessment. You must:
1. NOT modify or invent genotype, phenotype, or risk level; these are given to you
2. Explain the biological mechanism behind the risk accurately
3. Cite rsIDs when describing variant effects
4. Align the recommendation with CPIC guidelines

Always respond in valid JSON only."""

FENCED_JSON_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")

PHENOTYPE_DESCRIPTIONS = {
    "PM": "poor metabolizer",
    "IM": "intermediate metabolizer",
    "NM": "normal metabolizer",
    "RM": "rapid metabolizer",
    "URM": "ultrarapid metabolizer",
    "Unknown": "metabolizer status unknown",
}

GENE_ROLES = {
    "CYP2D6": "a hepatic cytochrome P450 enzyme that bioactivates codeine and tramadol",
    "CYP2C19": "the cytochrome P450 enzyme that activates clopidogrel and clears proton pump inhibitors",
    "CYP2C9": "the cytochrome P450 enzyme that clears S-warfarin and celecoxib",
    "SLCO1B1": "OATP1B1, the hepatic uptake transporter for simvastatin acid",
    "TPMT": "thiopurine methyltransferase, which inactivates azathioprine metabolites",
    "DPYD": "dihydropyrimidine dehydrogenase, the rate-limiting enzyme of fluoropyrimidine catabolism",
}


def _text(value) -> str:
    return getattr(value, "value", value)


def build_explanation_prompt(gene: str, diplotype: str, phenotype: str, drug: str,
                             risk_label: str, severity: str, detected_variants: List[Dict],
                             recommendation: str) -> str:
    """Build the structured prompt for LLM explanation."""
    rsids = [v.get("rsid", "") for v in detected_variants if v.get("rsid")]
    rsids_str = ", ".join(rsids) if rsids else "none (diplotype inferred as wild-type)"

    return f"""A pharmacogenomics risk assessment has already been completed using deterministic CPIC rules.

Patient Data:
- Gene: {gene}
- Diplotype: {diplotype}
- Phenotype: {phenotype}
- Detected Variants: {rsids_str}
- Drug: {drug}
- Risk Assessment: {risk_label} (Severity: {severity})
- CPIC Recommendation: {recommendation}

Respond ONLY with valid JSON in this exact format, no extra text:
{{
  "summary": "One sentence summary of the risk for a non-specialist",
  "mechanism": "2-3 sentences explaining the biological mechanism, citing the rsID and diplotype",
  "recommendation": "Specific actionable clinical recommendation aligned with CPIC guidelines"
}}"""


def extract_json(raw: str) -> str:
    """Models sometimes wrap JSON in markdown code fences."""
    match = FENCED_JSON_RE.search(raw)
    return match.group(1).strip() if match else raw.strip()


def fallback_explanation(gene: str, diplotype: str, phenotype: str, drug: str,
                         risk_label: str, detected_variants: List[Dict],
                         recommendation: str = "") -> Dict[str, str]:
    """Deterministic template used when the LLM is unavailable."""
    rsids = [v.get("rsid", "") for v in detected_variants if v.get("rsid")]
    rsids_str = ", ".join(rsids) if rsids else "no specific variants"
    ph_desc = PHENOTYPE_DESCRIPTIONS.get(phenotype, str(phenotype).lower())
    role = GENE_ROLES.get(gene, f"a protein involved in {drug.lower()} disposition")

    return {
        "summary": (
            f"Your {gene} result ({ph_desc}) means {drug.lower()} is classified as "
            f"'{risk_label}' for you. Discuss this finding with your prescriber."
        ),
        "mechanism": (
            f"{gene} encodes {role}. The {diplotype} diplotype corresponds to {ph_desc} status, "
            f"altering {drug.lower()} exposure. Variants considered: {rsids_str}."
        ),
        "recommendation": recommendation or "Consult a clinical pharmacist for detailed guidance.",
        "citations": ", ".join(rsids),
    }


def generate_explanation(gene, diplotype: str, phenotype, drug: str, risk_label, severity,
                         detected_variants: List[Dict], recommendation: str,
                         client: Optional[OpenAI] = None) -> Dict[str, str]:
    """
    Generate an LLM explanation for a pre-determined pharmacogenomic risk.
    Returns dict with summary, mechanism, recommendation, citations. Never raises.
    """
    gene, phenotype, drug = _text(gene), _text(phenotype), _text(drug)
    risk_label, severity = _text(risk_label), _text(severity)
    fallback = fallback_explanation(gene, diplotype, phenotype, drug, risk_label,
                                    detected_variants, recommendation)

    if client is None:
        if not config.OPENAI_API_KEY or config.OPENAI_API_KEY.startswith("sk-your"):
            return fallback
        client = OpenAI(api_key=config.OPENAI_API_KEY)

    prompt = build_explanation_prompt(gene, diplotype, phenotype, drug, risk_label,
                                      severity, detected_variants, recommendation)
    try:
        response = client.chat.completions.create(
            model=config.OPENAI_MODEL,
            messages=[
                {"role": "system", "content": CLINICAL_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=0.2,  # factual clinical content
            max_tokens=600,
            response_format={"type": "json_object"},
        )
        parsed = json.loads(extract_json(response.choices[0].message.content or ""))
    except (OpenAIError, ValueError) as e:
        logger.warning("OpenAI call failed for %s: %s", drug, e)
        return fallback

    if not isinstance(parsed, dict):
        logger.warning("OpenAI returned non-object JSON for %s", drug)
        return fallback

    return {
        "summary": str(parsed.get("summary") or fallback["summary"]),
        "mechanism": str(parsed.get("mechanism") or fallback["mechanism"]),
        "recommendation": str(parsed.get("recommendation") or fallback["recommendation"]),
        "citations": fallback["citations"],
    }
