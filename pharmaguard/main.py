"""
PharmaGuard - FastAPI Genomics Microservice
Main application entry point.
Handles VCF upload, request validation, risk assessment and LLM explanation.
"""
import logging
from functools import lru_cache
from typing import Any, List, Optional

from fastapi import Body, FastAPI, File, Form, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from pharmaguard import __version__, config
from pharmaguard.cpic_api import CPICClient
from pharmaguard.cpic_tables import DRUG_GENE_MAP, DRUG_RXNORM_IDS
from pharmaguard.llm_service import generate_explanation
from pharmaguard.models import (
    CORE_DRUGS,
    AnalysisResult,
    ErrorResponse,
    Gene,
    LLMGeneratedExplanation,
    make_timestamp,
)
from pharmaguard.reporting import actionable_genes, comparison_table, gene_panel_summary, panel_completeness
from pharmaguard.risk_engine import RiskEngine
from pharmaguard.validator import validate_request
from pharmaguard.vcf_parser import parse_vcf

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="PharmaGuard Genomics API",
    description="Pharmacogenomic Risk Prediction Microservice",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_cpic_client() -> CPICClient:
    return CPICClient()


def get_engine(mode: str) -> RiskEngine:
    if mode == "api":
        return RiskEngine(cpic_client=get_cpic_client())
    return RiskEngine()


def build_error_response(error: str, detail: str, patient_id: str = None,
                         drug: str = None, status_code: int = 400) -> JSONResponse:
    body = ErrorResponse(error=error, detail=detail, patient_id=patient_id, drug=drug)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def attach_explanations(results: List[AnalysisResult]) -> None:
    for r in results:
        profile = r.pharmacogenomic_profile
        explanation = generate_explanation(
            gene=profile.primary_gene,
            diplotype=profile.diplotype,
            phenotype=profile.phenotype,
            drug=r.drug,
            risk_label=r.risk_assessment.risk_label,
            severity=r.risk_assessment.severity,
            detected_variants=[v.model_dump() for v in profile.detected_variants],
            recommendation=r.clinical_recommendation.action,
        )
        r.llm_generated_explanation = LLMGeneratedExplanation(**explanation)


def run_analysis(body: Any, mode: str, explain: bool, parse_success: bool = True):
    """Validate a request body and analyze it; returns (results, error_response)."""
    validation = validate_request(body)
    if not validation.valid:
        return None, build_error_response(
            "invalid_request", validation.error,
            patient_id=validation.patient_id or None,
        )

    engine = get_engine(mode)
    results = engine.analyze(
        patient_id=validation.patient_id,
        variants=validation.variants,
        drugs=validation.drugs,
        genes_detected=validation.genes_detected,
        parse_success=parse_success,
    )
    if explain:
        attach_explanations(results)
    return results, None


def results_response(results: List[AnalysisResult], mode: str) -> JSONResponse:
    return JSONResponse(content={
        "results": [r.model_dump(mode="json") for r in results],
        "mode": mode,
    })


async def read_upload(vcf_file: UploadFile) -> str:
    content_bytes = await vcf_file.read()
    try:
        return content_bytes.decode("utf-8")
    except UnicodeDecodeError:
        return content_bytes.decode("latin-1")


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "service": "PharmaGuard Genomics API",
        "version": __version__,
        "timestamp": make_timestamp(),
    }


@app.post("/parse")
async def parse_upload(vcf_file: UploadFile = File(..., description="VCF v4.x file")):
    content = await read_upload(vcf_file)
    result = parse_vcf(content)
    if not result.success:
        return build_error_response("invalid_vcf_format", result.error, status_code=422)

    panel = gene_panel_summary(result.variants, result.genes_detected)
    return {
        **result.to_dict(),
        "gene_panel": panel.to_dict(orient="records"),
        "panel_completeness": panel_completeness(panel),
        "actionable_genes": actionable_genes(panel),
    }


@app.post("/analyze")
def analyze(
    body: Any = Body(None),
    mode: str = Query(config.ANALYSIS_MODE, pattern="^(fast|api)$"),
    explain: bool = Query(False),
):
    """Analyze pre-parsed variants for one or more drugs."""
    results, error = run_analysis(body, mode, explain)
    if error is not None:
        return error
    return results_response(results, mode)


@app.post("/analyze-vcf")
async def analyze_vcf(
    vcf_file: UploadFile = File(..., description="VCF v4.x file"),
    drugs: str = Form(..., description="Comma-separated drug names"),
    patient_id: Optional[str] = Form(None, description="Patient identifier"),
    mode: str = Query(config.ANALYSIS_MODE, pattern="^(fast|api)$"),
    explain: bool = Query(False),
):
    """Parse an uploaded VCF and analyze it for one or more drugs."""
    content = await read_upload(vcf_file)
    parsed = parse_vcf(content)
    if not parsed.success:
        return build_error_response("invalid_vcf_format", parsed.error,
                                    patient_id=patient_id, status_code=422)

    body = {
        "patient_id": patient_id if patient_id and patient_id.strip() else parsed.patient_id,
        "variants": parsed.variants,
        "drugs": [d for d in drugs.split(",") if d.strip()],
        "genes_detected": [g.value for g in parsed.genes_detected],
    }
    results, error = await run_in_threadpool(run_analysis, body, mode, explain, parsed.success)
    if error is not None:
        return error
    return results_response(results, mode)


@app.post("/compare")
def compare(body: Any = Body(None)):
    """Multi-drug comparison table as CSV."""
    results, error = run_analysis(body, "fast", explain=False)
    if error is not None:
        return error
    csv = comparison_table(results).to_csv(index=False)
    return Response(content=csv, media_type="text/csv")


@app.get("/supported-drugs")
async def get_supported_drugs():
    """Return supported drugs and their associated genes."""
    return {
        "supported_drugs": sorted(d.value for d in DRUG_GENE_MAP),
        "core_drugs": sorted(CORE_DRUGS),
        "drug_gene_map": {d.value: g.value for d, g in DRUG_GENE_MAP.items()},
    }


@app.get("/supported-genes")
async def get_supported_genes():
    return {"supported_genes": sorted(g.value for g in Gene)}


def fallback_drug_catalog() -> List[dict]:
    return sorted((
        {
            "drug_id": DRUG_RXNORM_IDS[drug],
            "name": drug.value.lower(),
            "display_name": drug.value.title(),
            "gene": gene.value,
            "cpic_level": "A",
            "has_guideline": True,
        }
        for drug, gene in DRUG_GENE_MAP.items()
    ), key=lambda d: d["name"])


@app.get("/drugs")
def get_drug_catalog():
    """CPIC drugs whose primary gene is on the panel, or the built-in list when the API is down."""
    supported = {g.value for g in Gene}
    drugs = [d for d in get_cpic_client().fetch_all_drugs() if d["gene"] in supported]
    source = "api"
    if not drugs:
        logger.warning("CPIC drug catalog unavailable, serving built-in drug list")
        drugs, source = fallback_drug_catalog(), "fallback"
    return {"drugs": drugs, "source": source, "count": len(drugs)}


@app.get("/cpic-cache")
def cpic_cache_status():
    client = get_cpic_client()
    return {
        "api_healthy": client.check_health(),
        "cache": client.cache_stats(),
        "timestamp": make_timestamp(),
    }


@app.post("/cpic-cache")
def cpic_cache_action(action: str = Query(..., pattern="^(warm|clear)$")):
    client = get_cpic_client()
    if action == "warm":
        return {"action": "warm", **client.warm_cache()}
    client.clear_cache()
    return {"action": "clear", "success": True}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("pharmaguard.main:app", host=config.PYTHON_HOST, port=config.PYTHON_PORT,
                reload=not config.IS_PRODUCTION)
