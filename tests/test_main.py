"""
HTTP endpoint tests using FastAPI's TestClient.
"""
import asyncio

import pytest
from fastapi.testclient import TestClient

from pharmaguard import config, main

VCF = "\n".join([
    "##fileformat=VCFv4.2",
    "##SAMPLE=<ID=PATIENT_042>",
    "#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\tFORMAT\tSAMPLE1",
    "chr22\t42130692\trs3892097\tG\tA\t.\tPASS\tGENE=CYP2D6;STAR=*4;RS=rs3892097\tGT\t1/1",
    "chr10\t94781859\trs4244285\tG\tA\t.\tPASS\tGENE=CYP2C19;STAR=*2;RS=rs4244285\tGT\t0/1",
    "chr6\t18130918\trs1142345\tT\tC\t.\tPASS\tGENE=TPMT;STAR=*3A;RS=rs1142345\tGT\t0/0",
]) + "\n"


@pytest.fixture
def client():
    return TestClient(main.app)


@pytest.fixture
def body():
    return {
        "patient_id": "PATIENT_001",
        "variants": [
            {"gene": "CYP2D6", "star_allele": "*4", "rsid": "rs3892097"},
            {"gene": "CYP2D6", "star_allele": "*4", "rsid": "rs3892097"},
        ],
        "drugs": ["CODEINE", "aspirin"],
    }


class FakeCPICClient:
    def __init__(self, catalog=None):
        self.cleared = False
        self.catalog = catalog or []

    def get_phenotype(self, gene, diplotype):
        return None

    def get_risk(self, drug, phenotype, gene):
        return None

    def get_guideline_citations(self, drug):
        return None

    def get_cpic_level(self, drug):
        return "A"

    def check_health(self):
        return True

    def cache_stats(self):
        return {"has_pairs": False, "recommendations_cached": 0,
                "diplotypes_cached": 0, "oldest_entry_age_seconds": None}

    def warm_cache(self):
        return {"success": True, "errors": []}

    def clear_cache(self):
        self.cleared = True

    def fetch_all_drugs(self):
        return self.catalog


@pytest.fixture
def fake_cpic(monkeypatch):
    fake = FakeCPICClient()
    monkeypatch.setattr(main, "get_cpic_client", lambda: fake)
    return fake


# ─── Service info ─────────────────────────────────────────────────────────────

def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["timestamp"].endswith("Z")

def test_supported_drugs(client):
    data = client.get("/supported-drugs").json()
    assert len(data["supported_drugs"]) == 10
    assert "FLUOROURACIL" in data["core_drugs"]
    assert "TRAMADOL" not in data["core_drugs"]
    assert data["drug_gene_map"]["CODEINE"] == "CYP2D6"

def test_supported_genes(client):
    assert client.get("/supported-genes").json()["supported_genes"] == [
        "CYP2C19", "CYP2C9", "CYP2D6", "DPYD", "SLCO1B1", "TPMT",
    ]


# ─── /analyze ─────────────────────────────────────────────────────────────────

def test_analyze(client, body):
    response = client.post("/analyze", json=body)
    assert response.status_code == 200
    data = response.json()
    assert data["mode"] == "fast"
    assert len(data["results"]) == 1
    result = data["results"][0]
    assert result["patient_id"] == "PATIENT_001"
    assert result["drug"] == "CODEINE"
    assert result["risk_assessment"] == {"risk_label": "Ineffective", "confidence_score": 0.95,
                                         "severity": "low"}
    assert result["pharmacogenomic_profile"]["diplotype"] == "*4/*4"
    assert result["pharmacogenomic_profile"]["phenotype"] == "PM"
    assert result["quality_metrics"]["genes_analyzed"] == ["CYP2D6"]
    assert result["llm_generated_explanation"] is None

def test_analyze_invalid_request(client, body):
    del body["patient_id"]
    response = client.post("/analyze", json=body)
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"
    assert response.json()["detail"] == "Missing patient ID."

def test_analyze_without_body(client):
    response = client.post("/analyze")
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid request body."

def test_analyze_rejects_unknown_mode(client, body):
    assert client.post("/analyze?mode=slow", json=body).status_code == 422

def test_analyze_with_explanation(client, body, monkeypatch):
    monkeypatch.setattr(config, "OPENAI_API_KEY", "")
    result = client.post("/analyze?explain=true", json=body).json()["results"][0]
    explanation = result["llm_generated_explanation"]
    assert "CYP2D6" in explanation["summary"]
    assert explanation["citations"] == "rs3892097, rs3892097"

def test_analyze_api_mode_falls_back(client, body, fake_cpic):
    data = client.post("/analyze?mode=api", json=body).json()
    result = data["results"][0]
    assert data["mode"] == "api"
    assert result["data_sources"] == {"phenotype": "hardcoded", "risk": "hardcoded"}
    assert result["cpic_level"] == "A"


# ─── VCF upload ───────────────────────────────────────────────────────────────

def test_parse_upload(client):
    response = client.post("/parse", files={"vcf_file": ("sample.vcf", VCF, "text/plain")})
    assert response.status_code == 200
    data = response.json()
    assert data["patient_id"] == "PATIENT_042"
    assert len(data["variants"]) == 3
    assert data["genes_detected"] == ["CYP2D6", "CYP2C19", "TPMT"]

def test_parse_upload_gene_panel(client):
    data = client.post("/parse", files={"vcf_file": ("sample.vcf", VCF, "text/plain")}).json()
    panel = {row["Gene"]: row for row in data["gene_panel"]}
    assert list(panel) == ["CYP2D6", "CYP2C19", "CYP2C9", "SLCO1B1", "TPMT", "DPYD"]
    assert panel["CYP2D6"] == {"Gene": "CYP2D6", "Found": True, "Diplotype": "*4/*4",
                               "Phenotype": "PM", "Variants": 2}
    assert panel["TPMT"]["Diplotype"] == "*1/*1"
    assert panel["DPYD"]["Found"] is False
    assert panel["DPYD"]["Diplotype"] is None
    assert data["panel_completeness"] == "Moderate"
    assert data["actionable_genes"] == ["CYP2D6", "CYP2C19"]

def test_parse_upload_invalid(client):
    response = client.post("/parse", files={"vcf_file": ("bad.vcf", "hello", "text/plain")})
    assert response.status_code == 422
    assert response.json()["error"] == "invalid_vcf_format"

def test_analyze_vcf(client):
    response = client.post(
        "/analyze-vcf",
        files={"vcf_file": ("sample.vcf", VCF, "text/plain")},
        data={"drugs": "codeine, CLOPIDOGREL,AZATHIOPRINE"},
    )
    assert response.status_code == 200
    results = {r["drug"]: r for r in response.json()["results"]}
    assert set(results) == {"CODEINE", "CLOPIDOGREL", "AZATHIOPRINE"}
    assert results["CODEINE"]["patient_id"] == "PATIENT_042"
    assert results["CODEINE"]["risk_assessment"]["risk_label"] == "Ineffective"
    assert results["CLOPIDOGREL"]["pharmacogenomic_profile"]["diplotype"] == "*1/*2"
    assert results["CLOPIDOGREL"]["risk_assessment"]["confidence_score"] == 0.85
    assert results["AZATHIOPRINE"]["pharmacogenomic_profile"]["diplotype"] == "*1/*1"
    assert results["AZATHIOPRINE"]["risk_assessment"]["confidence_score"] == 0.90
    assert results["AZATHIOPRINE"]["quality_metrics"]["vcf_parsing_success"] is True

def test_analyze_vcf_patient_override(client):
    response = client.post(
        "/analyze-vcf",
        files={"vcf_file": ("sample.vcf", VCF, "text/plain")},
        data={"drugs": "CODEINE", "patient_id": "OVERRIDE_1"},
    )
    assert response.json()["results"][0]["patient_id"] == "OVERRIDE_1"

def test_analyze_vcf_invalid_format(client):
    response = client.post(
        "/analyze-vcf",
        files={"vcf_file": ("bad.vcf", "not a vcf", "text/plain")},
        data={"drugs": "CODEINE"},
    )
    assert response.status_code == 422
    assert response.json()["detail"] == "Not a valid VCF file."

def test_analyze_vcf_unsupported_drugs(client):
    response = client.post(
        "/analyze-vcf",
        files={"vcf_file": ("sample.vcf", VCF, "text/plain")},
        data={"drugs": "ASPIRIN"},
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "No supported drugs provided."
    assert response.json()["patient_id"] == "PATIENT_042"


# ─── Comparison and cache ─────────────────────────────────────────────────────

def test_compare_csv(client, body):
    body["drugs"] = ["CODEINE", "TRAMADOL"]
    response = client.post("/compare", json=body)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    lines = response.text.strip().splitlines()
    assert lines[0] == "Drug,Gene,Diplotype,Phenotype,Risk,Confidence"
    assert lines[1] == "CODEINE,CYP2D6,*4/*4,PM,Ineffective,95"
    assert lines[2] == "TRAMADOL,CYP2D6,*4/*4,PM,Ineffective,95"

def test_cpic_cache_status(client, fake_cpic):
    data = client.get("/cpic-cache").json()
    assert data["api_healthy"] is True
    assert data["cache"]["has_pairs"] is False

def test_cpic_cache_actions(client, fake_cpic):
    assert client.post("/cpic-cache?action=warm").json() == {"action": "warm", "success": True, "errors": []}
    assert client.post("/cpic-cache?action=clear").json() == {"action": "clear", "success": True}
    assert fake_cpic.cleared is True
    assert client.post("/cpic-cache?action=drop").status_code == 422

def test_drug_catalog_from_api(client, fake_cpic):
    fake_cpic.catalog = [
        {"drug_id": "RxNorm:2670", "name": "codeine", "display_name": "Codeine",
         "gene": "CYP2D6", "cpic_level": "A", "has_guideline": True},
        {"drug_id": "RxNorm:51499", "name": "irinotecan", "display_name": "Irinotecan",
         "gene": "UGT1A1", "cpic_level": "A", "has_guideline": True},
    ]
    data = client.get("/drugs").json()
    assert data["source"] == "api"
    assert data["count"] == 1
    assert data["drugs"][0]["name"] == "codeine"

def test_drug_catalog_fallback(client, fake_cpic):
    data = client.get("/drugs").json()
    assert data["source"] == "fallback"
    assert data["count"] == 10
    drugs = {d["name"]: d for d in data["drugs"]}
    assert drugs["codeine"] == {"drug_id": "RxNorm:2670", "name": "codeine", "display_name": "Codeine",
                                "gene": "CYP2D6", "cpic_level": "A", "has_guideline": True}
    assert drugs["fluorouracil"]["gene"] == "DPYD"


# ─── Worker threads ───────────────────────────────────────────────────────────

@pytest.fixture
def analysis_threads(monkeypatch):
    """Records, per call to run_analysis, whether it ran outside the event loop."""
    off_loop = []
    original = main.run_analysis

    def recording(*args, **kwargs):
        try:
            asyncio.get_running_loop()
            off_loop.append(False)
        except RuntimeError:
            off_loop.append(True)
        return original(*args, **kwargs)

    monkeypatch.setattr(main, "run_analysis", recording)
    return off_loop

def test_analyze_runs_in_worker_thread(client, body, analysis_threads):
    assert client.post("/analyze", json=body).status_code == 200
    assert analysis_threads == [True]

def test_analyze_vcf_runs_in_worker_thread(client, analysis_threads):
    response = client.post(
        "/analyze-vcf",
        files={"vcf_file": ("sample.vcf", VCF, "text/plain")},
        data={"drugs": "CODEINE"},
    )
    assert response.status_code == 200
    assert analysis_threads == [True]
