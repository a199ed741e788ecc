"""
Tests for LLM explanation generation. No network: the OpenAI client is stubbed.
"""
from types import SimpleNamespace

import httpx
import openai
import pytest

from pharmaguard import config
from pharmaguard.llm_service import (
    build_explanation_prompt,
    extract_json,
    fallback_explanation,
    generate_explanation,
)
from pharmaguard.models import Gene, Phenotype, RiskLabel, Severity

VARIANTS = [{"gene": "CYP2D6", "star_allele": "*4", "rsid": "rs3892097"},
            {"gene": "CYP2D6", "star_allele": "*4", "rsid": "rs3892097"}]


class StubCompletions:
    def __init__(self, content=None, error=None):
        self.content, self.error = content, error
        self.requests = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def stub_client(**kwargs):
    return SimpleNamespace(chat=SimpleNamespace(completions=StubCompletions(**kwargs)))


def explain(client=None, **overrides):
    args = dict(
        gene=Gene.CYP2D6, diplotype="*4/*4", phenotype=Phenotype.PM, drug="CODEINE",
        risk_label=RiskLabel.INEFFECTIVE, severity=Severity.LOW, detected_variants=VARIANTS,
        recommendation="Select alternative analgesic.", client=client,
    )
    args.update(overrides)
    return generate_explanation(**args)


# ─── Fallback ─────────────────────────────────────────────────────────────────

def test_fallback_without_api_key(monkeypatch):
    monkeypatch.setattr(config, "OPENAI_API_KEY", "")
    result = explain()
    assert "CYP2D6" in result["summary"]
    assert "poor metabolizer" in result["summary"]
    assert "*4/*4" in result["mechanism"]
    assert result["recommendation"] == "Select alternative analgesic."
    assert result["citations"] == "rs3892097, rs3892097"

def test_placeholder_key_is_treated_as_missing(monkeypatch):
    monkeypatch.setattr(config, "OPENAI_API_KEY", "sk-your-key-here")
    assert explain() == fallback_explanation(
        "CYP2D6", "*4/*4", "PM", "CODEINE", "Ineffective", VARIANTS, "Select alternative analgesic.")

def test_fallback_without_variants():
    result = fallback_explanation("TPMT", "*1/*1", "NM", "AZATHIOPRINE", "Safe", [])
    assert "no specific variants" in result["mechanism"]
    assert result["citations"] == ""
    assert result["recommendation"].startswith("Consult")


# ─── LLM path ─────────────────────────────────────────────────────────────────

def test_uses_llm_json():
    client = stub_client(content='{"summary": "S", "mechanism": "M", "recommendation": "R"}')
    result = explain(client)
    assert result == {"summary": "S", "mechanism": "M", "recommendation": "R",
                      "citations": "rs3892097, rs3892097"}
    request = client.chat.completions.requests[0]
    assert request["model"] == config.OPENAI_MODEL
    assert request["response_format"] == {"type": "json_object"}
    assert "Ineffective" in request["messages"][1]["content"]

def test_fenced_json_is_unwrapped():
    client = stub_client(content='```json\n{"summary": "S", "mechanism": "M"}\n```')
    result = explain(client)
    assert result["summary"] == "S"
    assert result["recommendation"] == "Select alternative analgesic."

def test_invalid_json_falls_back():
    result = explain(stub_client(content="The patient is a poor metabolizer."))
    assert "poor metabolizer" in result["summary"]
    assert result["citations"] == "rs3892097, rs3892097"

def test_non_object_json_falls_back():
    assert explain(stub_client(content="[1, 2]"))["recommendation"] == "Select alternative analgesic."

def test_api_error_falls_back():
    error = openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))
    result = explain(stub_client(error=error))
    assert "CYP2D6" in result["mechanism"]


# ─── Prompt helpers ───────────────────────────────────────────────────────────

def test_prompt_contains_determined_values():
    prompt = build_explanation_prompt("CYP2C19", "*1/*2", "IM", "CLOPIDOGREL", "Adjust Dosage",
                                      "moderate", [], "Consider alternative antiplatelet therapy.")
    assert "*1/*2" in prompt
    assert "Adjust Dosage (Severity: moderate)" in prompt
    assert "wild-type" in prompt

@pytest.mark.parametrize("raw, expected", [
    ('{"a": 1}', '{"a": 1}'),
    ('```\n{"a": 1}\n```', '{"a": 1}'),
    ('Here you go:\n```json\n{"a": 1}\n```\nDone', '{"a": 1}'),
])
def test_extract_json(raw, expected):
    assert extract_json(raw) == expected
