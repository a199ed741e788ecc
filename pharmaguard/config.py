"""
Runtime configuration read from the environment (.env supported).
"""
import os

from dotenv import find_dotenv, load_dotenv

load_dotenv(find_dotenv())

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")

CPIC_API_BASE = os.getenv("CPIC_API_BASE", "https://api.cpicpgx.org/v1")
CPIC_CACHE_TTL_SECONDS = int(os.getenv("CPIC_CACHE_TTL_SECONDS", str(24 * 60 * 60)))
CPIC_FETCH_TIMEOUT_SECONDS = float(os.getenv("CPIC_FETCH_TIMEOUT_SECONDS", "5"))

# fast = static tables only, api = live CPIC lookups with table fallback
ANALYSIS_MODE = os.getenv("ANALYSIS_MODE", "fast")

CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:3001").split(",")
    if o.strip()
]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

PYTHON_HOST = os.getenv("PYTHON_HOST", "0.0.0.0")
# Render sets PORT; PYTHON_PORT is the local fallback
PYTHON_PORT = int(os.getenv("PORT", os.getenv("PYTHON_PORT", "8000")))
IS_PRODUCTION = os.getenv("PYTHON_ENV", "development") == "production"
