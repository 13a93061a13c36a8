"""
Configuration - env vars, constants, API key setup.
"""

import os
import logging
from pathlib import Path
from dotenv import load_dotenv
import google.generativeai as genai

ROOT_DIR = Path(__file__).parent.parent
load_dotenv(ROOT_DIR / '.env')

# Logging
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("papergrader")


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


# ============ DOCUMENT INTELLIGENCE (MinerU) ============
MINERU_BASE_URL = os.environ.get("MINERU_BASE_URL", "https://mineru.net/api/v4")
MINERU_API_KEY = os.environ.get("MINERU_API_KEY", "")
MINERU_MOCK = _env_flag("MINERU_MOCK")
MINERU_MODEL_VERSION = os.environ.get("MINERU_MODEL_VERSION", "vlm")
OCR_POLL_INTERVAL = float(os.environ.get("OCR_POLL_INTERVAL", "2.0"))
OCR_POLL_MAX_ATTEMPTS = int(os.environ.get("OCR_POLL_MAX_ATTEMPTS", "30"))
OCR_HTTP_TIMEOUT = float(os.environ.get("OCR_HTTP_TIMEOUT", "60"))

# ============ AI GRADING ============
# "mock" grades subjective questions offline, "gemini" calls the models below
LLM_PROVIDER = os.environ.get("LLM_PROVIDER", "mock").strip().lower()
GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY")
TEXT_MODEL = os.environ.get("TEXT_MODEL", "gemini-2.5-flash")
VLM_ENABLED = _env_flag("VLM_ENABLED")
VLM_MODEL = os.environ.get("VLM_MODEL", "gemini-2.5-flash")
AI_CALL_TIMEOUT = float(os.environ.get("AI_CALL_TIMEOUT", "30"))

# ============ GRADING TEMPLATES ============
GRADING_CONFIG_PATH = Path(os.environ.get("GRADING_CONFIG_PATH", ROOT_DIR / "asset" / "grading-config.json"))
GRADING_TEMPLATE_DIR = Path(os.environ.get("GRADING_TEMPLATE_DIR", ROOT_DIR / "asset" / "templates"))

MAX_CONCURRENT_PAPERS = int(os.environ.get("MAX_CONCURRENT_PAPERS", "4"))

# ============ DATABASE ============
MONGO_URL = os.environ.get("MONGO_URL", "mongodb://localhost:27017")
DB_NAME = os.environ.get("DB_NAME", "papergrader")

if LLM_PROVIDER != "mock" and not GEMINI_API_KEY:
    logger.warning("⚠️ No GEMINI_API_KEY found - AI grading will fail")
elif GEMINI_API_KEY:
    genai.configure(api_key=GEMINI_API_KEY)


def mineru_enabled() -> bool:
    """Real document-intelligence calls need a key, a base URL and mock mode off."""
    return not MINERU_MOCK and bool(MINERU_API_KEY) and bool(MINERU_BASE_URL)
