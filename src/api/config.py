"""
Configuration Module

Loads environment variables and provides configuration constants for the API.

==============================================================================
FEATURES CONFIGURED IN THIS MODULE:
==============================================================================

1. PLAYGROUND ALLOWANCE (Feature: playground-allowance)
   - PLAN_PLAY_ALLOWANCE: daily quota of playground completions per plan
   - ALLOWANCE_RESET_INTERVAL_SECONDS: how often quotas are restored

2. LLM PROVIDERS (Feature: playground-proxy)
   - OpenAI key, OpenRouter key/base URL/attribution headers

==============================================================================
"""

import os
from dotenv import load_dotenv

# Load .env file
load_dotenv()

# SQLite (local database)
SQLITE_DB_PATH = os.getenv("SQLITE_DB_PATH", os.path.join(os.path.dirname(__file__), "..", "..", "data", "promptlab.db"))

# API
API_TITLE = os.getenv("API_TITLE", "PromptLab API")
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))
API_DEBUG = os.getenv("API_DEBUG", "false").lower() == "true"

# CORS
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:8080").split(",")

# ==============================================================================
# LLM PROVIDERS (Feature: playground-proxy)
# ==============================================================================
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY", "")
OPENROUTER_BASE_URL = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")
# Attribution headers OpenRouter expects on every request
OPENROUTER_REFERER = os.getenv("OPENROUTER_REFERER", "https://promptlab.dev")
OPENROUTER_TITLE = os.getenv("OPENROUTER_TITLE", "PromptLab")

DEFAULT_PLAYGROUND_MODEL = os.getenv("DEFAULT_PLAYGROUND_MODEL", "gpt-3.5-turbo")

# Model used by the "llm" checklist assertion
JUDGE_MODEL = os.getenv("JUDGE_MODEL", "gpt-4-turbo-preview")

# ==============================================================================
# BILLING (Feature: plan-upgrade)
# ==============================================================================
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")

# ==============================================================================
# PLAYGROUND ALLOWANCE (Feature: playground-allowance)
# ==============================================================================
# Daily number of playground completions per plan. Unknown plans fall back
# to the "free" quota.
PLAN_PLAY_ALLOWANCE: dict = {
    "free": int(os.getenv("FREE_PLAY_ALLOWANCE", "3")),
    "pro": int(os.getenv("PRO_PLAY_ALLOWANCE", "10")),
    "unlimited": int(os.getenv("UNLIMITED_PLAY_ALLOWANCE", "1000")),
    "enterprise": int(os.getenv("ENTERPRISE_PLAY_ALLOWANCE", "1000")),
}
ALLOWANCE_RESET_INTERVAL_SECONDS = int(os.getenv("ALLOWANCE_RESET_INTERVAL_SECONDS", "86400"))

# Usage analytics window
USAGE_WINDOW_DAYS = int(os.getenv("USAGE_WINDOW_DAYS", "30"))

# ==============================================================================
# EVALUATIONS (Feature: magic-evaluation)
# ==============================================================================
MAX_EVALUATION_MODELS = 3
