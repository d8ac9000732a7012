import os
import dotenv
import logging

dotenv.load_dotenv()

GITHUB_TOKEN = os.environ.get("GITHUB_TOKEN")
GITHUB_WEBHOOK_SECRET = os.environ.get("GITHUB_WEBHOOK_SECRET")
GITHUB_API_URL = os.environ.get("GITHUB_API_URL", "https://api.github.com")

DIGGER_CONFIG = os.environ.get("DIGGER_CONFIG", "digger.yml")

OVERRIDE_CONFIG = os.environ.get("OVERRIDE_CONFIG")

OVERRIDE_LOGGING = logging.getLevelName(os.environ.get("OVERRIDE_LOGGING", "WARNING"))

REPO_ALLOWLIST = os.environ.get("REPO_ALLOWLIST")
if REPO_ALLOWLIST is not None:
    REPO_ALLOWLIST = REPO_ALLOWLIST.split(",")

TELEGRAM_TOKEN = os.environ.get("TELEGRAM_TOKEN")
TELEGRAM_CHAT_ID = os.environ.get("TELEGRAM_CHAT_ID")

DRY_RUN = os.environ.get("DRY_RUN", "false") == "true"
