import os
from pathlib import Path
from dotenv import load_dotenv

# --- Base Directory ---
BASE_DIR = Path(__file__).resolve().parent.parent

# --- Load Environment Variables ---
load_dotenv(BASE_DIR / ".env")


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# --- Backend of Record ---
API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:5000/api").rstrip("/")
# Seconds before any single HTTP call is abandoned and reported as a transport error.
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "15"))

# --- Path Configuration ---
OUTPUT_DIR = BASE_DIR / os.getenv("OUTPUT_DIR", "output")
LOG_DIR = BASE_DIR / os.getenv("LOG_DIR", "logs")
RECONCILIATION_FILE = OUTPUT_DIR / os.getenv(
    "RECONCILIATION_FILENAME", "claim_reconciliation.jsonl"
)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# --- Webhook ---
WEBHOOK_URL = os.getenv("WEBHOOK_URL")
SAVE_JSON_OUTPUT = _env_bool("SAVE_JSON_OUTPUT", True)

# --- QR Receipts ---
QR_VALID_DAYS = int(os.getenv("QR_VALID_DAYS", "7"))
# How long a failed scan stays on screen before the scanner resets itself.
FAILED_DISPLAY_SECONDS = float(os.getenv("FAILED_DISPLAY_SECONDS", "5"))

# --- Variant Matching ---
# False combines every education level of a product into one set of variants.
MATCH_EDUCATION_LEVEL = _env_bool("MATCH_EDUCATION_LEVEL", False)

# Sizes given to ledger rows that were saved without a size label, by position.
DEFAULT_SIZE_LABELS = [
    "Small (S)",
    "Medium (M)",
    "Large (L)",
    "Extra Large (XL)",
]

# --- Inventory Health ---
# A variant is "at reorder point" when REORDER_POINT_MIN <= stock < REORDER_POINT_MAX.
REORDER_POINT_MIN = int(os.getenv("REORDER_POINT_MIN", "20"))
REORDER_POINT_MAX = int(os.getenv("REORDER_POINT_MAX", "50"))

# --- Push Invalidation ---
ITEM_EVENTS = ["item:updated", "item:archived"]
ORDER_EVENTS = ["order:created", "order:claimed"]
