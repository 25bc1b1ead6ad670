"""
Teemplot Billing - Centralized Configuration
=============================================
All environment variables and constants are loaded here.
No other module should call os.getenv() directly.
"""

import os
import sys
from dotenv import load_dotenv

load_dotenv()


# ==========================================
# 🗄️ Database
# ==========================================
DATABASE_URL = os.getenv("DATABASE_URL")

if not DATABASE_URL:
    DB_USER = os.getenv("DB_USER")
    DB_PASSWORD = os.getenv("DB_PASSWORD")
    DB_HOST = os.getenv("DB_HOST", "localhost")
    DB_PORT = os.getenv("DB_PORT", "5432")
    DB_NAME = os.getenv("DB_NAME")

    if not all([DB_USER, DB_PASSWORD, DB_HOST, DB_NAME]):
        print("[ERROR] Critical: Database config missing in .env (DATABASE_URL or DB_USER, DB_PASSWORD, DB_HOST, DB_NAME)")
        sys.exit(1)

    DATABASE_URL = f"postgresql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"


# ==========================================
# 🔐 Security
# ==========================================
SECRET_KEY = os.getenv("SECRET_KEY")

if not SECRET_KEY:
    print("[ERROR] Critical: SECRET_KEY missing in .env")
    sys.exit(1)

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 7  # 7 days


# ==========================================
# 💳 Payment Gateways
# ==========================================
PAYMENT_PROVIDER = os.getenv("PAYMENT_PROVIDER", "paystack").lower()
PAYSTACK_SECRET_KEY = os.getenv("PAYSTACK_SECRET_KEY", "")
FLUTTERWAVE_SECRET_KEY = os.getenv("FLUTTERWAVE_SECRET_KEY", "")
FLUTTERWAVE_SECRET_HASH = os.getenv("FLUTTERWAVE_SECRET_HASH", "")

GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS") or "15")
GATEWAY_VERIFY_ATTEMPTS = int(os.getenv("GATEWAY_VERIFY_ATTEMPTS") or "3")
GATEWAY_RETRY_WAIT_SECONDS = float(os.getenv("GATEWAY_RETRY_WAIT_SECONDS") or "0.5")

# Gateway redirects the browser back here: {FRONTEND_URL}/payment/callback?reference=...
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://127.0.0.1:5173")


# ==========================================
# 💰 Plans & Pricing (price per seat, major currency unit)
# ==========================================
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "NGN")

PLAN_PRICES = {
    "silver_monthly": int(os.getenv("SILVER_MONTHLY_PLAN") or "1200"),
    "silver_yearly": int(os.getenv("SILVER_YEARLY_PLAN") or "12000"),
    "gold_monthly": int(os.getenv("GOLD_MONTHLY_PLAN") or "2500"),
    "gold_yearly": int(os.getenv("GOLD_YEARLY_PLAN") or "25000"),
}

DEFAULT_PLAN = "silver_monthly"
MONTHLY_PERIOD_DAYS = 30
YEARLY_PERIOD_DAYS = 365

MAX_SEATS_PER_UPGRADE = 100


# ==========================================
# 🔧 App
# ==========================================
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Background reconciliation of intents nobody verified (lost webhook, closed tab)
SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"
PENDING_RECONCILE_AFTER_MINUTES = int(os.getenv("PENDING_RECONCILE_AFTER_MINUTES") or "60")
PENDING_RECONCILE_INTERVAL_MINUTES = 5

APP_VERSION = "1.0.0"
