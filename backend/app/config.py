# backend/app/config.py

import os

from dotenv import find_dotenv, load_dotenv

# Load .env from the project root when there is one; plain environment otherwise
dotenv_path = find_dotenv()
if dotenv_path:
    load_dotenv(dotenv_path)

MONGODB_URI = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
MONGODB_DB = os.getenv("MONGODB_DB", "tradejournal")

# Seconds a live quote stays fresh; the free price feeds are rate limited
PRICE_CACHE_TTL = float(os.getenv("PRICE_CACHE_TTL", "30"))
PRICE_MISS_TTL = float(os.getenv("PRICE_MISS_TTL", "10"))
PRICE_QUOTE_CURRENCY = os.getenv("PRICE_QUOTE_CURRENCY", "USD").upper()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
