import os

from dotenv import load_dotenv

load_dotenv()

NASA_API_KEY = os.getenv("NASA_API_KEY", "DEMO_KEY")
NASA_FEED_URL = os.getenv("NASA_FEED_URL", "https://api.nasa.gov/neo/rest/v1/feed")
FEED_TIMEOUT = float(os.getenv("FEED_TIMEOUT", "10"))
# NeoWs rejects feed windows longer than a week
MAX_FEED_DAYS = 7

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./cosmic_watch.db")

AUTH_SECRET = os.getenv("AUTH_SECRET", "change-me-in-production-0123456789")
AUTH_ALGORITHM = os.getenv("AUTH_ALGORITHM", "HS256")
AUTH_AUDIENCE = os.getenv("AUTH_AUDIENCE") or None
AUTH_ISSUER = os.getenv("AUTH_ISSUER") or None

INGEST_INTERVAL_HOURS = int(os.getenv("INGEST_INTERVAL_HOURS", "1"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
