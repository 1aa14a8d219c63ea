import os
from dotenv import load_dotenv

load_dotenv()

# --- Firebase / GCP ---
PROJECT_ID = os.getenv("GCP_PROJECT_ID")
SA_KEY_PATH = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
BUCKET_NAME = os.getenv("GCP_STORAGE_BUCKET")

FIREBASE_API_KEY = os.getenv("FIREBASE_API_KEY", "")
FIREBASE_AUTH_DOMAIN = os.getenv("FIREBASE_AUTH_DOMAIN")
FIREBASE_MESSAGING_SENDER_ID = os.getenv("FIREBASE_MESSAGING_SENDER_ID")
FIREBASE_APP_ID = os.getenv("FIREBASE_APP_ID")

# --- App ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
SESSION_COOKIE_NAME = "session"
SESSION_COOKIE_DAYS = int(os.getenv("SESSION_COOKIE_DAYS", "5"))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


def frontend_config() -> dict:
    """Public Firebase web config, safe to hand to the browser."""
    return {
        "apiKey": FIREBASE_API_KEY,
        "authDomain": FIREBASE_AUTH_DOMAIN,
        "projectId": PROJECT_ID,
        "storageBucket": BUCKET_NAME,
        "messagingSenderId": FIREBASE_MESSAGING_SENDER_ID,
        "appId": FIREBASE_APP_ID,
    }
