import os
from dotenv import load_dotenv

load_dotenv()

class Settings:
    GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
    GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
    SECRET_KEY = os.getenv("SECRET_KEY", "random_secret_string_for_session")
    REDIRECT_URI = os.getenv("REDIRECT_URI", "http://localhost:8000/auth/callback")
    # Sign-in only needs the identity scopes; store access uses the datastore scope
    SCOPES = [
        "openid",
        "https://www.googleapis.com/auth/userinfo.email",
        "https://www.googleapis.com/auth/userinfo.profile",
        "https://www.googleapis.com/auth/datastore",
    ]

    # Hosted document database (Firestore)
    FIRESTORE_PROJECT_ID = os.getenv("FIRESTORE_PROJECT_ID")
    FIRESTORE_DATABASE = os.getenv("FIRESTORE_DATABASE", "(default)")

    # If keys are missing, default to Mock Mode
    MOCK_MODE = (
        os.getenv("MOCK_MODE", "False").lower() == "true"
        or not GOOGLE_CLIENT_ID
        or not FIRESTORE_PROJECT_ID
    )

    # Feed tuning
    FEED_WINDOW = 100
    FEED_LIMIT = 50
    RECOMMENDED_WINDOW = 200
    RECOMMENDED_LIMIT = 30
    ACTIVATION_THRESHOLD = 0.7
    # Drop videos whose media URL does not answer a HEAD request
    VERIFY_MEDIA = os.getenv("VERIFY_MEDIA", "False").lower() == "true"

    # Assistant chat. OPENAI_BASE_URL allows any OpenAI-compatible endpoint (e.g. Groq)
    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
    OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL")
    OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

    # Gemini API Key for free replies
    GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
    GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")

settings = Settings()
