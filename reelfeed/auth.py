from google_auth_oauthlib.flow import Flow
from google.oauth2 import id_token
from google.auth.transport import requests as google_requests
from .config import settings
import os

# Allow HTTP for local testing
os.environ["OAUTHLIB_INSECURE_TRANSPORT"] = "1"

def create_flow():
    client_config = {
        "web": {
            "client_id": settings.GOOGLE_CLIENT_ID,
            "client_secret": settings.GOOGLE_CLIENT_SECRET,
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": "https://oauth2.googleapis.com/token",
        }
    }

    flow = Flow.from_client_config(
        client_config,
        scopes=settings.SCOPES
    )
    # Force the redirect_uri to be exactly what is in the console
    flow.redirect_uri = settings.REDIRECT_URI
    return flow

def viewer_from_credentials(creds) -> dict:
    """Verifies the ID token of a finished flow and returns the session's viewer."""
    info = id_token.verify_oauth2_token(
        creds.id_token,
        google_requests.Request(),
        settings.GOOGLE_CLIENT_ID
    )
    return {
        "user_id": info["sub"],
        "username": info.get("name") or info.get("email", "").split("@")[0] or "Anonymous",
        "avatar": info.get("picture"),
    }
