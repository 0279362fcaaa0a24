"""Gmail OAuth2 helper — generates GMAIL_TOKEN_JSON for .env.

Usage:
    python scripts/gmail_auth.py

This will print a URL. Open it in your browser, sign in, grant read-only
access. After authorization, your browser will redirect to a localhost URL
that won't load — that's expected. Copy the FULL URL from your browser's
address bar and paste it back here.
"""

import json
import re
import sys
import tempfile
from pathlib import Path
from urllib.parse import parse_qs, urlparse

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from dotenv import dotenv_values
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

SCOPES = ["https://www.googleapis.com/auth/gmail.readonly"]
TOKEN_ENV_KEY = "GMAIL_TOKEN_JSON"
ENV_PATH = Path(__file__).resolve().parent.parent / ".env"


def _load_client_config() -> dict:
    creds_json = dotenv_values(ENV_PATH).get("GMAIL_CREDENTIALS_JSON", "")
    if not creds_json:
        print("ERROR: GMAIL_CREDENTIALS_JSON is not set in .env")
        sys.exit(1)
    return json.loads(creds_json)


def update_env_token(env_content: str, token_json: str) -> str:
    """Replace the token line in .env content, or append it."""
    pattern = re.compile(rf"^{re.escape(TOKEN_ENV_KEY)}=.*$", re.MULTILINE)
    if pattern.search(env_content):
        return pattern.sub(lambda _: f"{TOKEN_ENV_KEY}={token_json}", env_content)
    return env_content.rstrip("\n") + f"\n{TOKEN_ENV_KEY}={token_json}\n"


def main():
    client_config = _load_client_config()

    with tempfile.NamedTemporaryFile("w", suffix=".json", delete=False) as tmp:
        json.dump(client_config, tmp)
    tmp_creds = Path(tmp.name)

    try:
        flow = InstalledAppFlow.from_client_secrets_file(
            str(tmp_creds), SCOPES,
            redirect_uri="http://localhost"
        )
        auth_url, _ = flow.authorization_url(access_type="offline", prompt="consent")

        print()
        print("=" * 60)
        print("GMAIL AUTHORIZATION")
        print("=" * 60)
        print()
        print("1. Open this URL in your browser:")
        print()
        print(auth_url)
        print()
        print("2. Sign in and grant Gmail read-only access")
        print("3. Copy the FULL URL you are redirected to (http://localhost?code=...)")
        print()

        redirect_url = input("Paste URL here: ").strip()
        params = parse_qs(urlparse(redirect_url).query)
        if "code" not in params:
            print("ERROR: No authorization code found in the URL.")
            sys.exit(1)

        flow.fetch_token(code=params["code"][0])
        creds = flow.credentials
        token_data = {
            "token": creds.token,
            "refresh_token": creds.refresh_token,
            "token_uri": creds.token_uri,
            "client_id": creds.client_id,
            "client_secret": creds.client_secret,
            "scopes": list(creds.scopes),
        }

        env_content = ENV_PATH.read_text() if ENV_PATH.exists() else ""
        ENV_PATH.write_text(update_env_token(env_content, json.dumps(token_data)))
        print(f"\n{TOKEN_ENV_KEY} has been updated in .env")

        print("Verifying token...")
        test_creds = Credentials.from_authorized_user_info(token_data)
        if test_creds.expired and test_creds.refresh_token:
            test_creds.refresh(Request())
        print("Token is valid! Gmail API is ready.")
    finally:
        tmp_creds.unlink(missing_ok=True)


if __name__ == "__main__":
    main()
