import logging
import os

import google.auth
from google.api_core.exceptions import GoogleAPICallError
from google.auth.exceptions import DefaultCredentialsError
from google.cloud import secretmanager

logger = logging.getLogger(__name__)


def get_secret(name: str) -> str | None:
    """
    Read a secret from Google Secret Manager.
    Falls back to environment variable for local development.
    """
    # Local dev fallback
    env_val = os.environ.get(name)
    if env_val:
        return env_val

    try:
        creds, project_id = google.auth.default()
        if not project_id:
            project_id = os.environ.get("GOOGLE_CLOUD_PROJECT")

        if not project_id:
            return None

        client = secretmanager.SecretManagerServiceClient(credentials=creds)
        secret_path = f"projects/{project_id}/secrets/{name}/versions/latest"
        resp = client.access_secret_version(request={"name": secret_path})
        return resp.payload.data.decode("utf-8").strip()

    except (DefaultCredentialsError, GoogleAPICallError) as e:
        logger.warning("Secret Manager read failed for %s: %s", name, e)
        return None
