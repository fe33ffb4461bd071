from functools import lru_cache

from google.cloud import secretmanager

from invoicehub.config import settings

_client = None


def _get_client() -> secretmanager.SecretManagerServiceClient:
    global _client
    if _client is None:
        _client = secretmanager.SecretManagerServiceClient()
    return _client


@lru_cache(maxsize=10)
def get_secret(secret_id: str) -> str:
    """Secrets: firebase-service-account-json, jwt-secret-key"""
    name = f"projects/{settings.GCP_PROJECT_ID}/secrets/{secret_id}/versions/latest"
    response = _get_client().access_secret_version(name=name)
    return response.payload.data.decode("UTF-8")
