import logging

from google.oauth2 import service_account

from .config import GoogleServiceAccountSettings

logger = logging.getLogger(__name__)


def create_app_config_dict(google: GoogleServiceAccountSettings) -> dict:
    """
    Create a dictionary with the configuration for the Google service account app.

    Formats the GOOGLE__* settings into the service-account info dictionary
    expected by ``google.oauth2.service_account``. Escaped newlines in the
    private key are expanded.

    Returns:
        dict: Service account configuration fields.
    """
    google_config = {
        "type": google.type,
        "project_id": google.project_id,
        "private_key_id": google.private_key_id,
        "private_key": google.private_key.replace("\\n", "\n"),
        "client_email": google.client_email,
        "client_id": google.client_id,
        "auth_uri": google.auth_uri,
        "token_uri": google.token_uri,
        "auth_provider_x509_cert_url": google.auth_provider_x509_cert_url,
        "client_x509_cert_url": google.client_x509_cert_url,
        "universe_domain": google.universe_domain,
    }
    # Redact sensitive fields before logging
    redacted_config = google_config.copy()
    for key in ["private_key", "client_email", "client_id", "private_key_id"]:
        if redacted_config.get(key):
            redacted_config[key] = "[REDACTED]"
    logger.debug(f"Google config: {redacted_config}")
    return google_config


def get_google_credentials(
    google: GoogleServiceAccountSettings,
) -> service_account.Credentials:
    """
    Get Google credentials using service account authentication.

    Raises:
        ValueError: If the service account settings are missing or invalid
    """
    creds_dict = create_app_config_dict(google)

    logger.info("Initializing Google service account credentials")
    logger.debug("Using scopes: %s", google.SCOPES)

    try:
        credentials = service_account.Credentials.from_service_account_info(
            info=creds_dict, scopes=google.SCOPES
        )
    except ValueError:
        logger.error(
            "Failed to create credentials: missing or invalid configuration"
        )
        raise

    return credentials
