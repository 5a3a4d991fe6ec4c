"""Secrets Manager helper utilities.

Provides cached helpers to read the credential mapping from AWS Secrets
Manager when it is not supplied inline through the environment.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from typing import Any, Dict

import boto3


@lru_cache(maxsize=1)
def _get_secrets_client() -> Any:
    """Return a cached boto3 Secrets Manager client bound to AWS_REGION."""
    region = os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION") or "us-east-1"
    return boto3.client("secretsmanager", region_name=region)


def get_secret_string(secret_name: str) -> str:
    """Fetch a secret string value by name.

    Args:
        secret_name: Full name of the secret in Secrets Manager.

    Returns:
        Secret value as a raw string.
    """
    client = _get_secrets_client()
    response = client.get_secret_value(SecretId=secret_name)
    if "SecretString" in response:
        return str(response["SecretString"])
    # Fallback if binary secret
    return response.get("SecretBinary", b"").decode("utf-8")


def get_secret_json(secret_name: str) -> Dict[str, Any]:
    """Fetch and parse a JSON object secret by name.

    Raises:
        ValueError: if the secret is not a JSON object.
    """
    raw = get_secret_string(secret_name)
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"secret {secret_name} is not valid JSON") from e
    if not isinstance(payload, dict):
        raise ValueError(f"secret {secret_name} must hold a JSON object")
    return payload
