import os
import json
from typing import Mapping, Optional


def get_secret(key: str, path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """
    Returns a secret value. Environment variables take precedence over the secrets file.
    Returns None if the secret is not configured anywhere.
    """
    env = os.environ if environ is None else environ
    if env.get(key):
        return env[key]

    # Fallback to a secrets JSON file, used for development deployments
    if path is None:
        return None
    try:
        with open(path, "r") as f:
            secrets = json.load(f)
    except FileNotFoundError:
        return None
    except json.JSONDecodeError as e:
        raise ValueError(f"Secrets file {path} is not valid JSON: {e}") from e
    value = secrets.get(key) if isinstance(secrets, dict) else None
    return str(value) if value else None
