"""
API key management using the OS keychain.

Keys are looked up in the keychain first and fall back to environment
variables (including values loaded from .env).

Usage:
    from core.secrets import get_api_key, set_api_key

    key = get_api_key("T8_TEXT_API_KEY")
    set_api_key("POLO_VIDEO_API_KEY", "sk-...")
"""

import os
import logging
from typing import Dict, Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

logger = logging.getLogger(__name__)

# Service name for keychain entries
SERVICE_NAME = "storyboard-studio"

# Known API key names and their environment variable equivalents
KNOWN_KEYS = {
    "POLO_TEXT_API_KEY": "Polo gateway key (text models)",
    "POLO_IMAGE_API_KEY": "Polo gateway key (image models)",
    "POLO_VIDEO_API_KEY": "Polo gateway key (video jobs)",
    "T8_TEXT_API_KEY": "T8Star key (text models)",
    "T8_IMAGE_API_KEY": "T8Star key (image models)",
    "T8_VIDEO_API_KEY": "T8Star key (video jobs)",
    "T8_AUDIO_API_KEY": "T8Star key (speech)",
}


def get_api_key(key_name: str, fallback_to_env: bool = True) -> Optional[str]:
    """
    Get an API key, checking keychain first then environment variables.

    Args:
        key_name: Name of the API key (e.g., "T8_TEXT_API_KEY")
        fallback_to_env: If True, check environment variables if not in keychain

    Returns:
        The API key value, or None if not found
    """
    try:
        value = keyring.get_password(SERVICE_NAME, key_name)
        if value:
            logger.debug(f"Retrieved {key_name} from secure keychain")
            return value
    except KeyringError as e:
        logger.debug(f"Keychain access failed for {key_name}: {e}")

    if fallback_to_env:
        value = os.environ.get(key_name)
        if value:
            logger.debug(f"Retrieved {key_name} from environment variable")
            return value

    return None


def set_api_key(key_name: str, value: str) -> bool:
    """Store an API key in the OS keychain. Returns True on success."""
    try:
        keyring.set_password(SERVICE_NAME, key_name, value)
        logger.info(f"Stored {key_name} in secure keychain")
        return True
    except KeyringError as e:
        logger.error(f"Failed to store {key_name} in keychain: {e}")
        return False


def delete_api_key(key_name: str) -> bool:
    """Delete an API key from the OS keychain. Returns True on success."""
    try:
        keyring.delete_password(SERVICE_NAME, key_name)
        logger.info(f"Deleted {key_name} from secure keychain")
        return True
    except PasswordDeleteError:
        logger.warning(f"{key_name} not found in keychain")
        return False
    except KeyringError as e:
        logger.error(f"Failed to delete {key_name} from keychain: {e}")
        return False


def list_api_keys() -> Dict[str, str]:
    """
    List all known API keys and where they come from.

    Returns:
        Dict mapping key names to "keychain", "env" or "not_set"
    """
    status = {}
    for key_name in KNOWN_KEYS:
        try:
            if keyring.get_password(SERVICE_NAME, key_name):
                status[key_name] = "keychain"
                continue
        except KeyringError as e:
            logger.debug(f"Keychain access failed for {key_name}: {e}")

        status[key_name] = "env" if os.environ.get(key_name) else "not_set"
    return status
