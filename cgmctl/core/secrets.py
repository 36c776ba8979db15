"""
Credential lookup for providers that need a password.

Secrets are keyed by (service, extension id, account email). The config
file may still carry a plain password; a secret store is consulted only
when it does not.

KeyringSecretStore keeps passwords in the desktop keychain through
``keyring``, under the service name ``"<service>.<extension id>"`` with
the account email as the username.
"""

import logging
from typing import Optional, Protocol

import keyring
from keyring.errors import KeyringError

logger = logging.getLogger("cgmctl.core.secrets")

SERVICE_NAME = "cgmctl"
EXTENSION_ID = "librelink"


class SecretStore(Protocol):
    """Credential storage collaborator."""

    def lookup(self, service: str, extension_id: str, email: str) -> Optional[str]: ...

    def store(self, service: str, extension_id: str, email: str, secret: str) -> None: ...


class MemorySecretStore:
    """Process-local secret store."""

    def __init__(self) -> None:
        self._secrets: dict[tuple[str, str, str], str] = {}

    def lookup(self, service: str, extension_id: str, email: str) -> Optional[str]:
        return self._secrets.get((service, extension_id, email))

    def store(self, service: str, extension_id: str, email: str, secret: str) -> None:
        self._secrets[(service, extension_id, email)] = secret


def keyring_service(service: str, extension_id: str) -> str:
    return f"{service}.{extension_id}"


class KeyringSecretStore:
    """Secret store backed by the system keychain."""

    def lookup(self, service: str, extension_id: str, email: str) -> Optional[str]:
        """Return the stored password, or None if absent or the keychain fails."""
        if not email:
            return None
        try:
            return keyring.get_password(keyring_service(service, extension_id), email)
        except KeyringError as e:
            logger.warning(f"Keychain lookup failed for {service}/{extension_id}: {e}")
            return None

    def store(self, service: str, extension_id: str, email: str, secret: str) -> None:
        """Save a password.

        Raises:
            keyring.errors.PasswordSetError: If the keychain rejects the write
        """
        keyring.set_password(keyring_service(service, extension_id), email, secret)
