"""
Credential collaborators consumed by the sync orchestrator.

The orchestrator never stores secrets. It asks a CredentialProvider for a
CardDAV password or the current OAuth access token right before a sync.
Acquiring, refreshing and encrypting those secrets belongs to the host
application; EnvCredentialProvider covers command line use.
"""

import logging
import os
import re
from collections.abc import Mapping
from typing import Optional, Protocol

# Environment variable names. <ID> is the source or account id, upper-cased
# with non-alphanumerics replaced by underscores.
ENV_PASSWORD_PREFIX = "CONTACTSYNC_PASSWORD_"
ENV_PASSWORD = "CONTACTSYNC_PASSWORD"
ENV_TOKEN_PREFIX = "CONTACTSYNC_TOKEN_"
ENV_ACCESS_TOKEN = "CONTACTSYNC_ACCESS_TOKEN"

logger = logging.getLogger(__name__)


class CredentialError(Exception):
    """Raised when a credential cannot be obtained."""

    pass


class CredentialProvider(Protocol):
    """Source of secrets for the sync orchestrator."""

    def get_carddav_password(self, source_id: str) -> str:
        """Return the password of a CardDAV source."""
        ...

    def get_account_token(self, account_id: str) -> str:
        """Return a current access token for a linked email account."""
        ...

    def get_source_token(self, source_id: str) -> str:
        """Return a current access token for a standalone OAuth source."""
        ...


def env_key(prefix: str, identifier: str) -> str:
    """Build an environment variable name for an id."""
    suffix = re.sub(r"[^A-Za-z0-9]", "_", identifier).upper()
    return f"{prefix}{suffix}"


class EnvCredentialProvider:
    """
    CredentialProvider backed by environment variables.

    Lookup order for a CardDAV password: CONTACTSYNC_PASSWORD_<SOURCE_ID>,
    then CONTACTSYNC_PASSWORD. For tokens: CONTACTSYNC_TOKEN_<ID>, then
    CONTACTSYNC_ACCESS_TOKEN.

    Usage:
        provider = EnvCredentialProvider()
        password = provider.get_carddav_password(source.id)
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self.environ = environ if environ is not None else os.environ

    def _lookup(self, specific: str, fallback: str, what: str) -> str:
        for name in (specific, fallback):
            value = self.environ.get(name)
            if value:
                logger.debug(f"Using {what} from ${name}")
                return value
        raise CredentialError(f"no {what} configured (set ${specific} or ${fallback})")

    def get_carddav_password(self, source_id: str) -> str:
        return self._lookup(
            env_key(ENV_PASSWORD_PREFIX, source_id), ENV_PASSWORD, "CardDAV password"
        )

    def get_account_token(self, account_id: str) -> str:
        return self._lookup(
            env_key(ENV_TOKEN_PREFIX, account_id), ENV_ACCESS_TOKEN, "access token"
        )

    def get_source_token(self, source_id: str) -> str:
        return self._lookup(
            env_key(ENV_TOKEN_PREFIX, source_id), ENV_ACCESS_TOKEN, "access token"
        )
