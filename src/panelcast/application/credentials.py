"""Credential pool – the single point through which API keys are handed out and retired."""

import logging
from typing import List, Optional

from panelcast import config
from panelcast.domain.models import Credential, CredentialStats, UsageUpdate
from panelcast.ports.interfaces import ICredentialStore

logger = logging.getLogger(__name__)


def parse_secrets(text: str) -> List[str]:
    """One secret per line; blank lines and repeats are dropped, order kept."""
    seen = set()
    secrets = []
    for line in (text or "").splitlines():
        secret = line.strip()
        if secret and secret not in seen:
            seen.add(secret)
            secrets.append(secret)
    return secrets


class CredentialPool:
    """Shared by every concurrent synthesis job; all state lives in the store."""

    def __init__(self, store: ICredentialStore, *, usage_limit: int = config.CREDENTIAL_USAGE_LIMIT):
        self._store = store
        self.usage_limit = usage_limit

    async def acquire(self) -> Optional[Credential]:
        credential = await self._store.try_acquire_least_used(self.usage_limit)
        if credential is None:
            logger.warning("No valid credential available")
        else:
            logger.debug("Acquired credential %s (uses=%d)", credential.credential_id, credential.use_count)
        return credential

    async def invalidate(self, credential: Credential) -> None:
        logger.warning("Marking credential %s invalid", credential.credential_id)
        await self._store.mark_invalid(credential.credential_id)

    async def record_usage(self, credential: Credential) -> UsageUpdate:
        update = await self._store.increment_usage(credential.credential_id, self.usage_limit)
        if update.marked_invalid:
            logger.info(
                "Credential %s reached usage limit (%d) and was retired",
                credential.credential_id,
                self.usage_limit,
            )
        return update

    async def add_keys(self, text: str) -> int:
        secrets = parse_secrets(text)
        added = await self._store.add(secrets)
        logger.info("Added %d of %d credential(s)", added, len(secrets))
        return added

    async def statistics(self) -> CredentialStats:
        return await self._store.statistics(self.usage_limit)
