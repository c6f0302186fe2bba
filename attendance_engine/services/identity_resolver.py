# attendance_engine/services/identity_resolver.py
from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional

from attendance_engine.services.interfaces import IdentityStore

logger = logging.getLogger(__name__)


def normalize_email(email: Optional[str]) -> str:
    """
    Lowercase and trim a provider-reported email. None becomes "".
    """
    return (email or "").strip().lower()


class IdentityResolver:
    """
    Maps provider-reported emails to registered user ids.

    Resolution order
    ----------------
    1) Exact match on the registered-user email.
    2) Alias table (`alias_email -> user_id`) maintained by administrators.
    3) Otherwise None: the participant stays unmatched.

    Lookups are batched: all distinct emails of a run are resolved with one
    user query and one alias query. If a batch lookup fails, each email is
    retried on its own so that a single bad lookup only degrades that
    participant to unmatched.
    """

    def __init__(self, store: IdentityStore) -> None:
        self.store = store

    async def resolve(self, email: Optional[str]) -> Optional[str]:
        """
        Resolve a single email to a user id, or None.
        """
        normalized = normalize_email(email)
        if not normalized:
            return None
        resolved = await self.resolve_many([normalized])
        return resolved.get(normalized)

    async def resolve_many(self, emails: Iterable[Optional[str]]) -> Dict[str, Optional[str]]:
        """
        Resolve every distinct email in `emails`.

        Returns
        -------
        dict
            Normalized email -> user id (None when unmatched). Empty emails
            are not included.
        """
        distinct = sorted({normalize_email(e) for e in emails if normalize_email(e)})
        if not distinct:
            return {}

        direct = await self._batch_or_single(
            distinct,
            self.store.find_users_by_emails,
            self.store.find_user_by_email,
            "user",
        )
        result: Dict[str, Optional[str]] = {
            email: direct.get(email) for email in distinct
        }

        remaining = [email for email in distinct if result[email] is None]
        if remaining:
            aliased = await self._batch_or_single(
                remaining,
                self.store.find_alias_targets,
                self.store.find_alias_target,
                "alias",
            )
            for email in remaining:
                result[email] = aliased.get(email)

        return result

    async def _batch_or_single(self, emails, batch_lookup, single_lookup, kind: str) -> Dict[str, str]:
        try:
            found = await batch_lookup(emails)
        except Exception as exc:
            logger.warning(
                "Batch %s lookup failed for %d emails, retrying individually: %s",
                kind,
                len(emails),
                exc,
            )
        else:
            return {normalize_email(k): v for k, v in found.items() if v}

        found_single: Dict[str, str] = {}
        for email in emails:
            try:
                user_id = await single_lookup(email)
            except Exception as exc:
                logger.warning("Identity %s lookup failed for %s: %s", kind, email, exc)
                continue
            if user_id:
                found_single[email] = user_id
        return found_single
