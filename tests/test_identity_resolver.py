# tests/test_identity_resolver.py
import logging

import pytest
from conftest import FakeIdentityStore

from attendance_engine.services.identity_resolver import IdentityResolver, normalize_email


def test_normalize_email_trims_and_lowercases():
    assert normalize_email("  Jane@Example.COM ") == "jane@example.com"
    assert normalize_email(None) == ""


@pytest.mark.asyncio
async def test_direct_match_wins_over_alias():
    store = FakeIdentityStore(
        users={"jane@example.com": "user-jane"},
        aliases={"jane@example.com": "user-other"},
    )
    resolver = IdentityResolver(store)

    assert await resolver.resolve("Jane@Example.com") == "user-jane"


@pytest.mark.asyncio
async def test_alias_used_when_no_direct_match():
    store = FakeIdentityStore(aliases={"jane.personal@gmail.com": "user-jane"})
    resolver = IdentityResolver(store)

    assert await resolver.resolve("JANE.personal@gmail.com") == "user-jane"
    assert await resolver.resolve("nobody@example.com") is None
    assert await resolver.resolve("") is None


@pytest.mark.asyncio
async def test_resolve_many_batches_lookups():
    """
    All distinct emails of a run are resolved with one user query and one alias query.
    """
    store = FakeIdentityStore(
        users={"a@example.com": "user-a"},
        aliases={"b@gmail.com": "user-b"},
    )
    resolver = IdentityResolver(store)

    resolved = await resolver.resolve_many(
        ["a@example.com", "A@EXAMPLE.COM", "b@gmail.com", "c@example.com", None]
    )

    assert resolved == {
        "a@example.com": "user-a",
        "b@gmail.com": "user-b",
        "c@example.com": None,
    }
    assert store.batch_calls == 2


@pytest.mark.asyncio
async def test_failed_batch_falls_back_to_single_lookups(caplog):
    """
    A failing batch query is retried per email; a failing single lookup only
    leaves that email unmatched.
    """
    store = FakeIdentityStore(
        users={"a@example.com": "user-a", "b@example.com": "user-b"},
    )
    store.fail_batches = True
    store.fail_emails = {"b@example.com"}
    resolver = IdentityResolver(store)

    with caplog.at_level(logging.WARNING):
        resolved = await resolver.resolve_many(["a@example.com", "b@example.com"])

    assert resolved == {"a@example.com": "user-a", "b@example.com": None}
    assert any("retrying individually" in rec.message for rec in caplog.records)
