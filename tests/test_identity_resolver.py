"""Tests for resolving channel handles to PhoneKeys."""

import asyncio

import pytest

from contactsaver.application import IdentityResolver
from contactsaver.domain import UnresolvedIdentity
from contactsaver.infrastructure import InMemoryIdentityCache
from fakes import FakeRemoteLookup


@pytest.mark.asyncio
async def test_phone_shaped_handle_resolves_without_lookups():
    remote = FakeRemoteLookup()
    resolver = IdentityResolver(InMemoryIdentityCache(), remote)
    assert await resolver.resolve("2348051378960@s.whatsapp.net") == "2348051378960"
    assert await resolver.resolve("+234 805 137 8960") == "2348051378960"
    assert remote.calls == []


@pytest.mark.asyncio
async def test_cache_hit_for_opaque_handle():
    cache = InMemoryIdentityCache({"99887766@lid": "+2348051378960"})
    resolver = IdentityResolver(cache)
    assert await resolver.resolve("99887766@lid") == "2348051378960"


@pytest.mark.asyncio
async def test_reverse_scan_matches_alias_digits():
    cache = InMemoryIdentityCache({"99887766:3@lid": "2348051378960"})
    resolver = IdentityResolver(cache)
    assert await resolver.resolve("99887766@lid") == "2348051378960"


@pytest.mark.asyncio
async def test_remote_lookup_result_is_cached():
    cache = InMemoryIdentityCache()
    remote = FakeRemoteLookup({"99887766@lid": "2348051378960"})
    resolver = IdentityResolver(cache, remote)
    assert await resolver.resolve("99887766@lid") == "2348051378960"
    assert cache.phone_for("99887766@lid") == "2348051378960"
    assert await resolver.resolve("99887766@lid") == "2348051378960"
    assert len(remote.calls) == 1


@pytest.mark.asyncio
async def test_unresolvable_handle_raises():
    resolver = IdentityResolver(InMemoryIdentityCache(), FakeRemoteLookup())
    with pytest.raises(UnresolvedIdentity):
        await resolver.resolve("99887766@lid")
    with pytest.raises(UnresolvedIdentity):
        await resolver.resolve("")


@pytest.mark.asyncio
async def test_remote_failure_is_treated_as_unresolved():
    remote = FakeRemoteLookup()
    remote.fail = RuntimeError("socket closed")
    resolver = IdentityResolver(InMemoryIdentityCache(), remote)
    with pytest.raises(UnresolvedIdentity):
        await resolver.resolve("99887766@lid")


@pytest.mark.asyncio
async def test_slow_remote_lookup_times_out():
    class Slow:
        async def resolve(self, candidate_handles):
            await asyncio.sleep(10)
            return "2348051378960"

    resolver = IdentityResolver(InMemoryIdentityCache(), Slow(), timeout=0.01)
    with pytest.raises(UnresolvedIdentity):
        await resolver.resolve("99887766@lid")


def test_candidates_include_opaque_spellings():
    resolver = IdentityResolver(InMemoryIdentityCache())
    assert resolver.candidates("99887766:4@lid") == ["99887766:4@lid", "998877664@lid", "99887766@lid"]
