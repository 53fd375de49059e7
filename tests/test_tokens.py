"""Tests for TokenAuthority: healing and disposable tokens."""
import asyncio

import pytest

from zerovault.exceptions import Forbidden, Gone, NotFound
from zerovault.models import FileRecord
from zerovault.storage import MetadataFile
from zerovault.store import VaultMetadataStore
from zerovault.tokens import TokenAuthority


@pytest.fixture
async def authority(tmp_path, clock):
    store = VaultMetadataStore(MetadataFile(tmp_path / "meta.json"), clock=clock)
    master = TokenAuthority.issue_master_token()
    await store.create(FileRecord.new("f1", 10, clock(), master_token=master))
    auth = TokenAuthority(store, disposable_ttl=300, clock=clock)
    auth.master = master
    return auth


class TestMasterToken:
    def test_tokens_are_unique_and_opaque(self):
        tokens = {TokenAuthority.issue_master_token() for _ in range(50)}
        assert len(tokens) == 50
        assert all(len(t) == 64 for t in tokens)


class TestHealLink:
    async def test_heal_rotates_token(self, authority):
        result = await authority.heal_link("f1", authority.master)
        assert result.new_master_token != authority.master
        assert result.link_version == 2
        assert result.to_dict() == {
            "newMasterToken": result.new_master_token, "linkVersion": 2,
        }

    async def test_old_token_forbidden_after_heal(self, authority):
        result = await authority.heal_link("f1", authority.master)
        with pytest.raises(Forbidden):
            await authority.heal_link("f1", authority.master)
        with pytest.raises(Forbidden):
            await authority.issue_disposable_token("f1", authority.master)
        again = await authority.heal_link("f1", result.new_master_token)
        assert again.link_version == 3
        await authority.issue_disposable_token("f1", again.new_master_token)

    async def test_wrong_token(self, authority):
        with pytest.raises(Forbidden):
            await authority.heal_link("f1", "not-the-token")

    async def test_unknown_file(self, authority):
        with pytest.raises(NotFound):
            await authority.heal_link("missing", authority.master)

    async def test_concurrent_heals_single_winner(self, authority):
        results = await asyncio.gather(
            authority.heal_link("f1", authority.master),
            authority.heal_link("f1", authority.master),
            return_exceptions=True,
        )
        assert sum(isinstance(r, Forbidden) for r in results) == 1


class TestDisposable:
    async def test_issue(self, authority, clock):
        grant = await authority.issue_disposable_token("f1", authority.master)
        assert grant.ttl == 300
        assert grant.expires_at == clock() + 300_000

    async def test_issue_forbidden(self, authority):
        with pytest.raises(Forbidden):
            await authority.issue_disposable_token("f1", "bad")

    async def test_redeem_single_use(self, authority):
        grant = await authority.issue_disposable_token("f1", authority.master)
        record = await authority.redeem_disposable_token(grant.token)
        assert record.file_id == "f1"
        with pytest.raises(Gone):
            await authority.redeem_disposable_token(grant.token)

    async def test_redeem_expired(self, authority, clock):
        grant = await authority.issue_disposable_token("f1", authority.master)
        clock.advance(300_000)
        with pytest.raises(Gone):
            await authority.redeem_disposable_token(grant.token)

    async def test_redeem_unknown(self, authority):
        with pytest.raises(NotFound):
            await authority.redeem_disposable_token("nope")

    async def test_ttl_independent_of_file_expiry(self, authority, clock):
        authority_long = TokenAuthority(authority._store, disposable_ttl=30 * 24 * 3600, clock=clock)
        grant = await authority_long.issue_disposable_token("f1", authority.master)
        record = await authority._store.get("f1")
        assert grant.expires_at > record.expires_at
