"""
End-to-end tests for the ZeroVault facade.

The client side (encrypt, build link) runs locally; only the envelope and
the file id reach the vault.
"""
import asyncio
import logging

import pytest

from zerovault import link
from zerovault.crypto import CryptoEnvelope, file_digest
from zerovault.exceptions import FormatError, Forbidden, Gone, NotFound, TooLarge
from zerovault.models import HOUR_MS
from zerovault.vault import ZeroVault


class TestUpload:
    async def test_upload_creates_record(self, vault, clock):
        up = await vault.upload(b"envelope-bytes", expiry="6h", file_hash="abc")
        rec = await vault.store.get(up.file_id)
        assert rec.size == len(b"envelope-bytes")
        assert rec.expires_at == clock() + 6 * HOUR_MS
        assert rec.file_hash == "abc"
        assert rec.master_token == up.master_token
        assert await vault.storage.read(up.file_id) == b"envelope-bytes"

    async def test_default_expiry(self, vault, clock):
        up = await vault.upload(b"x")
        assert up.expires_at == clock() + 24 * HOUR_MS

    async def test_ids_are_unique(self, vault):
        ids = {(await vault.upload(b"x")).file_id for _ in range(20)}
        assert len(ids) == 20

    async def test_empty_upload_rejected(self, vault):
        with pytest.raises(FormatError):
            await vault.upload(b"")

    async def test_unknown_expiry_rejected(self, vault):
        with pytest.raises(FormatError):
            await vault.upload(b"x", expiry="3d")

    async def test_too_large(self, vault, config):
        with pytest.raises(TooLarge):
            await vault.upload(b"x" * (config.max_upload_size + 1))
        assert await vault.storage.list_blobs() == []

    async def test_failed_decoy_leaves_nothing(self, vault, monkeypatch):
        async def broken_decoy(file_id):
            raise OSError("disk full")

        monkeypatch.setattr(vault.deniability, "attach_decoy", broken_decoy)
        with pytest.raises(OSError):
            await vault.upload(b"payload", decoy=True)
        assert len(vault.store) == 0
        assert await vault.storage.list_blobs() == []

    async def test_to_dict(self, vault):
        up = await vault.upload(b"x")
        data = up.to_dict()
        assert data["filename"] == up.file_id
        assert data["masterToken"] == up.master_token
        assert data["hasDecoy"] is False


class TestInfo:
    async def test_public_fields(self, vault):
        up = await vault.upload(b"x", burn=True, expiry="1h")
        info = await vault.info(up.file_id)
        assert info["burn"] is True
        assert info["expiryOption"] == "1h"
        assert "masterToken" not in info

    async def test_expired_is_gone(self, vault, clock):
        up = await vault.upload(b"x", expiry="1h")
        clock.advance(HOUR_MS)
        with pytest.raises(Gone):
            await vault.info(up.file_id)

    async def test_unknown(self, vault):
        with pytest.raises(NotFound):
            await vault.info("missing")


class TestBurnAfterRead:
    async def test_scenario_10kb_burn_1h(self, vault, clock):
        env = CryptoEnvelope()
        plaintext = bytes(range(256)) * 40
        key = env.generate_key()
        sealed = env.encrypt(plaintext, key)

        up = await vault.upload(sealed, burn=True, expiry="1h", file_hash=file_digest(plaintext))
        rec = await vault.store.get(up.file_id)
        assert rec.downloads == 0
        assert rec.expires_at == clock() + 3_600_000
        fragment = link.encode(up.file_id, env.export_key(key), "report.bin")

        cap = link.decode(fragment)
        data = await vault.fetch(cap.file_id)
        assert env.decrypt(data, env.import_key(cap.key)) == plaintext
        assert file_digest(plaintext) == rec.file_hash

        assert cap.file_id not in vault.store
        assert not await vault.storage.exists(cap.file_id)
        with pytest.raises((NotFound, Gone)):
            await vault.fetch(cap.file_id)

    async def test_concurrent_burn_single_winner(self, vault):
        up = await vault.upload(b"only once", burn=True)
        results = await asyncio.gather(
            vault.fetch(up.file_id),
            vault.fetch(up.file_id),
            vault.fetch(up.file_id),
            return_exceptions=True,
        )
        assert results.count(b"only once") == 1
        assert all(isinstance(r, (NotFound, Gone)) for r in results if r != b"only once")

    async def test_failed_stream_keeps_file(self, vault):
        up = await vault.upload(b"retry me", burn=True)
        with pytest.raises(ConnectionResetError):
            async with vault.download(up.file_id):
                raise ConnectionResetError()
        assert await vault.fetch(up.file_id) == b"retry me"
        assert up.file_id not in vault.store

    async def test_deleted_after_stream_finishes(self, vault):
        up = await vault.upload(b"stream", burn=True)
        async with vault.download(up.file_id) as data:
            assert data == b"stream"
            assert await vault.storage.exists(up.file_id)
        assert not await vault.storage.exists(up.file_id)

    async def test_failed_burn_delete_stays_claimed(self, vault, monkeypatch, caplog):
        up = await vault.upload(b"stuck", burn=True)

        async def failing_delete(file_id):
            raise OSError("read-only filesystem")

        monkeypatch.setattr(vault.storage, "delete", failing_delete)
        with caplog.at_level(logging.ERROR, logger="zerovault.vault"):
            assert await vault.fetch(up.file_id) == b"stuck"
        assert "incomplete" in caplog.text
        assert up.file_id in vault.store
        with pytest.raises(Gone):
            await vault.fetch(up.file_id)

    async def test_non_burn_counts_downloads(self, vault):
        up = await vault.upload(b"keep")
        await vault.fetch(up.file_id)
        await vault.fetch(up.file_id)
        assert (await vault.info(up.file_id))["downloads"] == 2

    async def test_expired_download_is_gone(self, vault, clock):
        up = await vault.upload(b"late", expiry="1h")
        clock.advance(HOUR_MS + 1)
        with pytest.raises(Gone):
            await vault.fetch(up.file_id)


class TestManagement:
    async def test_heal_then_old_token_forbidden(self, vault):
        up = await vault.upload(b"x")
        healed = await vault.heal(up.file_id, up.master_token)
        assert healed.link_version == 2
        with pytest.raises(Forbidden):
            await vault.heal(up.file_id, up.master_token)
        with pytest.raises(Forbidden):
            await vault.issue_disposable(up.file_id, up.master_token)
        grant = await vault.issue_disposable(up.file_id, healed.new_master_token)
        assert await vault.redeem_disposable(grant.token) == b"x"

    async def test_disposable_single_use_concurrent(self, vault):
        up = await vault.upload(b"one shot")
        grant = await vault.issue_disposable(up.file_id, up.master_token)
        results = await asyncio.gather(
            vault.redeem_disposable(grant.token),
            vault.redeem_disposable(grant.token),
            return_exceptions=True,
        )
        assert results.count(b"one shot") == 1
        assert sum(isinstance(r, (Gone, NotFound)) for r in results) == 1

    async def test_disposable_for_burned_file(self, vault):
        up = await vault.upload(b"gone soon", burn=True)
        grant = await vault.issue_disposable(up.file_id, up.master_token)
        await vault.fetch(up.file_id)
        with pytest.raises(NotFound):
            await vault.redeem_disposable(grant.token)

    async def test_disposable_honours_burn(self, vault):
        up = await vault.upload(b"burn via token", burn=True)
        grant = await vault.issue_disposable(up.file_id, up.master_token)
        assert await vault.redeem_disposable(grant.token) == b"burn via token"
        assert up.file_id not in vault.store


class TestRestart:
    async def test_state_survives_restart(self, config, clock):
        first = ZeroVault(config, clock=clock)
        await first.start(sweep=False)
        up = await first.upload(b"durable", burn=True)
        healed = await first.heal(up.file_id, up.master_token)
        await first.close()

        second = ZeroVault(config, clock=clock)
        await second.start(sweep=False)
        try:
            info = await second.info(up.file_id)
            assert info["linkVersion"] == healed.link_version
            with pytest.raises(Forbidden):
                await second.heal(up.file_id, up.master_token)
            assert await second.fetch(up.file_id) == b"durable"
        finally:
            await second.close()

    async def test_expired_absent_after_one_sweep(self, vault, clock):
        up = await vault.upload(b"short", expiry="1h")
        clock.advance(HOUR_MS + 1)
        await vault.sweeper.sweep()
        assert up.file_id not in vault.store
        assert not await vault.storage.exists(up.file_id)
