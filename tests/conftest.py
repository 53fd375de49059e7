import itertools

import pytest

from zerovault.config import VaultConfig
from zerovault.models import now_ms
from zerovault.vault import ZeroVault


class FakeClock:
    """Controllable millisecond clock."""

    def __init__(self, start: int | None = None):
        self.now = start if start is not None else now_ms()

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class CountingRandom:
    """Deterministic RandomSource: every call returns distinct bytes."""

    def __init__(self):
        self.calls: list[bytes] = []
        self._counter = itertools.count(1)

    def random_bytes(self, n: int) -> bytes:
        seed = next(self._counter).to_bytes(8, "big")
        out = (seed * (n // len(seed) + 1))[:n]
        self.calls.append(out)
        return out


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    return VaultConfig(
        storage_root=str(tmp_path / "uploads"),
        metadata_file=str(tmp_path / "metadata.json"),
        max_upload_size=64 * 1024,
        disposable_token_ttl=600,
    )


@pytest.fixture
async def vault(config, clock):
    """A started vault with the background sweeper disabled."""
    zv = ZeroVault(config, clock=clock)
    await zv.start(sweep=False)
    yield zv
    await zv.close()
