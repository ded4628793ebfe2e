import pytest

from mix_data import MixConfig, MixSet, shutdown_default
from mixbuilder import build_mix


@pytest.fixture
def write_mix(tmp_path):
    """Write an archive built from a {name: bytes} mapping; returns its path."""
    def _write(filename, files, **options):
        path = tmp_path / filename
        path.write_bytes(build_mix(files, **options))
        return path
    return _write


@pytest.fixture
def mix_set(tmp_path):
    mixes = MixSet(MixConfig(search_paths=[tmp_path]))
    yield mixes.init()
    mixes.shutdown()


@pytest.fixture(autouse=True)
def reset_default_set():
    yield
    shutdown_default()
