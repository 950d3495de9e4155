"""
Shared pytest fixtures for the tournament engine tests.
"""
import pytest
import sys
import os

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from engine.models import Player
from storage import MemoryStorageAdapter, PersistenceService, YamlStorageAdapter


def make_players(count, elo=None):
    """Players p1..pN seeded in order."""
    return [Player(id=f'p{i}', name=f'Player {i}', seed=i, elo=elo) for i in range(1, count + 1)]


@pytest.fixture
def four_players():
    return make_players(4)


@pytest.fixture
def five_players():
    return make_players(5)


@pytest.fixture
def eight_players():
    return make_players(8)


@pytest.fixture
def memory_store():
    return PersistenceService(MemoryStorageAdapter())


@pytest.fixture
def yaml_store(tmp_path):
    return PersistenceService(YamlStorageAdapter(str(tmp_path / 'tournaments'), lock_timeout=2))


@pytest.fixture
def client(tmp_path, monkeypatch):
    """Flask test client writing to a temporary data directory."""
    import app as app_module

    data_dir = tmp_path / 'data'
    monkeypatch.setattr(app_module, 'DATA_DIR', str(data_dir))
    monkeypatch.setattr(app_module, 'store', PersistenceService(YamlStorageAdapter(str(data_dir), lock_timeout=2)))

    app_module.app.config['TESTING'] = True
    with app_module.app.test_client() as client:
        yield client
