"""
Shared fixtures for flowsrc-sync tests.
"""

import shutil
import tempfile
from pathlib import Path

import pytest

from core.models.config import SyncConfig
from tests.fixtures.flows import InMemoryNodeRed, sample_flow_items


@pytest.fixture
def temp_dir():
    """Temporary directory, resolved so it compares equal to engine paths."""
    path = Path(tempfile.mkdtemp()).resolve()
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def source_dir(temp_dir):
    return temp_dir / "src"


@pytest.fixture
def flow_items():
    return sample_flow_items()


@pytest.fixture
def remote():
    return InMemoryNodeRed(rev="5")


@pytest.fixture
def sync_config(temp_dir, source_dir):
    return SyncConfig(
        node_red_url="http://node-red.test:1880",
        source_path=source_dir,
        config_dir=temp_dir,
        file_change_delay_ms=0
    )
