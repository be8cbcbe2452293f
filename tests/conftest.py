import os

import pytest

from dupelink.batch_writer import BatchWriter
from dupelink.config import DupelinkConfig
from dupelink.db import Catalog
from dupelink.links import LinkStore


@pytest.fixture
def catalog():
    cat = Catalog.in_memory()
    yield cat
    cat.close()


@pytest.fixture
def logs():
    return []


@pytest.fixture
def writer(catalog, logs):
    # large interval so nothing is written until a test flushes explicitly
    return BatchWriter(catalog, flush_interval=3600, log_cb=logs.append)


@pytest.fixture
def link_store(catalog):
    return LinkStore(catalog)


@pytest.fixture
def make_file(tmp_path):
    def _make(name, content, mtime=None):
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        if mtime is not None:
            os.utime(path, (mtime, mtime))
        return path

    return _make


@pytest.fixture
def cfg():
    return DupelinkConfig(dedupe={"max_workers": 2})
