import socket

import pytest

from loadprobe.models import Target


@pytest.fixture
def unused_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def target_a():
    return Target("/ok", label="Always OK")


@pytest.fixture
def target_b():
    return Target("/broken", label="Always Broken")
