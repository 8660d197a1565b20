import logging
import socket

import pytest
from aiohttp.test_utils import TestServer


class SequenceRandom:
    """Stand-in for random.Random whose choice() replays a fixed character stream."""

    def __init__(self, chars: str):
        self.chars = list(chars)
        self.position = 0

    def choice(self, alphabet):
        char = self.chars[self.position]
        self.position += 1
        assert char in alphabet
        return char


@pytest.fixture
def sequence_rng():
    def make(*codes):
        return SequenceRandom(''.join(codes))
    return make


async def start_server(app) -> TestServer:
    server = TestServer(app)
    await server.start_server()
    return server


@pytest.fixture
def closed_port():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(('127.0.0.1', 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.fixture
def serve():
    """Coroutine that starts an aiohttp app on a local port; caller closes it."""
    return start_server


@pytest.fixture
def run_dir(tmp_path, monkeypatch):
    """Run from ``tmp_path`` and put back the root log handlers setup_logging replaces."""
    monkeypatch.chdir(tmp_path)
    root_logger = logging.getLogger()
    saved_handlers = root_logger.handlers[:]
    saved_level = root_logger.level
    yield tmp_path
    for handler in root_logger.handlers[:]:
        if handler not in saved_handlers:
            root_logger.removeHandler(handler)
            handler.close()
    for handler in saved_handlers:
        if handler not in root_logger.handlers:
            root_logger.addHandler(handler)
    root_logger.setLevel(saved_level)
