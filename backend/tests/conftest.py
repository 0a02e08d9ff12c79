import json
import shutil
import string
import threading
import time
import uuid
from pathlib import Path

import pytest
import zmq

from kanjiblock.blocks import BlockData
from kanjiblock.config import (
    DEFAULT_GLYPH_RANGE,
    DEFAULT_REFERENCE_ADDRESS,
    StyleConfig,
)
from kanjiblock.zmq_server import ZMQServer

EXAMPLE_HASH = "0x1234567890abcdef" + "00" * 24
OTHER_ADDRESS = "0x00000000219ab540356cbb839cbe05303d7705fa"

# Same size as the built-in kanji table, but drawable with any font
_ALNUM = string.ascii_letters + string.digits
LATIN_GLYPHS = tuple(a + b for a in _ALNUM for b in _ALNUM)[:DEFAULT_GLYPH_RANGE]


def make_block(
    block_hash: str = EXAMPLE_HASH,
    *,
    number: int | None = 1,
    difficulty: int = 17_179_869_184,
    special_transfers: int = 0,
    other_transfers: int = 3,
) -> BlockData:
    """Block with `special_transfers` txs to the reference address."""
    txs = [{"to": DEFAULT_REFERENCE_ADDRESS} for _ in range(special_transfers)]
    txs += [{"to": OTHER_ADDRESS} for _ in range(other_transfers)]
    return BlockData.from_dict(
        {
            "hash": block_hash,
            "number": number,
            "difficulty": difficulty,
            "transactions": txs,
        }
    )


SAMPLE_BLOCKS = {
    "1": {
        "hash": "0x88e96d4537bea4d9c05d12549907b32561d3bf31f45aae734cdc119f13406cb6",
        "difficulty": 17171480576,
        "transactions": [],
    },
    "46147": {
        "hash": "0x4e3a3754410177e6937ef1f84bba68ea139e8d1a2258c5f85db9f1cd715a1bdd",
        "difficulty": 1100000000000,
        "transactions": [{"to": "0x5df9b87991262f6ba471f09758cde1c0fc1de734"}],
    },
    "4000000": {
        "hash": "0xb8a3f7f5cfc1748f91a684f20fe89031202cbadcd15078c49b85ec2a57f43853",
        "difficulty": "0x6ce4f54a6e4e1",
        "transactions": [
            {"to": DEFAULT_REFERENCE_ADDRESS.upper().replace("0X", "0x")}
            for _ in range(11)
        ],
    },
}


@pytest.fixture
def block():
    return make_block()


@pytest.fixture(scope="session")
def glyph_table_path(tmp_path_factory):
    path = tmp_path_factory.mktemp("glyphs") / "latin.json"
    path.write_text(json.dumps(LATIN_GLYPHS))
    return str(path)


@pytest.fixture(scope="session")
def latin_config(glyph_table_path):
    """Default style settings drawing from LATIN_GLYPHS."""
    return StyleConfig(glyph_table_path=glyph_table_path)


@pytest.fixture
def config(latin_config):
    return latin_config


@pytest.fixture
def blocks_file(home_tmp_path):
    """Sample block file under ~/ (required by validate_block_file)."""
    path = home_tmp_path / "blocks.json"
    path.write_text(json.dumps(SAMPLE_BLOCKS))
    return path


@pytest.fixture
def home_tmp_path():
    """tmp_path equivalent under ~/ for tests that go through validate_block_file."""
    base = Path.home() / ".cache" / "kanjiblock" / "test-tmp"
    base.mkdir(parents=True, exist_ok=True)
    d = base / f"test_{uuid.uuid4().hex[:8]}"
    d.mkdir()
    yield d
    shutil.rmtree(d, ignore_errors=True)


def _wait_for_server(srv: ZMQServer, timeout: float = 2.0) -> bool:
    """Ping the server until it responds or timeout expires."""
    ctx = zmq.Context()
    sock = ctx.socket(zmq.REQ)
    sock.setsockopt(zmq.LINGER, 0)
    sock.setsockopt(zmq.RCVTIMEO, 500)
    sock.connect(f"tcp://127.0.0.1:{srv.ping_port}")
    deadline = time.monotonic() + timeout
    alive = False
    while time.monotonic() < deadline:
        try:
            sock.send_json({"cmd": "ping", "id": "health", "_token": srv.token})
            resp = sock.recv_json()
            if resp.get("status") == "alive":
                alive = True
                break
        except zmq.Again:
            # REQ socket is stuck mid-exchange after a timeout; start over
            sock.close()
            sock = ctx.socket(zmq.REQ)
            sock.setsockopt(zmq.LINGER, 0)
            sock.setsockopt(zmq.RCVTIMEO, 500)
            sock.connect(f"tcp://127.0.0.1:{srv.ping_port}")
            time.sleep(0.05)
    sock.close()
    ctx.term()
    return alive


@pytest.fixture(scope="session")
def _zmq_server_session(latin_config):
    """Start ONE ZMQ server per session."""
    srv = ZMQServer(config=latin_config)
    thread = threading.Thread(target=srv.run, daemon=True)
    thread.start()
    if not _wait_for_server(srv):
        pytest.skip("ZMQ server failed to start within 2s")
    yield srv
    srv.running = False
    # Wait for poller timeout cycle to complete
    thread.join(timeout=2.0)


@pytest.fixture
def zmq_server(_zmq_server_session):
    """Function-scoped wrapper: resets state between tests, shares session server."""
    _zmq_server_session.reset_state()
    _zmq_server_session.running = True
    yield _zmq_server_session


class AuthenticatedZmqClient:
    """Wraps a ZMQ REQ socket and auto-injects the auth token."""

    def __init__(self, sock: zmq.Socket, token: str):
        self._sock = sock
        self._token = token

    def request(self, msg: dict) -> dict:
        msg["_token"] = self._token
        self._sock.send_json(msg)
        return self._sock.recv_json()

    def close(self) -> None:
        self._sock.close()


@pytest.fixture
def zmq_client(zmq_server):
    """REQ socket connected to the test server (auto-injects auth token)."""
    ctx = zmq.Context()
    sock = ctx.socket(zmq.REQ)
    sock.setsockopt(zmq.LINGER, 0)
    sock.setsockopt(zmq.RCVTIMEO, 10_000)
    sock.connect(f"tcp://127.0.0.1:{zmq_server.port}")
    client = AuthenticatedZmqClient(sock, zmq_server.token)
    yield client
    sock.close()
    ctx.term()
