import threading
import time

import pytest

from homestead.ENGINES.base import ContainerEngine, EngineResult
from homestead.MODELS.service_descriptor import InstanceState


class FakeEngine(ContainerEngine):
    """
    In-memory engine. Records every call; ``fail`` holds services whose
    start/stop should fail, ``delays`` adds a sleep before a service's start.
    """
    def __init__(self, running=None, fail=None, delays=None):
        self.running = {inst.name: inst for inst in (running or [])}
        self.fail = set(fail or [])
        self.delays = dict(delays or {})
        self.calls = []
        self._lock = threading.Lock()

    def _log(self, *call):
        with self._lock:
            self.calls.append(call)

    def calls_for(self, op):
        return [c[1] for c in self.calls if c[0] == op]

    def list_running(self):
        with self._lock:
            return list(self.running.values())

    def start(self, descriptor):
        self._log("start", descriptor.name)
        if descriptor.name in self.delays:
            time.sleep(self.delays[descriptor.name])
        if descriptor.name in self.fail:
            return EngineResult.failed(f"cannot start {descriptor.name}")
        with self._lock:
            self.running[descriptor.name] = InstanceState(
                container_id=f"id-{descriptor.name}", **descriptor.model_dump()
            )
        return EngineResult.ok()

    def stop(self, name):
        self._log("stop", name)
        if name in self.fail:
            return EngineResult.failed(f"cannot stop {name}")
        with self._lock:
            self.running.pop(name, None)
        return EngineResult.ok()

    def pull(self, image):
        self._log("pull", image)
        return EngineResult.ok()


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def workspace(tmp_path):
    """A directory with a two-service catalog and two env layers."""
    (tmp_path / "services.yml").write_text(
        "services:\n"
        "  db:\n"
        "    image: postgres:16\n"
        "    environment:\n"
        "      POSTGRES_PASSWORD: ${DB_PASSWORD:-changeme}\n"
        "    volumes:\n"
        "      - ./postgres:/var/lib/postgresql/data\n"
        "  web:\n"
        "    image: nginx:${NGINX_TAG:-1.27}\n"
        "    ports:\n"
        "      - \"${WEB_PORT:-8080}:80\"\n"
        "    depends_on:\n"
        "      - db\n"
    )
    (tmp_path / ".env").write_text("WEB_PORT=8888\n")
    (tmp_path / ".env.local").write_text("WEB_PORT=8889\nDB_PASSWORD=s3cret\n")
    return tmp_path
