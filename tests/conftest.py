import atexit
import faulthandler
import os
import sys
import threading
import time
from typing import Optional

import pytest


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _start_watchdog(timeout_seconds: int) -> Optional[threading.Timer]:
    if timeout_seconds <= 0:
        return None

    def _kill() -> None:
        try:
            faulthandler.dump_traceback(file=sys.stderr, all_threads=True)
        except Exception:
            pass
        # Hard exit: a stuck poller thread must not hang CI.
        os._exit(2)

    timer = threading.Timer(timeout_seconds, _kill)
    timer.daemon = True
    timer.start()
    return timer


def pytest_sessionstart(session) -> None:  # noqa: ANN001
    try:
        faulthandler.enable(all_threads=True)
    except Exception:
        pass

    # Absolute upper bound for the whole test run (default: 10 minutes).
    watchdog_seconds = _env_int("PYTEST_WATCHDOG_TIMEOUT_SECONDS", 10 * 60)
    timer = _start_watchdog(watchdog_seconds)
    if timer is not None:
        atexit.register(timer.cancel)

    dump_every = _env_int("PYTEST_DUMP_STACK_EVERY_SECONDS", 0)
    if dump_every > 0:
        _start_periodic_dump(dump_every)


def _start_periodic_dump(every_seconds: int) -> None:
    def _loop() -> None:
        while True:
            time.sleep(every_seconds)
            try:
                faulthandler.dump_traceback(file=sys.stderr, all_threads=True)
            except Exception:
                pass

    t = threading.Thread(target=_loop, daemon=True)
    t.start()


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path):
    """Never pick up a developer's config file or keyring during tests."""
    from chatguard.utils.config import reset_config_cache

    monkeypatch.setenv("CHATGUARD_CONFIG", str(tmp_path / "missing-config.json"))
    reset_config_cache()
    yield
    reset_config_cache()


@pytest.fixture
def master_key() -> bytes:
    from chatguard.core.crypto import generate_key

    return generate_key()


@pytest.fixture
def key_manager(master_key):
    from chatguard.core.crypto import KeyManager

    return KeyManager(master_key)


@pytest.fixture
def memory_store():
    from chatguard.storage.memory import InMemoryStore

    return InMemoryStore()
