"""Tests for the bootstrap_user script."""

import importlib.util
from pathlib import Path

import pytest

from tokenward.service.runtime import Runtime

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "bootstrap_user.py"


@pytest.fixture
def bootstrap():
    spec = importlib.util.spec_from_file_location("bootstrap_user", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.mark.parametrize(
    "password, ok",
    [("short1!", False), ("alllowercaseletters", False), ("Longer-Password-1", True)],
)
def test_validate_password(bootstrap, password, ok):
    assert bootstrap.validate_password(password) is ok


async def test_creates_then_reports_existing(bootstrap, settings, memory_store):
    created = await bootstrap.bootstrap_user(
        "admin", "admin@x.com", "Longer-Password-1", runtime=Runtime(settings, store=memory_store)
    )
    again = await bootstrap.bootstrap_user(
        "admin", "admin@x.com", "Longer-Password-1", runtime=Runtime(settings, store=memory_store)
    )

    assert created["status"] == "created"
    assert again == {"user_id": created["user_id"], "username": "admin", "status": "exists"}


async def test_dry_run_writes_nothing(bootstrap, settings, memory_store):
    result = await bootstrap.bootstrap_user(
        "admin", "admin@x.com", "Longer-Password-1", True, runtime=Runtime(settings, store=memory_store)
    )

    assert result["status"] == "dry_run"
    assert memory_store.users == {}
