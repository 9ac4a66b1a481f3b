"""Tests for the controller driving a reconciler from store events."""

import asyncio
import dataclasses
from collections.abc import AsyncGenerator, Callable
from typing import Any

import pytest

from helm_operator.annotation import FINALIZER, LAST_ACTION
from helm_operator.config import ControllerConfig
from helm_operator.controller import Controller
from helm_operator.exceptions import HelmException, ReconcileException
from helm_operator.manifest import Resource
from helm_operator.reconciler import Reconciler, ReleaseLockManager, Result
from helm_operator.release.fake import (
    FakeActionClient,
    FakeActionClientGetter,
    InstallCall,
)
from helm_operator.store import InMemoryStore
from helm_operator.task import TaskServiceImpl
from helm_operator.watches import WatchDescriptor

CONFIG = ControllerConfig(reconcile_timeout=5.0, base_backoff=0.005, max_backoff=0.05)


@pytest.fixture
async def task_service() -> AsyncGenerator[TaskServiceImpl, None]:
    task_service = TaskServiceImpl()
    yield task_service
    await task_service.cancel_all()


@pytest.fixture
def reconciler(
    descriptor: WatchDescriptor,
    store: InMemoryStore,
    client_getter: FakeActionClientGetter,
    locks: ReleaseLockManager,
) -> Reconciler:
    return Reconciler(descriptor, store, client_getter, locks)


@pytest.fixture
async def controller(
    reconciler: Reconciler,
    store: InMemoryStore,
    task_service: TaskServiceImpl,
) -> AsyncGenerator[Controller, None]:
    controller = Controller(reconciler, store, task_service, config=CONFIG)
    yield controller
    await controller.close()


async def wait_idle(controller: Controller) -> None:
    await asyncio.wait_for(controller.queue.wait_idle(), timeout=5)


async def test_initial_sync(
    controller: Controller,
    store: InMemoryStore,
    client: FakeActionClient,
    make_resource: Callable[..., Resource],
) -> None:
    """Test objects that exist before the controller starts are reconciled."""
    obj = store.add_object(make_resource())
    controller.start()
    await wait_idle(controller)

    assert len(client.installs) == 1
    assert not client.upgrades
    current = store.get_object(obj.key)
    assert current is not None
    assert current.has_finalizer(FINALIZER)


async def test_lifecycle(
    controller: Controller,
    store: InMemoryStore,
    client: FakeActionClient,
    make_resource: Callable[..., Resource],
) -> None:
    """Test create, update and delete events drive the release."""
    controller.start()
    obj = store.add_object(make_resource())
    await wait_idle(controller)
    assert len(client.installs) == 1

    current = store.get_object(obj.key)
    assert current is not None
    current.spec = {"replicaCount": 5}
    store.update_object(current)
    await wait_idle(controller)
    assert [call.values for call in client.upgrades] == [{"replicaCount": 5}]

    store.delete_object(obj.key)
    await wait_idle(controller)
    assert len(client.uninstalls) == 1
    assert store.get_object(obj.key) is None
    assert len(client.installs) == 1


async def test_status_update_does_not_trigger(
    controller: Controller,
    store: InMemoryStore,
    client: FakeActionClient,
    make_resource: Callable[..., Resource],
) -> None:
    controller.start()
    obj = store.add_object(make_resource())
    await wait_idle(controller)
    calls = len(client.calls)

    store.update_status(obj.key, {"observed": True})
    await asyncio.sleep(0.01)
    await wait_idle(controller)
    assert len(client.calls) == calls


async def test_error_is_retried(
    controller: Controller,
    store: InMemoryStore,
    client: FakeActionClient,
    backend: Any,
    make_resource: Callable[..., Resource],
) -> None:
    """Test a failed reconcile is retried with backoff until it succeeds."""
    attempts: list[InstallCall] = []
    installed = asyncio.Event()

    async def flaky_install(call: InstallCall) -> Any:
        attempts.append(call)
        if len(attempts) < 3:
            raise HelmException("temporarily unavailable")
        release = await backend.install(call)
        installed.set()
        return release

    client.handle_install = flaky_install
    controller.start()
    obj = store.add_object(make_resource())
    await asyncio.wait_for(installed.wait(), timeout=5)
    await wait_idle(controller)

    assert len(attempts) == 3
    current = store.get_object(obj.key)
    assert current is not None
    assert current.annotations[LAST_ACTION] == "install"
    assert controller.queue.num_requeues(obj.key) == 0


async def test_reconcile_timeout(
    reconciler: Reconciler,
    store: InMemoryStore,
    client: FakeActionClient,
    task_service: TaskServiceImpl,
    make_resource: Callable[..., Resource],
) -> None:
    """Test a reconcile exceeding its deadline is reported as an error."""

    async def hang(call: InstallCall) -> Any:
        await asyncio.sleep(10)

    client.handle_install = hang
    controller = Controller(
        reconciler,
        store,
        task_service,
        config=ControllerConfig(reconcile_timeout=0.05, max_backoff=60.0),
    )
    obj = store.add_object(make_resource())
    result = await controller.process(obj.key)
    assert result.is_error
    assert isinstance(result.err, ReconcileException)
    assert "Timed out" in str(result.err)
    assert controller.queue.num_requeues(obj.key) == 1
    await controller.close()


async def test_requeue_after_period(
    descriptor: WatchDescriptor,
    store: InMemoryStore,
    client: FakeActionClient,
    client_getter: FakeActionClientGetter,
    locks: ReleaseLockManager,
    task_service: TaskServiceImpl,
    make_resource: Callable[..., Resource],
) -> None:
    """Test a periodic resync reconciles the object again."""
    reconciler = Reconciler(
        dataclasses.replace(descriptor, reconcile_period=0.05),
        store,
        client_getter,
        locks,
    )
    controller = Controller(reconciler, store, task_service, config=CONFIG)
    repaired = asyncio.Event()

    async def reconcile(call: Any) -> None:
        repaired.set()

    client.handle_reconcile = reconcile
    obj = store.add_object(make_resource())
    assert await controller.process(obj.key) == Result.requeue(0.05)
    controller.start()
    await asyncio.wait_for(repaired.wait(), timeout=5)
    await controller.close()


async def test_close_stops_workers(
    controller: Controller,
    store: InMemoryStore,
    client: FakeActionClient,
    make_resource: Callable[..., Resource],
) -> None:
    controller.start()
    await controller.close()
    store.add_object(make_resource())
    await asyncio.sleep(0.01)
    assert not client.calls
