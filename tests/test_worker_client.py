"""Tests for the worker poll loop."""

import asyncio
import json

import httpx
import pytest

from calcgrid.api.server import create_app
from calcgrid.cluster.coordinator import Coordinator
from calcgrid.cluster.models import Job, TaskStatus
from calcgrid.cluster.worker_client import WorkerClient
from calcgrid.config import WorkerSettings


BIG = "1" + "0" * 308


def asgi_worker(coordinator: Coordinator, **kwargs) -> WorkerClient:
    transport = httpx.ASGITransport(app=create_app(coordinator))
    return WorkerClient(poll_interval=0.001, transport=transport, **kwargs)


class TestAgainstCoordinator:
    """Run the worker against an in-process coordinator app."""

    @pytest.mark.asyncio
    async def test_run_once_until_expression_completes(self) -> None:
        coordinator = Coordinator()
        task = await coordinator.submit("3 + 5 * (2 - 4) / 2")
        worker = asgi_worker(coordinator)
        await worker.connect()
        try:
            while await worker.run_once():
                pass
        finally:
            await worker.close()

        done = await coordinator.get_task(task.id)
        assert done.status == TaskStatus.COMPLETED
        assert done.result == "-2"
        assert worker.jobs_done == 4

    @pytest.mark.asyncio
    async def test_division_by_zero_is_reported_as_error(self) -> None:
        coordinator = Coordinator()
        task = await coordinator.submit("3 + 5 * (2 - 4) / 0")
        worker = asgi_worker(coordinator)
        await worker.connect()
        try:
            while await worker.run_once():
                pass
        finally:
            await worker.close()

        assert (await coordinator.get_task(task.id)).result == "Error: division by zero"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "expression, expected",
        [
            (f"{BIG} * 10", "inf"),
            (f"{BIG} * 10 + 1", "inf"),
            (f"{BIG} * 10 - {BIG} * 10", "nan"),
        ],
    )
    async def test_overflowed_values_travel_both_ways(self, expression: str, expected: str) -> None:
        coordinator = Coordinator()
        task = await coordinator.submit(expression)
        worker = asgi_worker(coordinator)
        await worker.connect()
        try:
            while await worker.run_once():
                pass
        finally:
            await worker.close()

        done = await coordinator.get_task(task.id)
        assert done.status == TaskStatus.COMPLETED
        assert done.result == expected

    @pytest.mark.asyncio
    async def test_empty_queue_returns_false(self) -> None:
        worker = asgi_worker(Coordinator())
        await worker.connect()
        try:
            assert await worker.poll() is None
            assert await worker.run_once() is False
        finally:
            await worker.close()
        assert worker.jobs_done == 0

    @pytest.mark.asyncio
    async def test_run_with_concurrent_loops(self) -> None:
        coordinator = Coordinator()
        tasks = [await coordinator.submit(e) for e in ("(1+2)*(3+4)", "10 + 2 * 6", "8/4/2")]
        worker = asgi_worker(coordinator, concurrency=3)
        runner = asyncio.create_task(worker.run())

        for _ in range(500):
            if await coordinator.registry.count(TaskStatus.PENDING) == 0:
                break
            await asyncio.sleep(0.01)
        await worker.stop()
        await runner

        results = [(await coordinator.get_task(t.id)).result for t in tasks]
        assert results == ["21", "22", "1"]


class TestFailures:
    """Test the worker against misbehaving or unreachable coordinators."""

    @pytest.mark.asyncio
    async def test_connection_error_means_no_job(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        worker = WorkerClient(poll_interval=0.001, transport=httpx.MockTransport(handler))
        await worker.connect()
        try:
            assert await worker.poll() is None
            assert await worker.run_once() is False
            assert await worker.report("j1", result=1.0) is False
        finally:
            await worker.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, body",
        [
            (404, {"error": "No tasks available"}),
            (500, {"error": "Internal server error"}),
            (200, {"id": "j1", "operation": "+"}),
            (200, {"id": "j1", "arg1": 1, "arg2": 2, "operation": "^"}),
        ],
    )
    async def test_unusable_poll_response(self, status: int, body: dict) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, json=body)

        worker = WorkerClient(transport=httpx.MockTransport(handler))
        await worker.connect()
        try:
            assert await worker.poll() is None
        finally:
            await worker.close()

    @pytest.mark.asyncio
    async def test_non_json_poll_response(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"<html>")

        worker = WorkerClient(transport=httpx.MockTransport(handler))
        await worker.connect()
        try:
            assert await worker.poll() is None
        finally:
            await worker.close()

    @pytest.mark.asyncio
    async def test_report_payload_and_rejection(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(400, json={"error": "Invalid request body"})

        worker = WorkerClient(transport=httpx.MockTransport(handler))
        await worker.connect()
        try:
            assert await worker.report("j1", error="division by zero") is False
        finally:
            await worker.close()
        assert seen == [{"id": "j1", "error": "division by zero"}]

    @pytest.mark.asyncio
    async def test_lost_report_is_sent_again(self) -> None:
        coordinator = Coordinator()
        task = await coordinator.submit("6 * 7")
        app_transport = httpx.ASGITransport(app=create_app(coordinator))
        dropped = []

        async def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST" and not dropped:
                dropped.append(json.loads(request.content))
                raise httpx.ReadTimeout("connection dropped", request=request)
            return await app_transport.handle_async_request(request)

        worker = WorkerClient(poll_interval=0.001, transport=httpx.MockTransport(handler))
        await worker.connect()
        try:
            assert await worker.run_once() is True
        finally:
            await worker.close()

        assert dropped == [{"id": dropped[0]["id"], "result": 42.0}]
        done = await coordinator.get_task(task.id)
        assert done.status == TaskStatus.COMPLETED
        assert done.result == "42"

    @pytest.mark.asyncio
    async def test_deliver_retries_server_errors_only(self) -> None:
        statuses = [503, 500, 200]
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.method)
            return httpx.Response(statuses[len(calls) - 1], json={})

        worker = WorkerClient(poll_interval=0.001, transport=httpx.MockTransport(handler))
        await worker.connect()
        try:
            assert await worker.deliver("j1", result=1.0) is True
        finally:
            await worker.close()
        assert calls == ["POST", "POST", "POST"]

    @pytest.mark.asyncio
    async def test_deliver_gives_up_when_rejected(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.method)
            return httpx.Response(400, json={"error": "Invalid request body"})

        worker = WorkerClient(poll_interval=0.001, transport=httpx.MockTransport(handler))
        await worker.connect()
        try:
            assert await worker.deliver("j1", result=1.0) is False
        finally:
            await worker.close()
        assert calls == ["POST"]

    @pytest.mark.asyncio
    async def test_non_finite_report_body(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.content)
            return httpx.Response(200, json={})

        worker = WorkerClient(transport=httpx.MockTransport(handler))
        await worker.connect()
        try:
            assert await worker.report("j1", result=float("inf")) is True
        finally:
            await worker.close()
        assert seen == [b'{"id": "j1", "result": Infinity}']

    @pytest.mark.asyncio
    async def test_client_requires_connect(self) -> None:
        with pytest.raises(RuntimeError, match="connect"):
            await WorkerClient().poll()


class TestCompute:
    """Test the operator step on its own."""

    def test_result(self) -> None:
        assert WorkerClient.compute(Job(id="j", arg1=10, arg2=4, operation="-")) == {"result": 6.0}

    def test_zero_divisor(self) -> None:
        assert WorkerClient.compute(Job(id="j", arg1=1, arg2=0, operation="/")) == {"error": "division by zero"}

    def test_from_settings(self) -> None:
        settings = WorkerSettings(coordinator_url="http://coord:9000/", poll_interval=0.5, concurrency=4)
        worker = WorkerClient.from_settings(settings)
        assert worker.coordinator_url == "http://coord:9000"
        assert worker.poll_interval == 0.5
        assert worker.request_timeout is None
        assert worker.concurrency == 4
