"""Tests for the CLI's HTTP client, formatter and command dispatch."""

import argparse

import httpx
import pytest
from rich.console import Console

from calcgrid.api.server import create_app
from calcgrid.cli import main as cli_main
from calcgrid.cli.client import APIError, CalcGridClient
from calcgrid.cli.formatter import CLIFormatter
from calcgrid.cluster.coordinator import Coordinator
from calcgrid.cluster.models import JobReport


def asgi_client(coordinator: Coordinator) -> CalcGridClient:
    return CalcGridClient(transport=httpx.ASGITransport(app=create_app(coordinator)))


def recording_formatter() -> CLIFormatter:
    return CLIFormatter(Console(record=True, width=120, color_system=None))


class TestCalcGridClient:
    """Test the client against an in-process coordinator app."""

    @pytest.mark.asyncio
    async def test_submit_list_get(self) -> None:
        coordinator = Coordinator()
        async with asgi_client(coordinator) as api:
            submitted = await api.calculate("2 * 3")
            assert submitted == {"id": "expr_1"}
            assert [e["id"] for e in await api.list_expressions()] == ["expr_1"]
            expression = await api.get_expression("expr_1")
            assert expression["status"] == "pending"
            assert expression["expression"] == "2 * 3"

    @pytest.mark.asyncio
    async def test_sync_mode_returns_result(self) -> None:
        async with asgi_client(Coordinator(mode="sync")) as api:
            assert await api.calculate("100 * (2 + 12) / 14") == {"id": "expr_1", "result": "100"}
            assert (await api.health())["mode"] == "sync"

    @pytest.mark.asyncio
    async def test_unknown_expression_raises(self) -> None:
        async with asgi_client(Coordinator()) as api:
            with pytest.raises(APIError) as exc_info:
                await api.get_expression("expr_404")
        assert exc_info.value.status_code == 404
        assert exc_info.value.detail == "Expression not found"

    @pytest.mark.asyncio
    async def test_invalid_expression_raises(self) -> None:
        async with asgi_client(Coordinator()) as api:
            with pytest.raises(APIError) as exc_info:
                await api.calculate("3 + 5 * (2 - 4")
        assert exc_info.value.status_code == 422
        assert exc_info.value.detail == "mismatched parentheses"

    @pytest.mark.asyncio
    async def test_wait_for_completed_expression(self) -> None:
        coordinator = Coordinator()
        task = await coordinator.submit("1 + 1")
        job = await coordinator.claim_job()
        async with asgi_client(coordinator) as api:
            with pytest.raises(TimeoutError):
                await api.wait_for_expression(task.id, poll_interval=0.001, timeout=0.0)

            await coordinator.report_job(JobReport(id=job.id, result=2.0))
            expression = await api.wait_for_expression(task.id, poll_interval=0.001, timeout=1.0)
        assert expression["result"] == "2"

    @pytest.mark.asyncio
    async def test_connection_errors_exhaust_retries(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            raise httpx.ConnectError("connection refused", request=request)

        api = CalcGridClient(max_retries=1, transport=httpx.MockTransport(handler))
        async with api:
            with pytest.raises(ConnectionError, match="after 1 attempts"):
                await api.health()
        assert calls == ["/health"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body, detail",
        [
            (b'["boom"]', '["boom"]'),
            (b'"boom"', '"boom"'),
            (b"<html>oops</html>", "<html>oops</html>"),
            (b'{"message": "boom"}', '{"message": "boom"}'),
        ],
    )
    async def test_error_body_without_error_field(self, body: bytes, detail: str) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, content=body)

        async with CalcGridClient(transport=httpx.MockTransport(handler)) as api:
            with pytest.raises(APIError) as exc_info:
                await api.health()
        assert exc_info.value.status_code == 502
        assert exc_info.value.detail == detail

    @pytest.mark.asyncio
    async def test_requires_connect(self) -> None:
        with pytest.raises(RuntimeError):
            await CalcGridClient().health()


class TestFormatter:
    def test_expressions_sorted_numerically(self) -> None:
        fmt = recording_formatter()
        fmt.print_expressions(
            [
                {"id": "expr_10", "expression": "1+1", "status": "completed", "result": "2"},
                {"id": "expr_2", "expression": "1/0", "status": "completed", "result": "Error: division by zero"},
                {"id": "expr_3", "expression": "2*2", "status": "pending"},
            ]
        )
        out = fmt.console.export_text()
        assert out.index("expr_2") < out.index("expr_3") < out.index("expr_10")
        assert "Error: division by zero" in out

    def test_submitted_and_health(self) -> None:
        fmt = recording_formatter()
        fmt.print_submitted({"id": "expr_1", "result": "22"})
        fmt.print_health({"status": "ok", "mode": "sync", "expressions": 1})
        out = fmt.console.export_text()
        assert "expr_1" in out
        assert "22" in out
        assert "sync" in out


class TestCommands:
    """Test command dispatch with the HTTP client pointed at an ASGI app."""

    @pytest.fixture
    def coordinator(self, monkeypatch) -> Coordinator:
        coordinator = Coordinator(mode="sync")
        transport = httpx.ASGITransport(app=create_app(coordinator))

        class InProcessClient(CalcGridClient):
            def __init__(self, **kwargs) -> None:
                super().__init__(transport=transport, **kwargs)

        monkeypatch.setattr(cli_main, "CalcGridClient", InProcessClient)
        return coordinator

    @staticmethod
    def args(*argv: str) -> argparse.Namespace:
        return cli_main.parse_args(list(argv))

    @pytest.mark.asyncio
    async def test_calc_then_get(self, coordinator: Coordinator) -> None:
        fmt = recording_formatter()
        assert await cli_main.run_command(self.args("calc", "10 + 2 * 6"), fmt) == 0
        assert await cli_main.run_command(self.args("get", "expr_1"), fmt) == 0
        assert await cli_main.run_command(self.args("list"), fmt) == 0
        assert "22" in fmt.console.export_text()

    @pytest.mark.asyncio
    async def test_api_error_exit_code(self, coordinator: Coordinator) -> None:
        fmt = recording_formatter()
        assert await cli_main.run_command(self.args("calc", "1 / 0"), fmt) == 1
        assert "division by zero" in fmt.console.export_text()

    @pytest.mark.asyncio
    async def test_json_output(self, coordinator: Coordinator) -> None:
        fmt = recording_formatter()
        assert await cli_main.run_command(self.args("--json", "health"), fmt) == 0
        assert '"mode": "sync"' in fmt.console.export_text()

    @pytest.mark.asyncio
    async def test_calc_wait_uses_max_wait(self, monkeypatch) -> None:
        coordinator = Coordinator(mode="distributed")
        transport = httpx.ASGITransport(app=create_app(coordinator))
        waits = []

        class WaitRecordingClient(CalcGridClient):
            def __init__(self, **kwargs) -> None:
                super().__init__(transport=transport, **kwargs)

            async def wait_for_expression(self, expression_id, *, poll_interval=1.0, timeout=60.0):
                waits.append(timeout)
                return await self.get_expression(expression_id)

        monkeypatch.setattr(cli_main, "CalcGridClient", WaitRecordingClient)
        fmt = recording_formatter()
        args = self.args("--timeout", "5", "calc", "1 + 1", "--wait", "--max-wait", "300")
        assert await cli_main.run_command(args, fmt) == 0
        assert waits == [300.0]
        assert "expr_1" in fmt.console.export_text()

    def test_calc_max_wait_default(self) -> None:
        args = self.args("calc", "1 + 1", "--wait")
        assert args.max_wait == 60.0
        assert args.timeout == 30.0

    def test_eval_locally(self, capsys) -> None:
        with pytest.raises(SystemExit) as exc_info:
            cli_main.main(["eval", "2 / (1 - 1)"])
        assert exc_info.value.code == 1
        assert "DivisionByZero" in capsys.readouterr().out

    def test_parse_args_defaults(self, monkeypatch) -> None:
        monkeypatch.delenv("CALCGRID_API_URL", raising=False)
        args = cli_main.parse_args(["calc", "1+1", "--wait"])
        assert args.url == "http://localhost:8080"
        assert args.wait is True
