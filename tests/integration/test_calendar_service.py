"""Integration tests for the renderer and the aiohttp routes."""

import asyncio
from collections.abc import AsyncIterator, Callable
from datetime import datetime
from pathlib import Path

import pytest
from aiohttp.test_utils import TestClient, TestServer

from icalmerger.api.server import _make_app, _refresh_loop
from icalmerger.calendar.merger import EventMerger
from icalmerger.calendar.models import IcsSource
from icalmerger.calendar.parser import IcsRecoveryParser
from icalmerger.core.config_manager import MergerConfig
from icalmerger.domain.merge_cycle import MergeCycle
from icalmerger.domain.renderer import CalendarRenderer

pytestmark = pytest.mark.integration

TZ = "Europe/Berlin"


@pytest.fixture(autouse=True)
def pinned_today(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ICALMERGER_TEST_TIME", "2025-02-04T08:00:00Z")


def _build(
    tmp_path: Path,
    calendar_dir: Path,
    clock: Callable[[], datetime],
    names: tuple[str, ...] = ("Work", "Personal"),
    **overrides: object,
) -> tuple[MergerConfig, MergeCycle, CalendarRenderer]:
    config = MergerConfig(
        calendars=[IcsSource(name=name, url=str(calendar_dir / f"{name}.ics")) for name in names],
        output_path=str(tmp_path / "out" / "merged.ics"),
        output_timezone=TZ,
        **overrides,
    )
    cycle = MergeCycle(
        config, parser=IcsRecoveryParser(clock=clock), merger=EventMerger(clock=clock)
    )
    return config, cycle, CalendarRenderer(cycle.artifact_path, TZ)


@pytest.fixture
def service(
    tmp_path: Path, calendar_dir: Path, fixed_clock: Callable[[], datetime]
) -> tuple[MergerConfig, MergeCycle, CalendarRenderer]:
    return _build(tmp_path, calendar_dir, fixed_clock)


@pytest.fixture
async def client(
    service: tuple[MergerConfig, MergeCycle, CalendarRenderer],
) -> AsyncIterator[TestClient]:
    async with TestClient(TestServer(_make_app(*service))) as test_client:
        yield test_client


class TestCalendarRenderer:
    """Tests for CalendarRenderer."""

    async def test_load_before_first_cycle_raises(
        self, service: tuple[MergerConfig, MergeCycle, CalendarRenderer]
    ) -> None:
        _, _, renderer = service
        with pytest.raises(FileNotFoundError):
            renderer.load()

    async def test_load_is_cached_until_artifact_changes(
        self, service: tuple[MergerConfig, MergeCycle, CalendarRenderer]
    ) -> None:
        _, cycle, renderer = service
        await cycle.run()

        first = renderer.load()
        assert renderer.load() is first
        assert len(first) == 3

        cycle.artifact_path.write_text(
            "BEGIN:VCALENDAR\r\nBEGIN:VEVENT\r\nUID:only\r\nDTSTART:20250204T090000Z\r\n"
            "SUMMARY:Only\r\nEND:VEVENT\r\nEND:VCALENDAR\r\n",
            newline="",
        )
        assert [event.uid for event in renderer.load()] == ["only"]

    async def test_render_full_does_not_reprefix(
        self, service: tuple[MergerConfig, MergeCycle, CalendarRenderer]
    ) -> None:
        _, cycle, renderer = service
        await cycle.run()

        text = renderer.render_full()
        assert "SUMMARY:[Work] Team Meeting\r\n" in text
        assert "[Merged Calendar]" not in text

    async def test_render_filtered_limits_window(
        self, service: tuple[MergerConfig, MergeCycle, CalendarRenderer]
    ) -> None:
        _, cycle, renderer = service
        await cycle.run()

        text = renderer.render_filtered(0, 1)

        assert "X-WR-CALNAME:Summary Calendar\r\n" in text
        assert "Team Meeting" in text
        assert "Standup" in text
        assert "Offsite" not in text

    async def test_render_structured_groups_by_day(
        self, service: tuple[MergerConfig, MergeCycle, CalendarRenderer]
    ) -> None:
        _, cycle, renderer = service
        await cycle.run()

        structured = renderer.render_structured(1, 30)

        assert structured.total_events == 3
        assert [day.date_fmt for day in structured.days] == ["Today", "Thursday, Feb 6"]
        assert [record.summary for record in structured.days[0].events] == [
            "[Work] Team Meeting",
            "[Personal] Standup",
        ]


class TestRoutes:
    """Tests for the HTTP routes."""

    async def test_index_banner(self, client: TestClient) -> None:
        response = await client.get("/")
        assert response.status == 200
        assert "icalmerger" in await response.text()

    async def test_health_before_first_cycle(self, client: TestClient) -> None:
        response = await client.get("/health")
        assert response.status == 503
        body = await response.json()
        assert body["status"] == "starting"
        assert body["last_cycle"] is None

        plain = await client.get("/health?plain")
        assert plain.status == 503

    async def test_calendar_before_first_cycle_is_unavailable(self, client: TestClient) -> None:
        assert (await client.get("/calendar")).status == 503
        assert (await client.get("/summary")).status == 503
        assert (await client.get("/api/calendar")).status == 503

    async def test_health_after_cycle(
        self,
        client: TestClient,
        service: tuple[MergerConfig, MergeCycle, CalendarRenderer],
    ) -> None:
        await service[1].run()

        response = await client.get("/health")
        assert response.status == 200
        body = await response.json()
        assert body["status"] == "ok"
        assert body["last_cycle"]["total_events"] == 3
        assert {source["name"]: source["tier"] for source in body["last_cycle"]["sources"]} == {
            "Work": "strict",
            "Personal": "extraction",
        }

        plain = await client.get("/health?plain")
        assert plain.status == 200
        assert await plain.text() == "OK"

    async def test_calendar_headers_and_body(
        self,
        client: TestClient,
        service: tuple[MergerConfig, MergeCycle, CalendarRenderer],
    ) -> None:
        await service[1].run()

        response = await client.get("/calendar")

        assert response.status == 200
        assert response.headers["Content-Type"] == "text/calendar; charset=utf-8"
        assert response.headers["Content-Disposition"] == "attachment; filename=merged.ics"
        assert response.headers["X-WR-CALNAME"] == "Merged Calendar"
        assert response.headers["Cache-Control"] == "max-age=900, public"
        assert "SUMMARY:[Work] Team Meeting\r\n" in await response.text()

    async def test_calendar_nocache_runs_cycle(self, client: TestClient) -> None:
        response = await client.get("/calendar?nocache")
        assert response.status == 200
        assert "[Personal] Standup" in await response.text()

    async def test_calendar_nocache_without_usable_sources_serves_previous(
        self,
        tmp_path: Path,
        calendar_dir: Path,
        fixed_clock: Callable[[], datetime],
    ) -> None:
        _, good_cycle, _ = _build(tmp_path, calendar_dir, fixed_clock)
        await good_cycle.run()
        config, cycle, renderer = _build(tmp_path, calendar_dir, fixed_clock, names=("Missing",))

        async with TestClient(TestServer(_make_app(config, cycle, renderer))) as test_client:
            response = await test_client.get("/calendar?nocache")
            assert response.status == 200
            assert "[Work] Team Meeting" in await response.text()

    async def test_calendar_nocache_write_failure_is_500(
        self,
        tmp_path: Path,
        calendar_dir: Path,
        fixed_clock: Callable[[], datetime],
    ) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("file in the way")
        config, _, _ = _build(tmp_path, calendar_dir, fixed_clock)
        config = config.model_copy(update={"output_path": str(blocker / "merged.ics")})
        cycle = MergeCycle(config)
        renderer = CalendarRenderer(cycle.artifact_path, TZ)

        async with TestClient(TestServer(_make_app(config, cycle, renderer))) as test_client:
            response = await test_client.get("/calendar?nocache")
            assert response.status == 500

    async def test_summary_uses_configured_window(
        self,
        tmp_path: Path,
        calendar_dir: Path,
        fixed_clock: Callable[[], datetime],
    ) -> None:
        config, cycle, renderer = _build(
            tmp_path, calendar_dir, fixed_clock, summary_days_back=0, summary_days_forward=1
        )
        await cycle.run()

        async with TestClient(TestServer(_make_app(config, cycle, renderer))) as test_client:
            response = await test_client.get("/summary")
            text = await response.text()

        assert response.status == 200
        assert response.headers["Content-Disposition"] == "attachment; filename=summary.ics"
        assert response.headers["X-WR-CALNAME"] == "Summary Calendar"
        assert "Team Meeting" in text
        assert "Offsite" not in text

    async def test_api_calendar_json(
        self,
        client: TestClient,
        service: tuple[MergerConfig, MergeCycle, CalendarRenderer],
    ) -> None:
        await service[1].run()

        response = await client.get("/api/calendar")
        assert response.status == 200
        body = await response.json()

        assert body["total_events"] == 3
        assert body["date_range"] == {"start": "2025-02-03", "end": "2025-03-06"}
        assert [day["date"] for day in body["days"]] == ["2025-02-04", "2025-02-06"]
        first = body["days"][0]["events"][0]
        assert first["start_time"] == "2025-02-04T10:00:00+01:00"
        assert first["start"] == "10:00 AM"

        narrow = await (await client.get("/api/calendar?days_back=0&days_forward=0")).json()
        assert narrow["total_events"] == 2

    @pytest.mark.parametrize("query", ["days_back=-1", "days_forward=abc", "days_back=1.5"])
    async def test_api_calendar_invalid_params_are_400(
        self,
        client: TestClient,
        service: tuple[MergerConfig, MergeCycle, CalendarRenderer],
        query: str,
    ) -> None:
        await service[1].run()

        response = await client.get(f"/api/calendar?{query}")
        assert response.status == 400
        assert "error" in await response.json()


class TestRefreshLoop:
    """Tests for the background refresh loop."""

    async def test_refresh_loop_runs_initial_cycle_and_stops(
        self, service: tuple[MergerConfig, MergeCycle, CalendarRenderer]
    ) -> None:
        _, cycle, _ = service
        stop_event = asyncio.Event()
        task = asyncio.create_task(_refresh_loop(cycle, 3600, stop_event))

        for _ in range(100):
            if cycle.last_report is not None:
                break
            await asyncio.sleep(0.01)
        stop_event.set()
        await asyncio.wait_for(task, timeout=1)

        assert cycle.last_report is not None
        assert cycle.artifact_path.exists()

    async def test_refresh_loop_survives_unexpected_error_in_initial_cycle(
        self, service: tuple[MergerConfig, MergeCycle, CalendarRenderer]
    ) -> None:
        _, cycle, _ = service
        calls = 0
        real_run = cycle.run

        async def flaky_run() -> Path:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("boom")
            return await real_run()

        cycle.run = flaky_run  # type: ignore[method-assign]
        stop_event = asyncio.Event()
        task = asyncio.create_task(_refresh_loop(cycle, 0.01, stop_event))

        for _ in range(100):
            if cycle.last_report is not None:
                break
            await asyncio.sleep(0.01)
        stop_event.set()
        await asyncio.wait_for(task, timeout=1)

        assert calls >= 2
        assert cycle.last_report is not None

    async def test_refresh_loop_survives_failed_cycle(
        self,
        tmp_path: Path,
        calendar_dir: Path,
        fixed_clock: Callable[[], datetime],
    ) -> None:
        _, cycle, _ = _build(tmp_path, calendar_dir, fixed_clock, names=("Missing",))
        stop_event = asyncio.Event()
        task = asyncio.create_task(_refresh_loop(cycle, 0.01, stop_event))

        await asyncio.sleep(0.1)
        stop_event.set()
        await asyncio.wait_for(task, timeout=1)

        assert cycle.last_report is None
        assert cycle.last_error is not None
