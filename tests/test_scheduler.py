from __future__ import annotations

import asyncio
import logging
import threading

import pytest

from conftest import svg_bytes
from dotpreview.rendering.models import ProcessFailure, Severity, Success, Timeout
from dotpreview.scheduler import RenderScheduler, SchedulerState


async def wait_until(predicate, timeout: float = 3.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def _scheduler(surface, runner, **kwargs) -> RenderScheduler:
    kwargs.setdefault("debounce_seconds", 0.05)
    kwargs.setdefault("initial_delay_seconds", 0.0)
    return RenderScheduler(surface, runner, **kwargs)


def test_first_update_renders_and_publishes_diagnostics(runner, surface) -> None:
    text = "digraph {\n a -> b\n}"
    runner.outcomes[text] = Success(
        payload=svg_bytes("ab"),
        exit_code=0,
        diagnostic_text="Warning: node b in line 2 has no label\n",
    )
    reports = []

    async def scenario() -> RenderScheduler:
        scheduler = _scheduler(surface, runner, on_diagnostics=reports.append)
        await scheduler.start()
        scheduler.request_update(text)
        await wait_until(lambda: surface.of("markup"))
        await scheduler.stop()
        return scheduler

    scheduler = asyncio.run(scenario())

    assert runner.texts() == [text]
    assert runner.calls[0].token is not None
    assert "<text>ab</text>" in surface.of("markup")[0]
    assert len(reports) == 1
    assert reports[0].sequence_id == 1
    assert [(issue.severity, issue.line) for issue in reports[0].issues] == [(Severity.WARNING, 2)]
    assert scheduler.last_report is reports[0]
    assert scheduler.state is SchedulerState.DISPOSED


def test_unchanged_text_is_not_rendered_again(runner, surface) -> None:
    async def scenario() -> SchedulerState:
        scheduler = _scheduler(surface, runner)
        await scheduler.start()
        scheduler.request_update("graph { a }")
        await wait_until(lambda: surface.of("markup"))
        scheduler.request_update("graph { a }")
        state = scheduler.state
        await asyncio.sleep(0.2)
        await scheduler.stop()
        return state

    state = asyncio.run(scenario())

    assert state is SchedulerState.IDLE
    assert runner.texts() == ["graph { a }"]


def test_forced_update_renders_unchanged_text(runner, surface) -> None:
    async def scenario() -> None:
        scheduler = _scheduler(surface, runner)
        await scheduler.start()
        scheduler.request_update("graph { a }")
        await wait_until(lambda: surface.of("markup"))
        scheduler.request_update("graph { a }", force=True)
        await wait_until(lambda: len(surface.of("markup")) == 2)
        await scheduler.stop()

    asyncio.run(scenario())

    assert runner.texts() == ["graph { a }", "graph { a }"]


def test_rapid_edits_collapse_into_one_render(runner, surface) -> None:
    async def scenario() -> None:
        scheduler = _scheduler(surface, runner, debounce_seconds=0.1)
        await scheduler.start()
        scheduler.request_update("graph { }")
        await wait_until(lambda: surface.of("markup"))
        for text in ("graph { a", "graph { a -", "graph { a -- b }"):
            scheduler.request_update(text)
            await asyncio.sleep(0.01)
        await wait_until(lambda: len(runner.calls) == 2)
        await asyncio.sleep(0.2)
        await scheduler.stop()

    asyncio.run(scenario())

    assert runner.texts() == ["graph { }", "graph { a -- b }"]


def test_reverting_to_rendered_text_cancels_armed_debounce(runner, surface) -> None:
    async def scenario() -> None:
        scheduler = _scheduler(surface, runner, debounce_seconds=0.1)
        await scheduler.start()
        scheduler.request_update("graph { a }")
        await wait_until(lambda: surface.of("markup"))
        scheduler.request_update("graph { a b }")
        assert scheduler.state is SchedulerState.DEBOUNCING
        scheduler.request_update("graph { a }")
        assert scheduler.state is SchedulerState.IDLE
        await asyncio.sleep(0.25)
        await scheduler.stop()

    asyncio.run(scenario())

    assert runner.texts() == ["graph { a }"]


def test_updates_during_a_render_coalesce_into_one_follow_up(runner, surface) -> None:
    async def scenario() -> None:
        scheduler = _scheduler(surface, runner)
        await scheduler.start()
        scheduler.request_update("v0")
        await wait_until(lambda: surface.of("markup"))

        runner.block("v1")
        scheduler.request_update("v1")
        await wait_until(lambda: len(runner.calls) == 2)
        assert scheduler.state is SchedulerState.RUNNING

        scheduler.request_update("v2")
        await wait_until(lambda: scheduler.snapshot()["pending"])
        scheduler.request_update("v3")
        await asyncio.sleep(0.2)
        assert len(runner.calls) == 2

        runner.release("v1")
        await wait_until(lambda: len(runner.calls) == 3)
        await wait_until(lambda: scheduler.state is SchedulerState.IDLE)
        await asyncio.sleep(0.15)
        await scheduler.stop()

    asyncio.run(scenario())

    assert runner.texts() == ["v0", "v1", "v3"]
    assert "v3" in surface.of("markup")[-1]


def test_forced_update_supersedes_running_job_and_drops_its_result(runner, surface) -> None:
    runner.honour_cancel = False

    async def scenario() -> None:
        scheduler = _scheduler(surface, runner)
        await scheduler.start()
        runner.block("old")
        scheduler.request_update("old")
        await wait_until(lambda: len(runner.calls) == 1)

        scheduler.request_update("new", force=True)
        await wait_until(lambda: len(runner.calls) == 2)
        assert runner.calls[0].token.cancelled
        await wait_until(lambda: surface.of("markup"))

        runner.release("old")
        await asyncio.sleep(0.1)
        assert scheduler.latest_sequence_id == 2
        await scheduler.stop()

    asyncio.run(scenario())

    markups = surface.of("markup")
    assert len(markups) == 1
    assert "new" in markups[0]
    assert surface.of("error") == []


def test_dispose_during_render_is_silent(runner, surface) -> None:
    async def scenario() -> None:
        scheduler = _scheduler(surface, runner)
        await scheduler.start()
        runner.block("slow")
        scheduler.request_update("slow")
        await wait_until(lambda: len(runner.calls) == 1)
        await scheduler.stop()
        await asyncio.sleep(0.05)
        scheduler.request_update("after dispose", force=True)
        await asyncio.sleep(0.05)

    asyncio.run(scenario())

    assert runner.calls[0].token.cancelled
    assert runner.texts() == ["slow"]
    assert surface.of("error") == []
    assert surface.of("markup") == []
    assert surface.events[-1] == ("dispose", None)


@pytest.mark.parametrize(
    "outcome, kind, prefix",
    [
        (
            ProcessFailure(cause="[Errno 2] No such file or directory: 'dot'"),
            "error",
            "Failed to execute Graphviz 'dot'. Is it installed and in PATH?",
        ),
        (Timeout(seconds=10.0), "status", "Rendering timed out after 10s; the next edit will retry"),
        (
            Success(payload=b"", exit_code=1, diagnostic_text="Error: <stdin>: syntax error in line 2 near '}'"),
            "error",
            "No output produced. Error on line 2",
        ),
        (
            Success(payload=b'<!DOCTYPE svg [<!ENTITY a "b">]><svg>&a;</svg>', exit_code=0),
            "error",
            "Rendered SVG was rejected:",
        ),
    ],
)
def test_outcomes_are_presented_to_the_surface(runner, surface, outcome, kind, prefix) -> None:
    runner.outcomes["graph"] = outcome

    async def scenario() -> None:
        scheduler = _scheduler(surface, runner)
        await scheduler.start()
        scheduler.request_update("graph")
        await wait_until(lambda: surface.of(kind) and str(surface.of(kind)[-1]).startswith(prefix))
        await scheduler.stop()

    asyncio.run(scenario())

    assert surface.of("markup") == []


def test_failed_render_is_retried_for_the_same_text(runner, surface) -> None:
    runner.outcomes["graph"] = Timeout(seconds=1.0)

    async def scenario() -> None:
        scheduler = _scheduler(surface, runner)
        await scheduler.start()
        scheduler.request_update("graph")
        await wait_until(lambda: len(runner.calls) == 1 and scheduler.state is SchedulerState.IDLE)
        del runner.outcomes["graph"]
        scheduler.request_update("graph")
        await wait_until(lambda: surface.of("markup"))
        await scheduler.stop()

    asyncio.run(scenario())

    assert runner.texts() == ["graph", "graph"]


def test_follow_up_to_previous_text_renders_after_a_failure(runner, surface) -> None:
    runner.outcomes["Y"] = ProcessFailure(cause="io")

    async def scenario() -> None:
        scheduler = _scheduler(surface, runner)
        await scheduler.start()
        scheduler.request_update("X")
        await wait_until(lambda: surface.of("markup"))

        runner.block("Y")
        scheduler.request_update("Y")
        await wait_until(lambda: len(runner.calls) == 2)
        scheduler.request_update("X")
        await wait_until(lambda: scheduler.snapshot()["pending"])

        runner.release("Y")
        await wait_until(lambda: len(runner.calls) == 3)
        await wait_until(lambda: len(surface.of("markup")) == 2)
        await scheduler.stop()

    asyncio.run(scenario())

    assert runner.texts() == ["X", "Y", "X"]
    assert len(surface.of("error")) == 1
    assert "X" in surface.of("markup")[-1]


def test_timeout_publishes_partial_diagnostics(runner, surface) -> None:
    runner.outcomes["graph"] = Timeout(seconds=1.0, diagnostic_text="Error: boom in line 3\n")
    reports = []

    async def scenario() -> RenderScheduler:
        scheduler = _scheduler(surface, runner, on_diagnostics=reports.append)
        await scheduler.start()
        scheduler.request_update("graph")
        await wait_until(lambda: surface.of("status") and "timed out" in surface.of("status")[-1])
        await scheduler.stop()
        return scheduler

    scheduler = asyncio.run(scenario())

    assert len(reports) == 1
    assert scheduler.last_report is reports[0]
    assert [(issue.severity, issue.line) for issue in reports[0].issues] == [(Severity.ERROR, 3)]
    assert reports[0].raw_text == "Error: boom in line 3\n"


def test_failure_does_not_count_as_rendered(runner, surface) -> None:
    runner.outcomes["graph"] = ProcessFailure(cause="io")

    async def scenario() -> None:
        scheduler = _scheduler(surface, runner)
        await scheduler.start()
        scheduler.request_update("graph")
        await wait_until(lambda: surface.of("error"))
        del runner.outcomes["graph"]
        scheduler.request_update("graph")
        await wait_until(lambda: surface.of("markup"))
        await scheduler.stop()

    asyncio.run(scenario())

    assert runner.texts() == ["graph", "graph"]


def test_raster_zoom_requests_forced_render_with_dpi(runner, surface) -> None:
    async def scenario() -> None:
        scheduler = _scheduler(surface, runner, output_format="png")
        await scheduler.start()
        scheduler.request_update("digraph { a }")
        await wait_until(lambda: surface.of("image"))
        scheduler.set_zoom(200)
        await wait_until(lambda: len(surface.of("image")) == 2)
        scheduler.set_zoom(200)
        await asyncio.sleep(0.15)
        await scheduler.stop()

    asyncio.run(scenario())

    assert [call.extra_args for call in runner.calls] == [(), ("-Gdpi=192",)]


def test_vector_zoom_rescales_without_rendering(runner, surface) -> None:
    async def scenario() -> None:
        scheduler = _scheduler(surface, runner)
        await scheduler.start()
        scheduler.request_update("digraph { a }")
        await wait_until(lambda: surface.of("markup"))
        scheduler.set_zoom(150)
        await asyncio.sleep(0.15)
        with pytest.raises(ValueError):
            scheduler.set_zoom(0)
        await scheduler.stop()

    asyncio.run(scenario())

    assert surface.of("zoom") == [1.5]
    assert len(runner.calls) == 1


def test_submit_from_another_thread(runner, surface) -> None:
    async def scenario() -> None:
        scheduler = _scheduler(surface, runner)
        await scheduler.start()
        worker = threading.Thread(target=scheduler.submit, args=("digraph { threaded }",))
        worker.start()
        worker.join()
        await wait_until(lambda: surface.of("markup"))
        await scheduler.stop()

    asyncio.run(scenario())

    assert runner.texts() == ["digraph { threaded }"]


def test_request_before_start_is_rejected(runner, surface) -> None:
    scheduler = _scheduler(surface, runner)
    with pytest.raises(RuntimeError):
        scheduler.request_update("graph { }")


def test_job_duration_is_logged(runner, surface, caplog) -> None:
    caplog.set_level(logging.DEBUG, logger="dotpreview.scheduler")

    async def scenario() -> None:
        scheduler = _scheduler(surface, runner)
        await scheduler.start()
        scheduler.request_update("graph")
        await wait_until(lambda: surface.of("markup"))
        await scheduler.stop()

    asyncio.run(scenario())

    assert "Job #1 for" in caplog.text
    assert "(Success)" in caplog.text
