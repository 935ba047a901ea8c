from __future__ import annotations

import allure
from doubles import ScriptedHandler, make_task

from photo_jobs.queue.dispatcher import Dispatcher
from photo_jobs.queue.handlers import EchoHandler, HandlerResult
from photo_jobs.queue.models import ErrorKind, TaskType
from photo_jobs.queue.payloads import RestorePayload

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Dispatcher"),
]


def test_dispatch_routes_typed_payload_to_registered_handler() -> None:
    restore = ScriptedHandler(HandlerResult.ok("https://cdn.example.com/out/r.png"))
    stylize = ScriptedHandler()
    dispatcher = Dispatcher({TaskType.RESTORE: restore, "stylize": stylize})

    result = dispatcher.dispatch(make_task(payload={"image_url": "https://x/in.jpg"}))

    assert result.success
    assert result.result_locator == "https://cdn.example.com/out/r.png"
    assert restore.calls == [RestorePayload(image_url="https://x/in.jpg")]
    assert stylize.calls == []
    assert dispatcher.task_types == ("restore", "stylize")


def test_dispatch_unknown_type_is_programmer_failure() -> None:
    dispatcher = Dispatcher({})

    result = dispatcher.dispatch(make_task(task_type="generate", payload={"prompt": "cat"}))

    assert not result.success
    assert result.error_kind == ErrorKind.PROGRAMMER
    assert result.error_detail == "Unsupported task type: generate"


def test_dispatch_malformed_payload_never_reaches_handler() -> None:
    handler = ScriptedHandler()
    dispatcher = Dispatcher({TaskType.STYLIZE: handler})

    result = dispatcher.dispatch(
        make_task(task_type="stylize", payload={"image_url": "https://x/in.jpg"}),
    )

    assert not result.success
    assert result.error_kind == ErrorKind.PROGRAMMER
    assert "stylize.style_id" in (result.error_detail or "")
    assert handler.calls == []


def test_echo_handler_is_deterministic() -> None:
    handler = EchoHandler(base_url="https://echo.test/")
    payload = RestorePayload(image_url="https://x/in.jpg")

    first = handler.execute(payload)
    second = handler.execute(payload)

    assert first.success
    assert first.result_locator == second.result_locator
    assert (first.result_locator or "").startswith("https://echo.test/restorepayload/")
