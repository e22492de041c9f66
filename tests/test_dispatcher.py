import asyncio

import pytest

from command_agent.dispatcher import ToolExecutionDispatcher
from command_agent.errors import ScheduleError
from command_agent.models import ToolCallRequest

from conftest import FakeHome


@pytest.mark.asyncio
async def test_results_keep_request_order_when_one_call_fails():
    async def control_device(deviceName, capability, value):
        if deviceName == "Broken Lamp":
            raise RuntimeError("device unreachable")
        await asyncio.sleep(0.01 if deviceName == "Kitchen Light" else 0)
        return {"success": True, "device": deviceName}

    dispatcher = ToolExecutionDispatcher(FakeHome({"control_device": control_device}))
    calls = [
        ToolCallRequest("control_device", {"deviceName": "Kitchen Light", "capability": "onoff", "value": True}),
        ToolCallRequest("control_device", {"deviceName": "Broken Lamp", "capability": "onoff", "value": True}),
        ToolCallRequest("control_device", {"deviceName": "Hall Light", "capability": "onoff", "value": False}),
    ]

    results = await dispatcher.execute(calls)

    assert [r.success for r in results] == [True, False, True]
    assert results[0].payload["device"] == "Kitchen Light"
    assert results[2].payload["device"] == "Hall Light"
    assert results[1].payload["error"] == "Function execution failed: device unreachable"
    assert results[1].payload["diagnostic"] == {"type": "RuntimeError", "kind": "tool_execution"}


@pytest.mark.asyncio
async def test_invalid_arguments_become_failed_result_without_calling_provider():
    home = FakeHome()
    dispatcher = ToolExecutionDispatcher(home)

    [result] = await dispatcher.execute([ToolCallRequest("list_devices_in_zone", {})])

    assert result.success is False
    assert "Invalid input for tool list_devices_in_zone" in result.payload["error"]
    assert home.calls == []


@pytest.mark.asyncio
async def test_unknown_tool_is_reported_as_failure():
    dispatcher = ToolExecutionDispatcher(FakeHome())

    [result] = await dispatcher.execute([ToolCallRequest("open_garage", {})])

    assert result.success is False
    assert "Unknown tool: open_garage" in result.payload["error"]


@pytest.mark.asyncio
async def test_agent_error_payload_lands_in_diagnostic():
    async def schedule_command(command, executeAt, description):
        raise ScheduleError("Scheduled time is too far in the past", {"requestedTime": executeAt})

    dispatcher = ToolExecutionDispatcher(FakeHome({"schedule_command": schedule_command}))

    [result] = await dispatcher.execute(
        [ToolCallRequest("schedule_command", {"command": "x", "executeAt": "2020-01-01T00:00:00", "description": "x"})]
    )

    assert result.payload["diagnostic"] == {
        "type": "ScheduleError",
        "kind": "invalid_schedule",
        "requestedTime": "2020-01-01T00:00:00",
    }


@pytest.mark.asyncio
async def test_image_payload_is_lifted_into_attachment():
    async def get_device_image(deviceName):
        return {"success": True, "image": {"mimeType": "image/png", "data": "iVBORw0KGgo="}}

    dispatcher = ToolExecutionDispatcher(FakeHome({"get_device_image": get_device_image}))

    [result] = await dispatcher.execute([ToolCallRequest("get_device_image", {"deviceName": "Door Camera"})])

    assert result.success is True
    assert "image" not in result.payload
    assert result.attachment.mime_type == "image/png"
    assert result.attachment.data == "iVBORw0KGgo="


@pytest.mark.asyncio
async def test_payload_reporting_failure_is_not_successful():
    async def control_device(deviceName, capability, value):
        return {"success": False, "error": "Device not found"}

    dispatcher = ToolExecutionDispatcher(FakeHome({"control_device": control_device}))

    [result] = await dispatcher.execute(
        [ToolCallRequest("control_device", {"deviceName": "Lamp", "capability": "onoff", "value": True})]
    )

    assert result.success is False
    assert result.payload == {"success": False, "error": "Device not found"}


@pytest.mark.asyncio
async def test_tool_specs_are_listed_once():
    home = FakeHome()
    listed = 0
    original = home.list_tools

    async def counting_list_tools():
        nonlocal listed
        listed += 1
        return await original()

    home.list_tools = counting_list_tools
    dispatcher = ToolExecutionDispatcher(home)

    await dispatcher.tool_specs()
    await dispatcher.execute([ToolCallRequest("list_devices_in_zone", {"zoneName": "Kitchen"})])

    assert listed == 1
