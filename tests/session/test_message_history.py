from typing import Callable

from moltcore.session.message import (
    AssistantMessage,
    MessageTime,
    MessageWithParts,
    PartTime,
    StepFinishPart,
    StepStartPart,
    TextPart,
    ToolPart,
    ToolStateCompleted,
    ToolStateRunning,
    ToolTime,
    UserMessage,
    to_model_messages,
)


def _ids(prefix: str) -> Callable[[], str]:
    counter = iter(range(1000))
    return lambda: f"{prefix}_{next(counter):03d}"


def _assistant(parts: list) -> MessageWithParts:
    info = AssistantMessage(
        id="msg_2",
        session_id="ses_1",
        agent="build",
        provider_id="fake",
        model_id="fake-model",
        parent_id="msg_1",
        time=MessageTime(created=1),
    )
    return MessageWithParts(info=info, parts=parts)


def _user(text: str) -> MessageWithParts:
    return MessageWithParts(info=UserMessage(id="msg_1", session_id="ses_1", text=text, time=MessageTime(created=0)))


def test_finished_tool_step_becomes_call_and_result() -> None:
    next_id = _ids("prt")
    base = {"session_id": "ses_1", "message_id": "msg_2"}
    tool = ToolPart(
        id=next_id(),
        tool="bash",
        call_id="call_1",
        state=ToolStateCompleted(input={"command": "ls"}, output="a.txt", time=ToolTime(start=1, end=2)),
        **base,
    )
    parts = [
        StepStartPart(id=next_id(), **base),
        TextPart(id=next_id(), text="Listing.", time=PartTime(start=1, end=1), **base),
        tool,
        StepFinishPart(id=next_id(), reason="tool_calls", **base),
        StepStartPart(id=next_id(), **base),
        TextPart(id=next_id(), text="Found a.txt", time=PartTime(start=3, end=3), **base),
        StepFinishPart(id=next_id(), reason="stop", **base),
    ]

    history = to_model_messages([_user("list files"), _assistant(parts)])

    assert history[0] == {"role": "user", "content": "list files"}
    assert history[1]["content"] == "Listing."
    assert history[1]["tool_calls"][0]["function"] == {"name": "bash", "arguments": '{"command": "ls"}'}
    assert history[2] == {"role": "tool", "tool_call_id": "call_1", "content": "a.txt"}
    assert history[3] == {"role": "assistant", "content": "Found a.txt"}


def test_unfinished_step_is_not_replayed() -> None:
    next_id = _ids("prt")
    base = {"session_id": "ses_1", "message_id": "msg_2"}
    parts = [
        StepStartPart(id=next_id(), **base),
        TextPart(id=next_id(), text="partial", time=PartTime(start=1, end=1), **base),
        ToolPart(
            id=next_id(),
            tool="bash",
            call_id="call_1",
            state=ToolStateRunning(input={}, time=ToolTime(start=1)),
            **base,
        ),
    ]

    history = to_model_messages([_user("hi"), _assistant(parts)])

    assert history == [{"role": "user", "content": "hi"}]


def test_parts_round_trip_through_discriminated_union() -> None:
    base = {"session_id": "ses_1", "message_id": "msg_2"}
    dumped = ToolPart(id="prt_1", tool="read", call_id="call_9", **base).model_dump(mode="json")
    restored = MessageWithParts.model_validate({
        "info": _assistant([]).info.model_dump(mode="json"),
        "parts": [dumped],
    })
    part = restored.parts[0]
    assert isinstance(part, ToolPart)
    assert part.state.status == "pending"
