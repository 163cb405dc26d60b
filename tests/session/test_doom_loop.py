import pytest
from types import SimpleNamespace

from moltcore.session.doom_loop import DoomLoopDetector, signature


def _detector(calls: list[dict], threshold: int = 3) -> DoomLoopDetector:
    async def fake_ask(**kwargs):  # type: ignore[no-untyped-def]
        calls.append(dict(kwargs))

    return DoomLoopDetector(
        permission=SimpleNamespace(ask=fake_ask),
        session_id="ses",
        threshold=threshold,
        window=50,
    )


@pytest.mark.anyio
async def test_doom_loop_detector_asks_before_fourth_identical_call() -> None:
    calls: list[dict] = []
    det = _detector(calls)
    rules: list = []

    for _ in range(3):
        await det.check(tool_name="read", tool_input={"path": "a"}, ruleset=rules)
    assert calls == []

    await det.check(tool_name="read", tool_input={"path": "a"}, ruleset=rules)
    assert len(calls) == 1
    assert calls[0]["permission"] == "doom_loop"
    assert calls[0]["patterns"] == ["read"]
    assert calls[0]["always"] == ["read"]
    assert calls[0]["metadata"] == {"tool": "read", "input": {"path": "a"}}


@pytest.mark.anyio
async def test_doom_loop_detector_ignores_non_identical_sequence() -> None:
    calls: list[dict] = []
    det = _detector(calls)
    rules: list = []

    await det.check(tool_name="read", tool_input={"path": "a"}, ruleset=rules)
    await det.check(tool_name="read", tool_input={"path": "a"}, ruleset=rules)
    await det.check(tool_name="read", tool_input={"path": "b"}, ruleset=rules)
    await det.check(tool_name="read", tool_input={"path": "a"}, ruleset=rules)

    assert calls == []


@pytest.mark.anyio
async def test_doom_loop_detector_keeps_asking_while_the_loop_continues() -> None:
    calls: list[dict] = []
    det = _detector(calls, threshold=2)
    rules: list = []

    for _ in range(4):
        await det.check(tool_name="bash", tool_input={"command": "ls"}, ruleset=rules)

    assert len(calls) == 2


def test_signature_is_independent_of_key_order() -> None:
    assert signature("edit", {"a": 1, "b": 2}) == signature("edit", {"b": 2, "a": 1})
    assert signature("edit", {"a": 1}) != signature("write", {"a": 1})
