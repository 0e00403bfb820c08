from __future__ import annotations

import json
from pathlib import Path

import pytest
from conftest import ScriptedClient, function_call, text_reply

from sirai.models.llm_client import LLMRetryError, LLMToolLoopError, LLMTransportError
from sirai.planning.schemas import StorePlanArgs
from sirai.tools.capture import STORE_PLAN
from sirai.tools.files import READ_FILES
from sirai.tools.interaction import AskUserArgs
from sirai.tools.registry import ToolContext, ToolRegistry, ToolSpec
from sirai.tools.toolsets import executor_tools, planner_tools, validation_tools

PLAN_ARGS = {
    "subtasks": [{"id": "t1", "specification": "Do the thing", "complexity": "LOW"}],
    "executionOrder": ["t1"],
}


def _context(tmp_path: Path, **kwargs) -> ToolContext:
    return ToolContext(working_dir=tmp_path, **kwargs)


def test_registry_rejects_duplicate_names(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        ToolRegistry([READ_FILES, READ_FILES], _context(tmp_path))


def test_dispatch_reports_unknown_tool_and_bad_arguments(tmp_path: Path) -> None:
    registry = ToolRegistry([READ_FILES], _context(tmp_path))

    unknown = registry.dispatch("delete_everything", "{}")
    malformed = registry.dispatch("read_files", "{not json")
    missing = registry.dispatch("read_files", {})

    assert unknown.failed and json.loads(unknown.output)["message"] == "Unknown tool: delete_everything"
    assert malformed.failed and "Invalid arguments" in json.loads(malformed.output)["message"]
    assert missing.failed and json.loads(missing.output)["status"] == "error"


def test_dispatch_turns_unexpected_handler_errors_into_payloads(tmp_path: Path) -> None:
    def explode(args: AskUserArgs, context: ToolContext) -> str:
        raise ValueError("index out of range in helper")

    broken = ToolSpec(name="broken", description="Always fails.", parameters=AskUserArgs, handler=explode)
    registry = ToolRegistry([broken], _context(tmp_path))

    outcome = registry.dispatch("broken", {"questions": ["Anything?"]})

    payload = json.loads(outcome.output)
    assert outcome.failed
    assert payload["status"] == "error"
    assert payload["message"] == "Tool broken failed: ValueError: index out of range in helper"


def test_tool_payloads_follow_function_schema(tmp_path: Path) -> None:
    registry = planner_tools(_context(tmp_path))

    payloads = {payload["name"]: payload for payload in registry.payloads()}

    assert list(payloads) == ["list_files", "read_files", "ask_user", "store_plan"]
    assert payloads["store_plan"]["type"] == "function"
    assert "subtasks" in payloads["store_plan"]["parameters"]["properties"]
    assert registry.capturing_tools() == ["store_plan"]


def test_toolsets_offer_role_specific_tools(tmp_path: Path) -> None:
    context = _context(tmp_path)

    assert "report_implementation" in executor_tools(context).names()
    assert "patch_file" in executor_tools(context).names()
    assert "find_files" in executor_tools(context).names()
    assert validation_tools(context).names() == [
        "run_process",
        "read_files",
        "list_files",
        "find_files",
        "store_validation_result",
    ]
    assert "delegate_analysis_to_model" in planner_tools(context, delegate=ScriptedClient([])).names()
    assert "read_files" not in planner_tools(context, delegate=ScriptedClient([])).names()


def test_generate_without_tool_calls_returns_text(tmp_path: Path) -> None:
    client = ScriptedClient([text_reply("Just an answer.")])

    result = client.generate("system", "question")

    assert result.text == "Just an answer."
    assert result.turns == 1
    sent = client.payloads[0]
    assert sent["input"][0] == {"role": "system", "content": [{"type": "input_text", "text": "system"}]}
    assert "tools" not in sent
    assert client.get_token_usage().calls == 1


def test_generate_captures_terminal_tool_and_stops(tmp_path: Path) -> None:
    client = ScriptedClient([function_call("store_plan", PLAN_ARGS), text_reply("never sent")])
    registry = planner_tools(_context(tmp_path))

    result = client.generate(None, ["context", "request"], tools=registry)

    stored = result.capture("store_plan")
    assert isinstance(stored, StorePlanArgs)
    assert stored.subtasks[0].id == "t1"
    assert len(client.payloads) == 1
    assert result.tool_calls[0].name == "store_plan"
    assert [item["content"][0]["text"] for item in client.payloads[0]["input"]] == ["context", "request"]


def test_generate_feeds_tool_results_back(tmp_path: Path) -> None:
    (tmp_path / "a.txt").write_text("contents of a", encoding="utf-8")
    client = ScriptedClient(
        [
            function_call("read_files", {"path": "a.txt"}, call_id="call_read"),
            function_call("store_plan", PLAN_ARGS, call_id="call_store"),
        ]
    )

    result = client.generate("sys", "plan it", tools=planner_tools(_context(tmp_path)))

    second_input = client.payloads[1]["input"]
    outputs = [item for item in second_input if item.get("type") == "function_call_output"]
    assert outputs[0]["call_id"] == "call_read"
    assert "contents of a" in outputs[0]["output"]
    assert any(item.get("type") == "function_call" for item in second_input)
    assert result.turns == 2
    assert result.capture("store_plan") is not None


def test_generate_continues_after_failed_capture(tmp_path: Path) -> None:
    client = ScriptedClient(
        [
            function_call("store_plan", {"subtasks": []}, call_id="bad"),
            function_call("store_plan", PLAN_ARGS, call_id="good"),
        ]
    )

    result = client.generate("sys", "plan", tools=planner_tools(_context(tmp_path)))

    assert result.tool_calls[0].failed
    assert not result.tool_calls[1].failed
    assert result.turns == 2


def test_generate_with_empty_stop_on_runs_until_text(tmp_path: Path) -> None:
    client = ScriptedClient(
        [
            function_call("report_implementation", {"summary": "Did it"}),
            text_reply("All done."),
        ]
    )

    result = client.generate("sys", "go", tools=executor_tools(_context(tmp_path)), stop_on=())

    assert result.text == "All done."
    assert result.capture("report_implementation").summary == "Did it"


def test_generate_turn_budget_raises(tmp_path: Path) -> None:
    client = ScriptedClient([function_call("list_files", {}, call_id=f"c{i}") for i in range(5)])

    with pytest.raises(LLMToolLoopError):
        client.generate("sys", "loop", tools=executor_tools(_context(tmp_path)), max_turns=3)


def test_generate_without_registry_reports_error_to_model() -> None:
    client = ScriptedClient([function_call("read_files", {"path": "x"}), text_reply("ok")])

    result = client.generate("sys", "hi")

    assert result.text == "ok"
    assert json.loads(result.tool_calls[0].output)["status"] == "error"


def test_ask_user_tool_requires_prompter(tmp_path: Path, prompter) -> None:
    prompter.answers = ["blue"]
    with_user = planner_tools(_context(tmp_path, prompter=prompter))
    without_user = planner_tools(_context(tmp_path))

    answered = with_user.dispatch("ask_user", {"questions": ["Favourite colour?"], "context": "Styling"})
    refused = without_user.dispatch("ask_user", {"questions": ["Favourite colour?"]})

    assert json.loads(answered.output) == {"answers": [{"question": "Favourite colour?", "answer": "blue"}]}
    assert prompter.shown == ["Styling"]
    assert refused.failed


def test_ask_user_limits_question_count() -> None:
    with pytest.raises(ValueError):
        AskUserArgs(questions=[f"q{i}" for i in range(9)])


def test_transport_errors_are_retried_then_surface() -> None:
    client = ScriptedClient(
        [LLMTransportError("flaky"), text_reply("recovered")],
        max_attempts=3,
    )
    assert client.generate(None, "hi").text == "recovered"

    failing = ScriptedClient([LLMTransportError("down")] * 3, max_attempts=3)
    with pytest.raises(LLMRetryError):
        failing.generate(None, "hi")


def test_delegate_tool_answers_each_query(tmp_path: Path) -> None:
    (tmp_path / "module.py").write_text("def f():\n    return 1\n", encoding="utf-8")
    delegate = ScriptedClient([text_reply("It returns 1."), LLMTransportError("gone")], max_attempts=1)
    registry = planner_tools(_context(tmp_path), delegate=delegate)

    outcome = registry.dispatch(
        "delegate_analysis_to_model",
        {"paths": ["module.py"], "queries": ["What does f return?", "Anything else?"]},
    )

    answers = json.loads(outcome.output)["answers"]
    assert answers[0] == {"query": "What does f return?", "answer": "It returns 1."}
    assert answers[1]["answer"].startswith("Error:")
    prompt = delegate.payloads[0]["input"][1]["content"][0]["text"]
    assert prompt.startswith("FILES:\n")
    assert "QUERY:\nWhat does f return?" in prompt


def test_custom_tool_handler_receives_validated_args(tmp_path: Path) -> None:
    calls: list[AskUserArgs] = []

    def handler(args: AskUserArgs, context: ToolContext) -> str:
        calls.append(args)
        return "noted"

    spec = ToolSpec(name="note", description="Record", parameters=AskUserArgs, handler=handler)
    registry = ToolRegistry([spec, STORE_PLAN], _context(tmp_path))

    outcome = registry.dispatch("note", '{"questions": ["a"], "unexpected": 1}')

    assert outcome.output == "noted"
    assert calls[0].questions == ["a"]
