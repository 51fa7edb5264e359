"""Tests for ralph.agents.claude (stream-json mapping and CLI runner)."""

import asyncio
import json
import os
import stat

import pytest

from ralph.agents.claude import (
    AgentClientError,
    AgentQueryOptions,
    ClaudeAgent,
    map_message_to_events,
)
from ralph.agents.events import is_terminal


class TestMapMessageToEvents:
    """Tests for map_message_to_events()."""

    def test_system_init(self):
        events = map_message_to_events({
            "type": "system", "subtype": "init",
            "session_id": "abc", "model": "sonnet", "tools": ["Read"],
        })
        assert len(events) == 1
        assert events[0].type == "session_init"
        assert events[0].session_id == "abc"
        assert events[0].tools == ("Read",)

    def test_text_delta_is_token(self):
        events = map_message_to_events({
            "type": "stream_event",
            "event": {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hi"}},
        })
        assert [(e.type, e.content) for e in events] == [("token", "Hi")]

    def test_other_stream_events_ignored(self):
        assert map_message_to_events({"type": "stream_event", "event": {"type": "message_start"}}) == []
        assert map_message_to_events({
            "type": "stream_event",
            "event": {"type": "content_block_delta", "delta": {"type": "input_json_delta"}},
        }) == []

    def test_tool_use_and_result(self):
        start = map_message_to_events({
            "type": "assistant",
            "message": {"content": [
                {"type": "text", "text": "ignored"},
                {"type": "tool_use", "id": "t1", "name": "Read", "input": {"path": "x"}},
            ]},
        })
        end = map_message_to_events({
            "type": "user",
            "message": {"content": [{"type": "tool_result", "tool_use_id": "t1", "content": "ok"}]},
        })
        assert [(e.type, e.tool, e.tool_use_id) for e in start] == [("tool_start", "Read", "t1")]
        assert [(e.type, e.tool, e.result) for e in end] == [("tool_end", "unknown", "ok")]

    def test_success_result_ends_with_terminal_event(self):
        events = map_message_to_events({
            "type": "result", "subtype": "success", "is_error": False,
            "result": "spec", "total_cost_usd": 0.02, "duration_ms": 1500, "num_turns": 1,
            "usage": {"input_tokens": 10, "output_tokens": 20},
        })
        assert [e.type for e in events] == ["turn_complete", "result"]
        assert events[0].usage.output_tokens == 20
        assert events[1].success is True
        assert events[1].result == "spec"
        assert is_terminal(events[-1])

    def test_success_subtype_with_is_error(self):
        events = map_message_to_events({"type": "result", "subtype": "success", "is_error": True, "result": "bad"})
        assert events[-1].success is False

    def test_failed_result_is_error(self):
        events = map_message_to_events({
            "type": "result", "subtype": "error_max_turns", "errors": ["limit"],
        })
        assert len(events) == 1
        assert events[0].type == "error"
        assert events[0].message == "Query failed: error_max_turns"
        assert events[0].errors == ("limit",)

    def test_unknown_message(self):
        assert map_message_to_events({"type": "mystery"}) == []


class TestBuildCommand:
    """Tests for ClaudeAgent.build_command()."""

    def test_minimal(self, tmp_path):
        cmd = ClaudeAgent().build_command(AgentQueryOptions(cwd=tmp_path))
        assert cmd[:2] == ["claude", "-p"]
        assert "--include-partial-messages" in cmd
        assert cmd[cmd.index("--output-format") + 1] == "stream-json"
        assert "--max-turns" not in cmd
        assert "--model" not in cmd

    def test_all_options(self, tmp_path):
        options = AgentQueryOptions(
            cwd=tmp_path, model="opus", max_turns=3, max_budget_usd=0.5,
            system_prompt_append="Be brief",
        )
        cmd = ClaudeAgent(command="my-claude", permission_mode="plan").build_command(options)
        assert cmd[0] == "my-claude"
        assert cmd[cmd.index("--model") + 1] == "opus"
        assert cmd[cmd.index("--max-turns") + 1] == "3"
        assert cmd[cmd.index("--max-budget-usd") + 1] == "0.5"
        assert cmd[cmd.index("--append-system-prompt") + 1] == "Be brief"
        assert cmd[cmd.index("--permission-mode") + 1] == "plan"


def write_fake_cli(tmp_path, lines, exit_code=0):
    """Create an executable that swallows stdin and prints stream-json lines."""
    script = tmp_path / "fake-claude"
    body = "\n".join(f"echo '{line}'" for line in lines)
    script.write_text(f"#!/bin/sh\ncat > /dev/null\n{body}\nexit {exit_code}\n")
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    return script


async def collect(agent, tmp_path):
    events = []
    async for event in agent.run_query("prompt", AgentQueryOptions(cwd=tmp_path)):
        events.append(event)
    return events


@pytest.mark.skipif(os.name != "posix", reason="uses a shell script as the CLI")
class TestRunQuery:
    """Tests for ClaudeAgent.run_query() against a scripted CLI."""

    def test_streams_until_result(self, tmp_path):
        script = write_fake_cli(tmp_path, [
            json.dumps({"type": "system", "subtype": "init", "session_id": "s1"}),
            "not json at all",
            json.dumps({"type": "stream_event", "event": {
                "type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hello"}}}),
            json.dumps({"type": "result", "subtype": "success", "result": "Hello"}),
        ])
        events = asyncio.run(collect(ClaudeAgent(command=str(script)), tmp_path))
        assert [e.type for e in events] == ["session_init", "token", "turn_complete", "result"]

    def test_exit_without_result_raises(self, tmp_path):
        script = write_fake_cli(tmp_path, [], exit_code=3)
        with pytest.raises(AgentClientError) as exc_info:
            asyncio.run(collect(ClaudeAgent(command=str(script)), tmp_path))
        assert "code 3" in str(exc_info.value)

    def test_missing_cli(self, tmp_path):
        agent = ClaudeAgent(command=str(tmp_path / "does-not-exist"))
        with pytest.raises(AgentClientError) as exc_info:
            asyncio.run(collect(agent, tmp_path))
        assert "Claude CLI not found" in str(exc_info.value)
