"""
Claude agent integration for ralph.

Runs the `claude` CLI in stream-json mode and maps its messages onto the
agent event contract (see ralph.agents.events). Streams are async
generators: cancelling the consuming task terminates the CLI process.
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional

from ralph.agents.events import (
    AgentEvent,
    ErrorEvent,
    ResultEvent,
    SessionInitEvent,
    TokenEvent,
    ToolEndEvent,
    ToolStartEvent,
    TurnCompleteEvent,
    Usage,
    is_terminal,
)

logger = logging.getLogger(__name__)

# stream-json lines carry whole assistant messages; the default 64KiB
# StreamReader limit is too small for a full specification.
STREAM_LINE_LIMIT = 16 * 1024 * 1024
TERMINATE_GRACE_SECONDS = 2.0


class AgentClientError(Exception):
    """Raised when the agent stream cannot be started or read."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.message = message
        self.cause = cause
        super().__init__(message + (f": {cause}" if cause else ""))


@dataclass
class AgentQueryOptions:
    cwd: Path
    model: Optional[str] = None
    max_turns: Optional[int] = None
    max_budget_usd: Optional[float] = None
    system_prompt_append: Optional[str] = None


def map_message_to_events(msg: dict) -> list[AgentEvent]:
    """Translate one stream-json message into zero or more agent events.

    Unknown message types map to nothing. For a successful result the
    turn_complete event is emitted before the result so that the terminal
    event is always last.
    """
    events: list[AgentEvent] = []
    msg_type = msg.get("type")

    if msg_type == "system":
        if msg.get("subtype") == "init":
            events.append(SessionInitEvent(
                session_id=msg.get("session_id", ""),
                model=msg.get("model", ""),
                tools=tuple(msg.get("tools") or ()),
            ))

    elif msg_type == "stream_event":
        event = msg.get("event") or {}
        if event.get("type") == "content_block_delta":
            delta = event.get("delta") or {}
            if delta.get("type") == "text_delta":
                events.append(TokenEvent(content=delta.get("text", "")))

    elif msg_type == "assistant":
        for block in _content_blocks(msg):
            if block.get("type") == "tool_use":
                events.append(ToolStartEvent(
                    tool=block.get("name", "unknown"),
                    tool_use_id=block.get("id", ""),
                    input=block.get("input"),
                ))

    elif msg_type == "user":
        for block in _content_blocks(msg):
            if block.get("type") == "tool_result":
                # Tool name is not part of the result block
                events.append(ToolEndEvent(
                    tool="unknown",
                    tool_use_id=block.get("tool_use_id", ""),
                    result=block.get("content"),
                ))

    elif msg_type == "result":
        if msg.get("subtype") == "success":
            usage = msg.get("usage") or {}
            events.append(TurnCompleteEvent(usage=Usage(
                input_tokens=usage.get("input_tokens", 0),
                output_tokens=usage.get("output_tokens", 0),
                cache_read_input_tokens=usage.get("cache_read_input_tokens") or 0,
                cache_creation_input_tokens=usage.get("cache_creation_input_tokens") or 0,
            )))
            events.append(ResultEvent(
                success=not msg.get("is_error", False),
                result=msg.get("result", ""),
                total_cost_usd=msg.get("total_cost_usd", 0.0),
                duration_ms=msg.get("duration_ms", 0),
                num_turns=msg.get("num_turns", 0),
            ))
        else:
            errors = msg.get("errors")
            events.append(ErrorEvent(
                message=f"Query failed: {msg.get('subtype')}",
                errors=tuple(errors) if errors else None,
            ))

    return events


def _content_blocks(msg: dict) -> list[dict]:
    content = (msg.get("message") or {}).get("content")
    if not isinstance(content, list):
        return []
    return [b for b in content if isinstance(b, dict)]


class ClaudeAgent:
    def __init__(self, command: str = "claude", permission_mode: str = "acceptEdits"):
        self.command = command
        self.permission_mode = permission_mode

    def build_command(self, options: AgentQueryOptions) -> list[str]:
        """Build the CLI argument list. The prompt itself goes via stdin."""
        cmd = [
            self.command,
            "-p",
            "--output-format", "stream-json",
            "--verbose",
            "--include-partial-messages",
            "--permission-mode", self.permission_mode,
        ]
        if options.model is not None:
            cmd += ["--model", options.model]
        if options.max_turns is not None:
            cmd += ["--max-turns", str(options.max_turns)]
        if options.max_budget_usd is not None:
            cmd += ["--max-budget-usd", str(options.max_budget_usd)]
        if options.system_prompt_append:
            cmd += ["--append-system-prompt", options.system_prompt_append]
        return cmd

    async def run_query(self, prompt: str, options: AgentQueryOptions) -> AsyncIterator[AgentEvent]:
        """Run a prompt and yield agent events until the terminal event.

        Raises:
            AgentClientError: If the CLI is missing, exits without a terminal
                event, or the stream cannot be read.
        """
        cmd = self.build_command(options)

        # Remove ANTHROPIC_API_KEY so Claude uses OAuth credentials instead
        env = {k: v for k, v in os.environ.items() if k != "ANTHROPIC_API_KEY"}

        logger.info(f"[AGENT] Starting {self.command} (model={options.model}, max_turns={options.max_turns})")
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(options.cwd),
                env=env,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LINE_LIMIT,
            )
        except FileNotFoundError as e:
            raise AgentClientError("Claude CLI not found. Install: https://claude.ai/claude-code", e) from e
        except OSError as e:
            raise AgentClientError("Failed to start Claude CLI", e) from e

        stderr_task = asyncio.ensure_future(proc.stderr.read())
        finished = False
        try:
            proc.stdin.write(prompt.encode())
            await proc.stdin.drain()
            proc.stdin.close()

            async for raw in proc.stdout:
                line = raw.decode(errors="replace").strip()
                if not line:
                    continue
                try:
                    msg = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning(f"[AGENT] Skipping non-JSON output line: {line[:200]}")
                    continue
                if not isinstance(msg, dict):
                    continue

                for event in map_message_to_events(msg):
                    yield event
                    if is_terminal(event):
                        finished = True
                if finished:
                    break

            returncode = await proc.wait()
            stderr = (await stderr_task).decode(errors="replace").strip()
            if not finished:
                detail = stderr or "(no output - check 'claude --version' and auth status)"
                raise AgentClientError(f"Claude exited with code {returncode} before finishing: {detail}")
            logger.debug(f"[AGENT] Stream finished (exit {returncode})")

        except (BrokenPipeError, ConnectionResetError, ValueError) as e:
            # ValueError: a single line exceeded STREAM_LINE_LIMIT
            raise AgentClientError("Stream iteration failed", e) from e

        finally:
            if proc.returncode is None:
                await _terminate(proc)
            if not stderr_task.done():
                stderr_task.cancel()


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    """Stop a CLI process that is still running (cancelled stream)."""
    logger.info(f"[AGENT] Terminating Claude CLI (pid {proc.pid})")
    try:
        proc.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(proc.wait(), TERMINATE_GRACE_SECONDS)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
