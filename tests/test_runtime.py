"""
End-to-end tests of the agent loop against a scripted transport, plus the REPL
session commands and the CLI.
"""

import pytest
import asyncio
import io
import json
import os
import tempfile
import shutil
from unittest.mock import patch

# Add parent directory to path for imports
import sys
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rich.console import Console
from typer.testing import CliRunner

from cracked_coder.cli import app
from cracked_coder.config import AgentConfig, load_config
from cracked_coder.errors import LLMError
from cracked_coder.llm import map_provider_error, to_anthropic_messages
from cracked_coder.phases import Phase
from cracked_coder.repl import Session
from cracked_coder.runtime import Agent


class ScriptedTransport:
    """Replays canned responses in small chunks and records every request."""

    def __init__(self, responses, errors=None, chunk=7):
        self.responses = list(responses)
        self.errors = list(errors or [])
        self.chunk = chunk
        self.calls = []
        self.hang_after_first_chunk = False
        self.agent = None

    async def stream(self, model, messages):
        self.calls.append((model, messages))
        if self.errors:
            raise self.errors.pop(0)
        text = self.responses.pop(0)
        for i in range(0, len(text), self.chunk):
            yield text[i:i + self.chunk]
            if self.hang_after_first_chunk:
                self.agent.cancel()
                await asyncio.sleep(10)

    async def send(self, model, messages):
        self.calls.append((model, messages))
        return self.responses.pop(0)


def quiet_console():
    return Console(file=io.StringIO(), width=120)


class TestAgentLoop:
    """Rounds of model response, action execution and feedback."""

    @pytest.fixture
    def temp_repo(self):
        temp_dir = tempfile.mkdtemp()
        with open(os.path.join(temp_dir, "a.txt"), "w") as f:
            f.write("hello from a")
        yield temp_dir
        shutil.rmtree(temp_dir)

    def make_agent(self, repo, responses, errors=None, **config):
        config.setdefault("discovery_model", "m-discovery")
        config.setdefault("strategy_model", "m-strategy")
        config.setdefault("execute_model", "m-execute")
        transport = ScriptedTransport(responses, errors)
        agent = Agent(AgentConfig(**config), repo, transport=transport, console=quiet_console())
        transport.agent = agent
        return agent, transport

    @pytest.mark.asyncio
    async def test_read_then_finish(self, temp_repo):
        agent, transport = self.make_agent(temp_repo, [
            "Let me look.\n<read_file><path>a.txt</path></read_file>",
            "<end_task>Read the file</end_task>",
        ])
        result = await agent.run("Summarize a.txt")

        assert result.status == "completed"
        assert result.message == "Read the file"
        assert result.rounds == 2

        first_messages = transport.calls[0][1]
        assert first_messages[0]["role"] == "system"
        assert any("<task>\nSummarize a.txt\n</task>" in m["content"] for m in first_messages)

        second_messages = transport.calls[1][1]
        assert {"role": "assistant", "content": "Content of a.txt:\nhello from a"} in second_messages

    @pytest.mark.asyncio
    async def test_phase_transition_switches_model(self, temp_repo):
        agent, transport = self.make_agent(temp_repo, [
            "<end_phase>strategy_phase</end_phase>",
            "<end_task>ok</end_task>",
        ])
        result = await agent.run("Plan something")

        assert result.status == "completed"
        assert transport.calls[0][0] == "m-discovery"
        assert transport.calls[1][0] == "m-strategy"
        assert agent.phase_manager.current_phase == Phase.STRATEGY
        assert any("Phase: STRATEGY" in m["content"] for m in transport.calls[1][1])

    @pytest.mark.asyncio
    async def test_command_output_sent_once(self, temp_repo):
        agent, transport = self.make_agent(temp_repo, [
            "<execute_command>echo UNIQUE_MARKER_42</execute_command>",
            "<end_task>ran it</end_task>",
        ])
        result = await agent.run("Run the echo")
        assert result.status == "completed"
        holders = [m["role"] for m in transport.calls[1][1] if "exit=0\nUNIQUE_MARKER_42" in m["content"]]
        assert holders == ["assistant"]

    @pytest.mark.asyncio
    async def test_phase_change_mid_round_asks_again(self, temp_repo):
        agent, transport = self.make_agent(temp_repo, [
            "<end_phase>strategy_phase</end_phase>\n"
            "<write_file><type>new</type><path>early.txt</path><content>x</content></write_file>",
            "<end_task>ok</end_task>",
        ])
        result = await agent.run("Plan something")
        assert result.status == "completed"
        assert not os.path.exists(os.path.join(temp_repo, "early.txt"))
        assert transport.calls[1][0] == "m-strategy"

    @pytest.mark.asyncio
    async def test_malformed_response_gets_diagnostic(self, temp_repo):
        agent, transport = self.make_agent(temp_repo, [
            "<read_file><path>a.txt</path>",
            "<end_task>fixed</end_task>",
        ])
        result = await agent.run("Read a.txt")

        assert result.status == "completed"
        last = transport.calls[1][1][-1]
        assert last["role"] == "user"
        assert "Missing closing tag for <read_file>" in last["content"]

    @pytest.mark.asyncio
    async def test_question_waits_for_user(self, temp_repo):
        agent, _ = self.make_agent(temp_repo, ["Which file do you mean?"])
        result = await agent.run("Fix it")
        assert result.status == "awaiting_user"
        assert result.message == "Which file do you mean?"

    @pytest.mark.asyncio
    async def test_failed_read_aborts(self, temp_repo):
        agent, transport = self.make_agent(temp_repo, ["<read_file><path>missing.txt</path></read_file>"])
        result = await agent.run("Read it")
        assert result.status == "aborted"
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_failed_write_is_sent_back(self, temp_repo):
        agent, transport = self.make_agent(temp_repo, [
            "<write_file><type>update</type><path>nope.txt</path><content>x</content></write_file>",
            "<end_task>gave up</end_task>",
        ])
        result = await agent.run("Update nope.txt")
        assert result.status == "completed"
        assert "write_file: Failed" in transport.calls[1][1][-1]["content"]

    @pytest.mark.asyncio
    async def test_context_overflow_retried_once(self, temp_repo):
        agent, transport = self.make_agent(
            temp_repo, ["<end_task>done</end_task>"],
            errors=[LLMError("CONTEXT_LENGTH_EXCEEDED", "too long")],
        )
        with patch.object(agent.evictor, "evict", wraps=agent.evictor.evict) as evict:
            result = await agent.run("Do it")
        assert result.status == "completed"
        assert len(transport.calls) == 2
        window = agent.model_manager.get_context_window()
        evict.assert_any_call(max_tokens=int(window * 0.75))

    @pytest.mark.asyncio
    async def test_other_transport_errors_abort(self, temp_repo):
        agent, _ = self.make_agent(temp_repo, [], errors=[LLMError("RATE_LIMIT_EXCEEDED", "slow down")])
        result = await agent.run("Do it")
        assert result.status == "aborted"
        assert "slow down" in result.message

    @pytest.mark.asyncio
    async def test_cancel_during_stream(self, temp_repo):
        agent, transport = self.make_agent(temp_repo, ["<read_file><path>a.txt</path></read_file>"])
        transport.hang_after_first_chunk = True
        result = await agent.run("Read it")
        assert result.status == "cancelled"
        assert agent.assembler.buffer == ""

    @pytest.mark.asyncio
    async def test_round_limit(self, temp_repo):
        read = "<read_file><path>a.txt</path></read_file>"
        agent, _ = self.make_agent(temp_repo, [read, read, read])
        result = await agent.run("Loop", max_rounds=2)
        assert result.status == "max_rounds"
        assert result.rounds == 2

    @pytest.mark.asyncio
    async def test_non_streaming(self, temp_repo):
        agent, transport = self.make_agent(temp_repo, ["<end_task>done</end_task>"], stream=False)
        result = await agent.run("Do it")
        assert result.status == "completed"
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_new_task_resets_phase(self, temp_repo):
        agent, _ = self.make_agent(temp_repo, [
            "<end_phase>strategy_phase</end_phase>",
            "<end_task>one</end_task>",
            "<end_task>two</end_task>",
        ])
        await agent.run("First")
        assert agent.phase_manager.current_phase == Phase.STRATEGY
        result = await agent.run("Second", new_task=True)
        assert result.status == "completed"
        assert agent.phase_manager.current_phase == Phase.DISCOVERY
        assert agent.model_manager.current_model == "m-discovery"


class TestSession:
    """Slash commands of the interactive session."""

    @pytest.fixture
    def temp_repo(self):
        temp_dir = tempfile.mkdtemp()
        yield temp_dir
        shutil.rmtree(temp_dir)

    def test_commands(self, temp_repo):
        agent = Agent(AgentConfig(), temp_repo, transport=ScriptedTransport([]), console=quiet_console())
        session = Session(agent)
        session.new_task = False
        with patch("cracked_coder.repl.console", quiet_console()) as console:
            assert session.handle_command("/status") is True
            assert "Phase" in console.file.getvalue()
            assert session.handle_command("/new") is True
            assert session.new_task is True
            assert session.handle_command("/bogus") is True
            assert session.handle_command("/quit") is False

    def test_step_continues_after_question(self, temp_repo):
        transport = ScriptedTransport(["Which one?", "<end_task>done</end_task>"])
        agent = Agent(AgentConfig(), temp_repo, transport=transport, console=quiet_console())
        session = Session(agent)
        assert session.step("Fix it").status == "awaiting_user"
        assert session.new_task is False
        assert session.step("The first one").status == "completed"
        assert session.new_task is True
        # the follow-up is sent as-is, not wrapped in a new task message
        assert transport.calls[1][1][-1] == {"role": "user", "content": "The first one"}


class TestCli:
    @pytest.fixture
    def temp_dir(self):
        temp_dir = tempfile.mkdtemp()
        yield temp_dir
        shutil.rmtree(temp_dir)

    def test_init_and_models(self, temp_dir):
        runner = CliRunner()
        path = os.path.join(temp_dir, "crkdrc.json")
        result = runner.invoke(app, ["init", "--path", path])
        assert result.exit_code == 0
        assert load_config(path) == AgentConfig()

        result = runner.invoke(app, ["init", "--path", path])
        assert result.exit_code == 1

        result = runner.invoke(app, ["models", "--config", path])
        assert result.exit_code == 0
        assert "discovery" in result.output

    def test_bad_config(self, temp_dir):
        path = os.path.join(temp_dir, "crkdrc.json")
        with open(path, "w") as f:
            json.dump({"provider": "nowhere"}, f)
        result = CliRunner().invoke(app, ["models", "--config", path])
        assert result.exit_code == 1


class TestProviderHelpers:
    def test_anthropic_messages_alternate(self):
        system, messages = to_anthropic_messages([
            {"role": "system", "content": "rules"},
            {"role": "system", "content": "<phase_prompt>p</phase_prompt>"},
            {"role": "assistant", "content": "Content of a.ts:\nx"},
            {"role": "user", "content": "go"},
            {"role": "user", "content": "again"},
        ])
        assert system == "rules"
        roles = [m["role"] for m in messages]
        assert roles == ["user", "assistant", "user"]
        assert messages[-1]["content"] == "go\n\nagain"

    def test_map_provider_error(self):
        assert map_provider_error(Exception("This model's maximum context length is 8192")).error_type == \
            "CONTEXT_LENGTH_EXCEEDED"
        assert map_provider_error(Exception("insufficient credits")).error_type == "INSUFFICIENT_QUOTA"
        assert map_provider_error(Exception("boom")).error_type == "MODEL_ERROR"
