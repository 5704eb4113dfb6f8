from __future__ import annotations
import os

from .blueprints import BLUEPRINTS, get_blueprint
from .config import AgentConfig
from .tools.tree import repo_tree

SYSTEM_INSTRUCTIONS = """You are a senior software engineer working inside the user's project.
You act only through the XML action tags described below. Every action tag must be closed.
Use paths relative to the project root. Never invent file contents you have not read.
{custom_instructions}"""

FIRST_MESSAGE_TEMPLATE = """<task>
{goal}
</task>

<environment_details>
Project root: {repo}
Language: {language}
Package manager: {package_manager}

{tree}
</environment_details>

{phase_prompt}"""

_PHASE_STEPS = {
    "discovery": """Phase: DISCOVERY.
Understand the task and the code it touches. Read the relevant files, search the code base and
list directories. Do not write files in this phase.
When you understand enough, emit <end_phase>strategy_phase</end_phase>.""",
    "strategy": """Phase: STRATEGY.
Describe a concrete plan: the files to create or change, and how each change will be verified.
Read more files if the plan needs them. Do not write files in this phase.
When the plan is complete, emit <end_phase>execute_phase</end_phase>.""",
    "execute": """Phase: EXECUTE.
Implement the plan with <write_file>, always sending the complete file content.
Verify with:
- all tests: {run_all_tests_cmd}
- one test: {run_one_test_cmd}
- type check: {run_type_check_cmd}
When everything passes, emit <end_task> with a short summary.""",
}


def _actions_overview() -> str:
    return "\n".join(f"- {bp.tag}: {bp.description}" for bp in BLUEPRINTS.values())


def phase_prompt(phase: str, config: AgentConfig) -> str:
    steps = _PHASE_STEPS[phase].format(
        run_all_tests_cmd=config.run_all_tests_cmd,
        run_one_test_cmd=config.run_one_test_cmd,
        run_type_check_cmd=config.run_type_check_cmd,
    )
    return f"<phase_prompt>\n{steps}\n\nAvailable actions:\n{_actions_overview()}\n</phase_prompt>"


def discovery_prompt(config: AgentConfig) -> str:
    return phase_prompt("discovery", config)


def strategy_prompt(config: AgentConfig) -> str:
    return phase_prompt("strategy", config)


def execute_prompt(config: AgentConfig) -> str:
    return phase_prompt("execute", config)


def system_instructions(config: AgentConfig, repo: str = ".") -> str:
    return SYSTEM_INSTRUCTIONS.format(custom_instructions=config.load_custom_instructions(repo)).strip()


def first_message(goal: str, repo: str, config: AgentConfig, prompt: str) -> str:
    scanner = config.directory_scanner
    return FIRST_MESSAGE_TEMPLATE.format(
        goal=goal.strip(),
        repo=os.path.abspath(repo),
        language=config.project_language,
        package_manager=config.package_manager,
        tree=repo_tree(repo, max_depth=scanner.max_depth, ignore=scanner.ignore),
        phase_prompt=prompt,
    )


def explain_action(tag: str) -> str:
    """Human readable usage for one action, used by <action_explainer>."""
    bp = get_blueprint(tag)
    if bp is None:
        return f"ERROR: unknown action '{tag}'. Available actions: {', '.join(BLUEPRINTS)}"
    lines = [f"Action: {bp.tag}", f"Description: {bp.description}", "Parameters:"]
    if not bp.parameters:
        lines.append("  (none, the tag body is the value)")
    for p in bp.parameters:
        flag = "required" if p.required else "optional"
        repeat = ", repeatable" if p.multiple else ""
        lines.append(f"  - {p.name} ({flag}{repeat}): {p.description}")
    lines.append(f"Runs in parallel: {'yes' if bp.can_run_in_parallel else 'no'}")
    if bp.usage:
        lines.append("Example:")
        lines.append(bp.usage)
    return "\n".join(lines)
