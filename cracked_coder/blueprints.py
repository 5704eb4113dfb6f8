from __future__ import annotations
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Optional

"""
Static catalog of the action vocabulary the model may emit.

Each blueprint describes one XML-style action tag: its scheduling priority
(lower runs first), whether it may share a parallel group, whether the round
must wait for a recorded result before moving on, and its parameter tags.
The executable side of each action lives in tools.ActionRegistry.
"""


class ActionPriority(IntEnum):
    CRITICAL = 1
    HIGH = 2
    MEDIUM = 3
    LOW = 4
    LOWEST = 5


@dataclass(frozen=True)
class ActionParameter:
    name: str
    required: bool = True
    description: str = ""
    multiple: bool = False


@dataclass(frozen=True)
class ActionBlueprint:
    tag: str
    description: str
    priority: ActionPriority
    can_run_in_parallel: bool
    requires_processing: bool
    parameters: tuple[ActionParameter, ...] = field(default_factory=tuple)
    usage: str = ""


BLUEPRINTS: dict[str, ActionBlueprint] = {bp.tag: bp for bp in [
    ActionBlueprint(
        tag="read_file",
        description="Reads content from one or more files",
        priority=ActionPriority.CRITICAL,
        can_run_in_parallel=True,
        requires_processing=True,
        parameters=(ActionParameter("path", description="Path of a file to read. Repeat the tag for several files.",
                                    multiple=True),),
        usage="<read_file>\n  <path>src/services/MyService.ts</path>\n  <path>src/types/MyTypes.ts</path>\n</read_file>",
    ),
    ActionBlueprint(
        tag="write_file",
        description="Creates a new file or replaces the content of an existing one",
        priority=ActionPriority.MEDIUM,
        can_run_in_parallel=False,
        requires_processing=False,
        parameters=(
            ActionParameter("type", description="'new' to create a file, 'update' to replace an existing one"),
            ActionParameter("path", description="Path of the file to write"),
            ActionParameter("content", description="Full file content"),
        ),
        usage="<write_file>\n  <type>update</type>\n  <path>src/app.ts</path>\n  <content>\n...\n  </content>\n</write_file>",
    ),
    ActionBlueprint(
        tag="delete_file",
        description="Deletes a file",
        priority=ActionPriority.HIGH,
        can_run_in_parallel=False,
        requires_processing=False,
        parameters=(ActionParameter("path", description="Path of the file to delete"),),
        usage="<delete_file>\n  <path>src/old.ts</path>\n</delete_file>",
    ),
    ActionBlueprint(
        tag="move_file",
        description="Moves or renames a file",
        priority=ActionPriority.HIGH,
        can_run_in_parallel=False,
        requires_processing=False,
        parameters=(
            ActionParameter("source_path", description="Current path"),
            ActionParameter("destination_path", description="New path"),
        ),
        usage="<move_file>\n  <source_path>src/a.ts</source_path>\n  <destination_path>src/b.ts</destination_path>\n</move_file>",
    ),
    ActionBlueprint(
        tag="copy_file",
        description="Copies a file",
        priority=ActionPriority.CRITICAL,
        can_run_in_parallel=True,
        requires_processing=False,
        parameters=(
            ActionParameter("source_path", description="File to copy"),
            ActionParameter("destination_path", description="Where to put the copy"),
        ),
        usage="<copy_file>\n  <source_path>src/a.ts</source_path>\n  <destination_path>src/a.copy.ts</destination_path>\n</copy_file>",
    ),
    ActionBlueprint(
        tag="execute_command",
        description="Executes a shell command in the workspace root",
        priority=ActionPriority.LOW,
        can_run_in_parallel=False,
        requires_processing=True,
        parameters=(),
        usage="<execute_command>\nyarn test src/services/__tests__/MyService.test.ts\n</execute_command>",
    ),
    ActionBlueprint(
        tag="search_string",
        description="Searches file contents for a string",
        priority=ActionPriority.HIGH,
        can_run_in_parallel=True,
        requires_processing=True,
        parameters=(
            ActionParameter("directory", description="Directory to search"),
            ActionParameter("term", description="Text to look for"),
        ),
        usage="<search_string>\n  <directory>src</directory>\n  <term>createUser</term>\n</search_string>",
    ),
    ActionBlueprint(
        tag="search_file",
        description="Searches file names",
        priority=ActionPriority.HIGH,
        can_run_in_parallel=True,
        requires_processing=True,
        parameters=(
            ActionParameter("directory", description="Directory to search"),
            ActionParameter("term", description="Part of the file name"),
        ),
        usage="<search_file>\n  <directory>src</directory>\n  <term>UserService</term>\n</search_file>",
    ),
    ActionBlueprint(
        tag="list_directory_files",
        description="Lists files in a directory",
        priority=ActionPriority.HIGH,
        can_run_in_parallel=True,
        requires_processing=False,
        parameters=(
            ActionParameter("path", description="Directory to list"),
            ActionParameter("recursive", required=False, description="'true' to descend into subdirectories"),
        ),
        usage="<list_directory_files>\n  <path>src</path>\n  <recursive>true</recursive>\n</list_directory_files>",
    ),
    ActionBlueprint(
        tag="read_directory",
        description="Reads every file in a directory",
        priority=ActionPriority.CRITICAL,
        can_run_in_parallel=True,
        requires_processing=True,
        parameters=(ActionParameter("directory", description="Directory whose files to read"),),
        usage="<read_directory>\n  <directory>src/utils</directory>\n</read_directory>",
    ),
    ActionBlueprint(
        tag="fetch_url",
        description="Fetches the text content of a URL",
        priority=ActionPriority.LOW,
        can_run_in_parallel=True,
        requires_processing=False,
        parameters=(ActionParameter("url", description="URL to fetch"),),
        usage="<fetch_url>\n  <url>https://example.com/docs</url>\n</fetch_url>",
    ),
    ActionBlueprint(
        tag="git_diff",
        description="Shows the diff between two commits",
        priority=ActionPriority.HIGH,
        can_run_in_parallel=True,
        requires_processing=False,
        parameters=(
            ActionParameter("fromCommit", description="Base commit"),
            ActionParameter("toCommit", description="Target commit"),
        ),
        usage="<git_diff>\n  <fromCommit>HEAD~1</fromCommit>\n  <toCommit>HEAD</toCommit>\n</git_diff>",
    ),
    ActionBlueprint(
        tag="git_pr_diff",
        description="Shows the diff between two branches",
        priority=ActionPriority.HIGH,
        can_run_in_parallel=True,
        requires_processing=False,
        parameters=(
            ActionParameter("baseBranch", description="Branch the PR targets"),
            ActionParameter("compareBranch", description="Branch with the changes"),
        ),
        usage="<git_pr_diff>\n  <baseBranch>main</baseBranch>\n  <compareBranch>feature</compareBranch>\n</git_pr_diff>",
    ),
    ActionBlueprint(
        tag="relative_path_lookup",
        description="Finds the closest existing path for a possibly wrong relative import",
        priority=ActionPriority.HIGH,
        can_run_in_parallel=True,
        requires_processing=False,
        parameters=(
            ActionParameter("source_path", description="File containing the import"),
            ActionParameter("path", description="Relative path to resolve"),
            ActionParameter("threshold", required=False, description="Similarity threshold between 0 and 1"),
        ),
        usage="<relative_path_lookup>\n  <source_path>src/a.ts</source_path>\n  <path>../utils/helper</path>\n</relative_path_lookup>",
    ),
    ActionBlueprint(
        tag="action_explainer",
        description="Explains how to use an action",
        priority=ActionPriority.HIGH,
        can_run_in_parallel=True,
        requires_processing=False,
        parameters=(ActionParameter("action", description="Name of the action"),),
        usage="<action_explainer>\n  <action>write_file</action>\n</action_explainer>",
    ),
    ActionBlueprint(
        tag="end_phase",
        description="Ends the current phase and moves to the next one",
        priority=ActionPriority.CRITICAL,
        can_run_in_parallel=False,
        requires_processing=True,
        parameters=(),
        usage="<end_phase>\n  strategy_phase\n</end_phase>",
    ),
    ActionBlueprint(
        tag="end_task",
        description="Marks the task as complete with a short summary",
        priority=ActionPriority.LOWEST,
        can_run_in_parallel=False,
        requires_processing=False,
        parameters=(),
        usage="<end_task>\n  Implemented the user service and its tests.\n</end_task>",
    ),
]}


def get_blueprint(tag: str) -> Optional[ActionBlueprint]:
    return BLUEPRINTS.get(tag)


def get_priority(tag: str) -> ActionPriority:
    bp = BLUEPRINTS.get(tag)
    return bp.priority if bp else ActionPriority.LOW


def action_tags() -> list[str]:
    return list(BLUEPRINTS)


def parameter_tags() -> list[str]:
    seen: list[str] = []
    for bp in BLUEPRINTS.values():
        for p in bp.parameters:
            if p.name not in seen:
                seen.append(p.name)
    return seen
