"""
Tests for the workspace tools and configuration loading.
"""

import pytest
import json
import os
import tempfile
import shutil
import logging
import subprocess
from unittest.mock import patch, MagicMock

# Add parent directory to path for imports
import sys
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import httpx

from cracked_coder.config import (
    AgentConfig, ModelTier, config_from_dict, load_config, setup_logging, write_default_config,
)
from cracked_coder.errors import ConfigError
from cracked_coder.prompts import first_message, system_instructions
from cracked_coder.tools.filesystem import (
    write_file, read_files, delete_file, move_file, copy_file, list_dir, read_directory,
)
from cracked_coder.tools.git_tools import git_diff
from cracked_coder.tools.search import search_string, search_file, relative_path_lookup
from cracked_coder.tools.shell import run
from cracked_coder.tools.tree import repo_tree
from cracked_coder.tools import web_io


class TestFileTools:
    """File system actions, confined to the workspace."""

    @pytest.fixture
    def temp_repo(self):
        temp_dir = tempfile.mkdtemp()
        os.makedirs(os.path.join(temp_dir, "src", "utils"))
        with open(os.path.join(temp_dir, "src", "utils", "helper.ts"), "w") as f:
            f.write("export const helper = () => 1;\n")
        with open(os.path.join(temp_dir, "src", "index.ts"), "w") as f:
            f.write("import { helper } from './utils/helper';\n")
        yield temp_dir
        shutil.rmtree(temp_dir)

    def test_write_new_and_update(self, temp_repo):
        assert write_file(temp_repo, "src/new.ts", "x").startswith("CREATED:")
        assert write_file(temp_repo, "src/new.ts", "y", type="update").startswith("UPDATED:")
        with open(os.path.join(temp_repo, "src/new.ts")) as f:
            assert f.read() == "y"

    def test_write_rejections(self, temp_repo):
        assert "invalid write type" in write_file(temp_repo, "a.ts", "x", type="append")
        assert "must not contain '..'" in write_file(temp_repo, "../escape.ts", "x")
        refused = write_file(temp_repo, "src/utils/helpr.ts", "x", type="update")
        assert refused.startswith("ERROR:")
        assert "src/utils/helper.ts" in refused

    def test_read_files(self, temp_repo):
        files = read_files(temp_repo, ["src/index.ts", "src/utils/helper.ts"])
        assert list(files) == ["src/index.ts", "src/utils/helper.ts"]
        with pytest.raises(ValueError):
            read_files(temp_repo, ["a", "b", "c", "d", "e"])

    def test_path_escape(self, temp_repo):
        with pytest.raises(ValueError):
            read_files(temp_repo, ["../../etc/passwd"])

    def test_sibling_with_shared_prefix_is_outside(self, temp_repo):
        sibling = temp_repo + "-secrets"
        os.makedirs(sibling)
        try:
            with open(os.path.join(sibling, "key.txt"), "w") as f:
                f.write("TOPSECRET")
            escape = "../" + os.path.basename(sibling) + "/key.txt"
            with pytest.raises(ValueError):
                read_files(temp_repo, [escape])
            assert write_file(temp_repo, "../" + os.path.basename(sibling) + "/new.txt", "x").startswith("ERROR:")
            with pytest.raises(ValueError):
                repo_tree(temp_repo, "../" + os.path.basename(sibling))
        finally:
            shutil.rmtree(sibling)

    def test_delete_move_copy(self, temp_repo):
        assert copy_file(temp_repo, "src/index.ts", "src/copy.ts").startswith("COPIED:")
        assert move_file(temp_repo, "src/copy.ts", "lib/moved.ts").startswith("MOVED:")
        assert os.path.exists(os.path.join(temp_repo, "lib", "moved.ts"))
        assert delete_file(temp_repo, "lib/moved.ts").startswith("DELETED:")
        assert delete_file(temp_repo, "lib/moved.ts").startswith("ERROR:")

    def test_listing(self, temp_repo):
        assert list_dir(temp_repo, "src") == "index.ts\nutils"
        recursive = list_dir(temp_repo, ".", recursive=True).splitlines()
        assert os.path.join("src", "utils", "helper.ts") in recursive
        files = read_directory(temp_repo, "src/utils")
        assert files == {os.path.join("src", "utils", "helper.ts"): "export const helper = () => 1;\n"}

    def test_search(self, temp_repo):
        hits = search_string(temp_repo, ".", "HELPER")
        assert "src/utils/helper.ts:1:export const helper = () => 1;" in hits.splitlines()
        assert search_file(temp_repo, "src", "help") == os.path.join("src", "utils", "helper.ts")
        assert search_file(temp_repo, "src", "zzz").startswith("No files matching")

    def test_relative_path_lookup(self, temp_repo):
        assert relative_path_lookup(temp_repo, "src/index.ts", "./utils/helper.ts") == "./utils/helper.ts"
        assert relative_path_lookup(temp_repo, "src/index.ts", "./utils/helper") == "./utils/helper.ts"
        assert relative_path_lookup(temp_repo, "src/index.ts", "./utils/helpr") == "./utils/helper.ts"
        assert relative_path_lookup(temp_repo, "src/index.ts", "./zzzzzzzz/qqqq", threshold=0.99).startswith("ERROR:")

    def test_repo_tree(self, temp_repo):
        tree = repo_tree(temp_repo)
        assert "src/" in tree
        assert "    helper.ts" in tree


class TestShell:
    @pytest.fixture
    def temp_repo(self):
        temp_dir = tempfile.mkdtemp()
        yield temp_dir
        shutil.rmtree(temp_dir)

    def test_output_is_plain_text(self, temp_repo):
        assert run(temp_repo, "printf '\\033[31mred\\033[0m'") == "exit=0\nred"

    def test_non_zero_exit_is_reported(self, temp_repo):
        out = run(temp_repo, "echo broken >&2; exit 3")
        assert out.startswith("exit=3\nbroken")
        assert "try a different approach" in out

    def test_blocked(self, temp_repo):
        assert run(temp_repo, "rm -rf / ") == "ERROR: command blocked by policy"

    def test_timeout(self, temp_repo):
        assert run(temp_repo, "sleep 5", timeout=1).startswith("exit=timeout")


@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
class TestGitDiff:
    """Diffs between commits leave lock files out."""

    @pytest.fixture
    def git_repo(self):
        temp_dir = tempfile.mkdtemp()

        def git(*args):
            subprocess.run(["git", "-c", "user.name=t", "-c", "user.email=t@example.com", *args],
                           cwd=temp_dir, check=True, capture_output=True)

        git("init", "-q")
        for name, text in (("a.txt", "one\n"), ("yarn.lock", "v1\n")):
            with open(os.path.join(temp_dir, name), "w") as f:
                f.write(text)
        git("add", ".")
        git("commit", "-q", "-m", "first")
        for name, text in (("a.txt", "two\n"), ("yarn.lock", "v2\n")):
            with open(os.path.join(temp_dir, name), "w") as f:
                f.write(text)
        git("commit", "-q", "-am", "second")
        yield temp_dir
        shutil.rmtree(temp_dir)

    def test_lock_files_excluded(self, git_repo):
        out = git_diff(git_repo, "HEAD~1", "HEAD", lock_files=["yarn.lock"])
        assert "a.txt" in out
        assert "yarn.lock" not in out

    def test_bad_revision(self, git_repo):
        assert git_diff(git_repo, "nope", "HEAD").startswith("ERROR:")


class TestFetchUrl:
    def setup_method(self):
        web_io._CACHE.clear()

    def test_rejects_scheme(self):
        assert web_io.fetch_url(".", "ftp://example.com").startswith("ERROR:")

    def test_upgrades_and_caches(self):
        response = httpx.Response(200, text="hi", headers={"content-type": "text/plain"},
                                  request=httpx.Request("GET", "https://example.com"))
        client = MagicMock()
        client.__enter__.return_value.get.return_value = response
        with patch.object(web_io.httpx, "Client", return_value=client):
            assert web_io.fetch_url(".", "http://example.com") == "status=200\nhi"
            assert web_io.fetch_url(".", "https://example.com") == "status=200\nhi"
        client.__enter__.return_value.get.assert_called_once_with("https://example.com")

    def test_binary_content_rejected(self):
        response = httpx.Response(200, content=b"\x00", headers={"content-type": "image/png"},
                                  request=httpx.Request("GET", "https://example.com/x.png"))
        client = MagicMock()
        client.__enter__.return_value.get.return_value = response
        with patch.object(web_io.httpx, "Client", return_value=client):
            assert "unsupported content type" in web_io.fetch_url(".", "https://example.com/x.png")


class TestConfig:
    """crkdrc.json loading and validation."""

    @pytest.fixture
    def temp_dir(self):
        temp_dir = tempfile.mkdtemp()
        yield temp_dir
        shutil.rmtree(temp_dir)

    def test_missing_file_gives_defaults(self, temp_dir):
        assert load_config(os.path.join(temp_dir, "crkdrc.json")) == AgentConfig()

    def test_camel_case_keys(self):
        config = config_from_dict({
            "provider": "openai",
            "discoveryModel": "gpt-4o-mini",
            "autoScaler": True,
            "autoScaleAvailableModels": [{"id": "t1", "maxWriteTries": 2, "maxGlobalTries": 4}],
            "gitDiff": {"lockFiles": ["a.lock"]},
            "directoryScanner": {"maxDepth": 2},
            "contextWindows": {"t1": 1000},
            "unknownKey": 1,
        })
        assert config.discovery_model == "gpt-4o-mini"
        assert config.auto_scale_available_models == [ModelTier(id="t1", max_write_tries=2, max_global_tries=4)]
        assert config.lock_files == ["a.lock"]
        assert config.directory_scanner.max_depth == 2
        assert config.context_windows["t1"] == 1000
        assert config.resolved_base_url() == "https://api.openai.com/v1"

    def test_validation(self):
        with pytest.raises(ConfigError):
            config_from_dict({"provider": "nowhere"})
        with pytest.raises(ConfigError):
            config_from_dict({"autoScaler": True, "autoScaleAvailableModels": []})
        with pytest.raises(ConfigError):
            config_from_dict({"autoScaleAvailableModels": [{"id": "x"}]})

    def test_invalid_json(self, temp_dir):
        path = os.path.join(temp_dir, "crkdrc.json")
        with open(path, "w") as f:
            f.write("{nope")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_default_file_round_trip(self, temp_dir):
        path = write_default_config(os.path.join(temp_dir, "crkdrc.json"))
        with open(path) as f:
            assert "api_key" not in json.load(f)
        assert load_config(path) == AgentConfig()

    def test_api_key_from_environment(self):
        with patch.dict(os.environ, {"OPENROUTER_API_KEY": "sk-test"}):
            assert AgentConfig().resolved_api_key() == "sk-test"

    def test_custom_instructions(self, temp_dir):
        with open(os.path.join(temp_dir, "RULES.md"), "w") as f:
            f.write("Use tabs.\n")
        config = AgentConfig(custom_instructions="Be brief.", custom_instructions_path="RULES.md")
        text = system_instructions(config, temp_dir)
        assert text.endswith("Be brief.\n\nUse tabs.")
        with pytest.raises(ConfigError):
            AgentConfig(custom_instructions_path="MISSING.md").load_custom_instructions(temp_dir)

    def test_first_message(self, temp_dir):
        open(os.path.join(temp_dir, "main.ts"), "w").close()
        text = first_message("Add a flag", temp_dir, AgentConfig(), "<phase_prompt>p</phase_prompt>")
        assert text.startswith("<task>\nAdd a flag\n</task>")
        assert "main.ts" in text
        assert text.endswith("<phase_prompt>p</phase_prompt>")

    def test_setup_logging(self, temp_dir):
        logger = setup_logging(True, temp_dir)
        try:
            assert logger.level == logging.DEBUG
            assert os.path.exists(os.path.join(temp_dir, "cracked_debug.log"))
        finally:
            for handler in list(logger.handlers):
                if isinstance(handler, logging.FileHandler):
                    handler.close()
                    logger.removeHandler(handler)
            logger.setLevel(logging.WARNING)
