"""
Unit tests for toolcore.tools.classify - Keyword Classification Tables
"""

import pytest

from toolcore.exceptions import ExecutionTimeoutError, ProviderConnectionError
from toolcore.tools.classify import (
    DEFAULT_CATEGORY,
    categorize_tool,
    is_connection_error,
    is_dangerous_tool,
    required_arguments,
)


class TestCategorize:
    @pytest.mark.parametrize(
        ("raw_name", "description", "expected"),
        [
            ("read_file", "", "filesystem"),
            ("list_directory", "", "filesystem"),
            ("fetch_url", "", "web"),
            ("brave_search", "", "search"),
            ("git_log", "", "version-control"),
            ("get_weather", "", DEFAULT_CATEGORY),
        ],
    )
    def test_by_name(self, raw_name, description, expected):
        assert categorize_tool(raw_name, description) == expected

    def test_name_wins_over_description(self):
        assert categorize_tool("search_code", "Search files in a repo") == "search"

    def test_falls_back_to_description(self):
        assert categorize_tool("lookup", "Query the web index") == "web"

    def test_no_description(self):
        assert categorize_tool("ping", None) == DEFAULT_CATEGORY


class TestDangerous:
    @pytest.mark.parametrize("raw_name", ["delete_file", "run_command", "drop_table", "shell"])
    def test_destructive_names(self, raw_name):
        assert is_dangerous_tool(raw_name)

    def test_description_counts(self):
        assert is_dangerous_tool("cleanup", "Remove stale caches")

    def test_harmless(self):
        assert not is_dangerous_tool("read_file", "Read a file from disk")


class TestRequiredArguments:
    def test_file_and_search(self):
        assert required_arguments("read_file") == {"file": "path"}
        assert required_arguments("search") == {"search": "query"}
        assert required_arguments("search_files") == {"file": "path", "search": "query"}

    def test_none_required(self):
        assert required_arguments("echo") == {}


class TestConnectionErrors:
    @pytest.mark.parametrize(
        "error",
        [
            ConnectionRefusedError(),
            BrokenPipeError(),
            EOFError(),
            ProviderConnectionError("anything"),
            ExecutionTimeoutError(100),
            RuntimeError("Connection closed by peer"),
            RuntimeError("connect ECONNREFUSED 127.0.0.1:3000"),
            "socket hang up",
        ],
    )
    def test_connection_class(self, error):
        assert is_connection_error(error)

    @pytest.mark.parametrize("error", [ValueError("bad input"), "permission denied", None])
    def test_not_connection_class(self, error):
        assert not is_connection_error(error)
