"""Tests for the Tencent CodeBuddy backend."""

import hashlib
import json
import os
from unittest.mock import patch

from tests.conftest import CODEBUDDY_PROJECT, T0
from waylog.backends.codebuddy import CodeBuddyProvider, clean_text, project_hash, read_project
from waylog.core import DirectoryLocator
from waylog.normalize import file_times


class TestCodeBuddyProvider:
    def test_finds_nested_history_dir(self, tmp_codebuddy_dir):
        provider = CodeBuddyProvider()
        with patch.object(provider, "get_base_path", return_value=tmp_codebuddy_dir):
            dirs = provider.find_history_dirs()
            assert provider.is_available() is True
        assert [d.name for d in dirs] == ["history"]

    def test_is_available_without_data(self, tmp_path):
        provider = CodeBuddyProvider()
        with patch.object(provider, "get_base_path", return_value=tmp_path / "nonexistent"):
            assert provider.is_available() is False

    def test_list_workspaces(self, tmp_codebuddy_dir):
        provider = CodeBuddyProvider(open_folders=[CODEBUDDY_PROJECT])
        with patch.object(provider, "get_base_path", return_value=tmp_codebuddy_dir):
            workspaces = provider.list_workspaces()

        by_path = {ws.path: ws for ws in workspaces}
        project = by_path[CODEBUDDY_PROJECT]
        assert project.id == f"codebuddy-{project_hash(CODEBUDDY_PROJECT)}"
        assert project.name == "CodeBuddy (myapp)"
        assert project.session_count == 1

        raw = [ws for ws in workspaces if ws.name.startswith("CodeBuddy Raw - ")]
        assert len(raw) == 1
        assert raw[0].session_count == 1

    def test_list_sessions(self, tmp_codebuddy_dir):
        provider = CodeBuddyProvider()
        with patch.object(provider, "get_base_path", return_value=tmp_codebuddy_dir):
            history = provider.find_history_dirs()[0]
        digest = project_hash(CODEBUDDY_PROJECT)
        sessions = provider.list_sessions(DirectoryLocator(history / digest))
        assert len(sessions) == 1

        session = sessions[0]
        assert session.id == f"{digest}/conv-1"
        assert session.title == "Rename the helper"
        assert session.timestamp == T0
        assert [(m.role, m.content) for m in session.messages] == [
            ("user", "Rename the helper"),
            ("assistant", "Renamed it to parse_args."),
        ]
        assert session.messages[1].metadata == {"model": "hunyuan"}


def test_project_hash_is_md5_of_path():
    assert project_hash("/tmp/x") == hashlib.md5(b"/tmp/x").hexdigest()


def test_clean_text():
    assert clean_text("<user_query>hello</user_query>") == "hello"
    assert clean_text("<project_layout>\nsrc/\n</project_layout>") is None
    assert clean_text("plain") == "plain"


def test_creation_time_without_project_index_is_stable(tmp_codebuddy_dir):
    history = tmp_codebuddy_dir / "Public" / "tencent-cloud.coding-copilot" / "history"
    project_dir = history / project_hash(CODEBUDDY_PROJECT)
    (project_dir / "index.json").unlink()
    conv = project_dir / "conv-1"

    first = read_project(project_dir)[0]
    assert first.timestamp == file_times(conv)[0]

    # A new message rewrites the conversation index
    later = int(conv.stat().st_mtime) + 600
    os.utime(conv / "index.json", (later, later))
    second = read_project(project_dir)[0]
    assert second.timestamp == first.timestamp
    assert second.last_updated_at == later * 1000


def test_non_text_parts_are_ignored(tmp_codebuddy_dir):
    history = tmp_codebuddy_dir / "Public" / "tencent-cloud.coding-copilot" / "history"
    conv = history / project_hash(CODEBUDDY_PROJECT) / "conv-1"
    odd_body = {"content": [{"type": "text", "text": None}, {"type": "text", "text": "still here"}]}
    (conv / "messages" / "m3.json").write_text(json.dumps({"message": json.dumps(odd_body)}), encoding="utf-8")

    session = read_project(conv.parent)[0]
    assert session.messages[-1].content == "still here"
