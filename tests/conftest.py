"""Shared test fixtures for waylog."""

import hashlib
import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

import pytest

from waylog.config import Settings
from waylog.context import AppContext
from waylog.core import DirectoryLocator, Message, Session, Workspace
from waylog.provider import ChatProvider, LazyContentProvider

# 2025-01-20T10:00:00Z
T0 = int(datetime(2025, 1, 20, 10, 0, 0, tzinfo=timezone.utc).timestamp() * 1000)


def _compact(entry: dict) -> str:
    return json.dumps(entry, separators=(",", ":"))


def _kv_db(path: Path, items: dict, table: str = "ItemTable"):
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.execute("CREATE TABLE ItemTable (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
    conn.execute("CREATE TABLE cursorDiskKV (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
    for key, value in items.items():
        conn.execute(f"INSERT INTO {table} VALUES (?, ?)", (key, json.dumps(value)))
    conn.commit()
    conn.close()


# ── Stub providers ───────────────────────────────────────────────


class StubProvider(ChatProvider):
    """In-memory provider for engine, server and CLI tests."""

    description = "In-memory test source"

    def __init__(self, key="stub", name="Stub", workspaces=None, sessions=None, available=True):
        self.key = key
        self.name = name
        self.workspaces = workspaces or []
        self.sessions = sessions or []
        self.available = available

    def get_base_path(self) -> Path:
        return Path("/nonexistent")

    def is_available(self) -> bool:
        return self.available

    def list_workspaces(self) -> list[Workspace]:
        return list(self.workspaces)

    def list_sessions(self, locator) -> list[Session]:
        return list(self.sessions)


class LazyStubProvider(StubProvider, LazyContentProvider):
    def __init__(self, contents=None, **kwargs):
        super().__init__(**kwargs)
        self.contents = contents or {}
        self.fetched = []

    def fetch_content(self, session_id, locator) -> list[Message]:
        self.fetched.append(session_id)
        return list(self.contents.get(session_id, []))


def make_workspace(path, source="Stub", ws_id="ws-1", last_modified=T0) -> Workspace:
    return Workspace(
        id=ws_id,
        name=Path(str(path)).name,
        path=str(path),
        locator=DirectoryLocator(Path(str(path))),
        last_modified=last_modified,
        session_count=1,
        source=source,
    )


@pytest.fixture
def project_root(tmp_path):
    root = tmp_path / "myapp"
    root.mkdir()
    return root


@pytest.fixture
def stub_session():
    return Session(
        id="chat-001",
        title="fix bug",
        timestamp=T0,
        source="Stub",
        messages=[
            Message(role="user", content="fix bug", timestamp=T0),
            Message(role="assistant", content="done", timestamp=T0 + 1000),
        ],
    )


@pytest.fixture
def stub_provider(project_root, stub_session):
    return StubProvider(workspaces=[make_workspace(project_root)], sessions=[stub_session])


@pytest.fixture
def app_context(stub_provider):
    return AppContext(settings=Settings(auto_save=False), providers=[stub_provider])


# ── Cursor ───────────────────────────────────────────────────────


@pytest.fixture
def tmp_cursor_workspace(tmp_path):
    """Cursor workspaceStorage with one legacy tab and two composers."""
    ws_storage = tmp_path / "workspaceStorage"
    ws_dir = ws_storage / "abc123hash"
    ws_dir.mkdir(parents=True)
    (ws_dir / "workspace.json").write_text(
        json.dumps({"folder": "file:///Users/testuser/dev/my-project"}), encoding="utf-8"
    )

    chat_data = {
        "tabs": [
            {
                "tabId": "tab-001",
                "chatTitle": "What is Python?",
                "lastUpdatedAt": T0 + 600000,
                "bubbles": [
                    {"type": "user", "text": "What is Python?", "createdAt": T0 - 60000},
                    {"type": "ai", "text": "A programming language.", "modelType": "gpt-4"},
                ],
            },
            {"tabId": "tab-empty", "bubbles": []},
        ]
    }
    composer_data = {
        "allComposers": [
            {
                "composerId": "comp-uuid-001",
                "name": "Fix auth bug",
                "createdAt": T0,
                "lastUpdatedAt": T0 + 3600000,
                "unifiedMode": "agent",
            },
            {
                # Never used: default name, no activity
                "composerId": "comp-uuid-002",
                "name": "Untitled Composer",
                "createdAt": T0,
                "lastUpdatedAt": T0,
            },
        ]
    }
    _kv_db(ws_dir / "state.vscdb", {
        "workbench.panel.aichat.view.aichat.chatdata": chat_data,
        "composer.composerData": composer_data,
    })
    return ws_storage


@pytest.fixture
def tmp_cursor_global(tmp_path):
    """Cursor global state.vscdb holding the bubbles of comp-uuid-001."""
    rich_text = {"root": {"children": [{"children": [{"text": "Thanks, "}, {"text": "ship it"}]}]}}
    bubbles = {
        "bubbleId:comp-uuid-001:b1": {"type": 1, "text": "Fix the login bug", "createdAt": T0 + 1000},
        "bubbleId:comp-uuid-001:b3": {"type": 2, "text": "", "createdAt": T0 + 3000},
        "bubbleId:comp-uuid-001:b2": {"type": 2, "text": "Looking at auth.ts", "createdAt": T0 + 2000},
        "bubbleId:comp-uuid-001:b4": {"type": 2, "text": "Fixed the token check", "createdAt": T0 + 4000},
        "bubbleId:comp-uuid-001:b5": {"type": 1, "text": "", "richText": json.dumps(rich_text), "createdAt": T0 + 5000},
        "bubbleId:other-composer:b1": {"type": 1, "text": "Unrelated", "createdAt": T0},
    }
    db_path = tmp_path / "globalStorage" / "state.vscdb"
    _kv_db(db_path, bubbles, table="cursorDiskKV")
    return db_path


# ── Claude ───────────────────────────────────────────────────────


@pytest.fixture
def tmp_claude_code_dir(tmp_path):
    """Claude projects directory with one real session, a sidechain and an empty log."""
    projects = tmp_path / "projects"
    project_dir = projects / "-Users-testuser-dev-myapp"
    project_dir.mkdir(parents=True)

    lines = [
        {
            "type": "user",
            "sessionId": "session-001",
            "cwd": "/Users/testuser/dev/myapp",
            "uuid": "uuid-001",
            "timestamp": "2025-01-20T10:00:00Z",
            "message": {
                "role": "user",
                "content": "<ide_opened_file>src/auth.ts</ide_opened_file>Help me refactor the auth module",
            },
        },
        {
            "type": "assistant",
            "uuid": "uuid-002",
            "timestamp": "2025-01-20T10:00:30Z",
            "message": {
                "role": "assistant",
                "model": "claude-sonnet-4",
                "usage": {"input_tokens": 120, "output_tokens": 40, "cache_read_input_tokens": 10},
                "content": [
                    {"type": "thinking", "thinking": "Split validation from refresh."},
                    {"type": "text", "text": "Let me read the current code."},
                    {"type": "tool_use", "id": "toolu_001", "name": "Read", "input": {"file_path": "/src/auth.ts"}},
                ],
            },
        },
        {
            "type": "user",
            "uuid": "uuid-003",
            "timestamp": "2025-01-20T10:00:31Z",
            "message": {"role": "user", "content": [
                {"type": "tool_result", "tool_use_id": "toolu_001", "content": "export function auth() {}"},
            ]},
        },
        {"type": "file-history-snapshot", "files": [{"path": "/src/auth.ts"}]},
        {
            "type": "user",
            "uuid": "uuid-004",
            "timestamp": "2025-01-20T10:02:00Z",
            "message": {"role": "user", "content": "<command-name>/compact</command-name>"},
        },
        {
            "type": "assistant",
            "uuid": "uuid-005",
            "timestamp": "2025-01-20T10:03:00Z",
            "message": {"role": "assistant", "content": [
                {"type": "text", "text": "Plan ready."},
                {"type": "tool_use", "id": "toolu_002", "name": "TodoWrite", "input": {"todos": [
                    {"content": "Split module", "status": "completed"},
                    {"content": "Add tests", "status": "pending"},
                ]}},
            ]},
        },
        {"type": "summary", "summary": "Refactored auth module"},
        {
            "type": "assistant",
            "uuid": "uuid-006",
            "timestamp": "2025-01-20T10:04:00Z",
            "isApiErrorMessage": True,
            "error": "overloaded",
            "message": {"role": "assistant", "content": []},
        },
    ]
    (project_dir / "session-001.jsonl").write_text(
        "\n".join(_compact(e) for e in lines) + "\nnot json\n", encoding="utf-8"
    )

    sidechain = {
        "type": "user",
        "isSidechain": True,
        "sessionId": "session-001",
        "cwd": "/Users/testuser/dev/myapp",
        "timestamp": "2025-01-20T10:01:00Z",
        "message": {"role": "user", "content": "Search the codebase"},
    }
    (project_dir / "agent-1a2b.jsonl").write_text(_compact(sidechain) + "\n", encoding="utf-8")
    (project_dir / "empty.jsonl").write_text("", encoding="utf-8")

    return projects


# ── Codex ────────────────────────────────────────────────────────


@pytest.fixture
def tmp_codex_dir(tmp_path):
    """Codex sessions tree with rollouts for two working directories."""
    root = tmp_path / "sessions"
    day = root / "2025" / "01" / "20"
    day.mkdir(parents=True)

    rollout = [
        {"timestamp": "2025-01-20T10:00:00Z", "type": "session_meta",
         "payload": {"id": "r1", "cwd": "/Users/testuser/dev/api-server"}},
        {"timestamp": "2025-01-20T10:00:00Z", "type": "response_item",
         "payload": {"type": "message", "role": "user", "content": [
             {"type": "input_text", "text": "<environment_context>\n<cwd>/x</cwd>\n</environment_context>"},
         ]}},
        {"timestamp": "2025-01-20T10:00:01Z", "type": "response_item",
         "payload": {"type": "message", "role": "user", "content": [
             {"type": "input_text", "text": "Why is /api/users returning 500?"},
         ]}},
        {"timestamp": "2025-01-20T10:00:01Z", "type": "event_msg",
         "payload": {"type": "user_message", "message": "Why is /api/users returning 500?"}},
        {"timestamp": "2025-01-20T10:00:05Z", "type": "response_item",
         "payload": {"type": "message", "role": "assistant", "content": [
             {"type": "output_text", "text": "The query is missing a join."},
         ]}},
        {"timestamp": "2025-01-20T10:00:09Z", "type": "event_msg",
         "payload": {"type": "error", "message": "rate limited"}},
    ]
    (day / "rollout-a.jsonl").write_text("\n".join(json.dumps(e) for e in rollout), encoding="utf-8")

    other = [
        {"timestamp": "2025-01-20T11:00:00Z", "type": "turn_context",
         "payload": {"cwd": "/Users/testuser/dev/other"}},
        {"timestamp": "2025-01-20T11:00:01Z", "type": "event_msg",
         "payload": {"type": "user_message", "message": "Hello"}},
    ]
    (day / "rollout-b.jsonl").write_text("\n".join(json.dumps(e) for e in other), encoding="utf-8")

    no_cwd = [{"timestamp": "2025-01-20T12:00:00Z", "type": "event_msg",
               "payload": {"type": "user_message", "message": "orphan"}}]
    (day / "rollout-c.jsonl").write_text(json.dumps(no_cwd[0]), encoding="utf-8")

    return root


# ── Copilot Chat ─────────────────────────────────────────────────


@pytest.fixture
def tmp_copilot_storage(tmp_path):
    """VS Code workspaceStorage with Copilot chatSessions."""
    storage = tmp_path / "Code" / "workspaceStorage"
    ws_dir = storage / "ws-hash-1"
    sessions_dir = ws_dir / "chatSessions"
    sessions_dir.mkdir(parents=True)
    (ws_dir / "workspace.json").write_text(
        json.dumps({"folder": "file:///c%3A/Users/dev/myapp"}), encoding="utf-8"
    )

    session = {
        "creationDate": T0,
        "lastMessageDate": T0 + 90000,
        "requests": [
            {
                "timestamp": T0 + 1000,
                "message": {"text": "Explain this regex"},
                "response": [
                    {"kind": "thinking", "value": "internal"},
                    {"value": "**Analyzing pattern**\n\nLooking at the groups.\n\nIt matches digits."},
                ],
            },
            {
                "timestamp": T0 + 60000,
                "message": {"text": "Thanks"},
                "response": [],
            },
        ],
    }
    (sessions_dir / "session-1.json").write_text(json.dumps(session), encoding="utf-8")
    (sessions_dir / "empty.json").write_text(json.dumps({"requests": []}), encoding="utf-8")
    (sessions_dir / "broken.json").write_text("{not json", encoding="utf-8")

    # Workspace without chat sessions
    (storage / "ws-hash-2").mkdir()
    return storage


# ── Cline family ─────────────────────────────────────────────────


@pytest.fixture
def tmp_cline_dir(tmp_path):
    """Cline extension storage with a task for myapp and one without a workspace."""
    ext_dir = tmp_path / "globalStorage" / "saoudrizwan.claude-dev"
    task = ext_dir / "tasks" / "1737367200000"
    task.mkdir(parents=True)

    history = [{
        "role": "user",
        "content": [
            {"type": "text", "text": "<task>\nAdd tests for the parser\n</task>"},
            {"type": "text", "text": "<environment_details>\n# Current Workspace Directory "
                                     "(/Users/testuser/dev/myapp) Files\nparser.py\n</environment_details>"},
        ],
    }]
    (task / "api_conversation_history.json").write_text(json.dumps(history), encoding="utf-8")

    ui_messages = [
        {"ts": T0, "type": "say", "say": "text", "text": "Add tests for the parser", "images": []},
        {"ts": T0 + 1000, "type": "say", "say": "api_req_started", "text": "{\"request\":\"...\"}"},
        {"ts": T0 + 2000, "type": "say", "say": "text", "text": "I'll start by reading parser.py"},
        {"ts": T0 + 3000, "type": "ask", "ask": "followup",
         "text": json.dumps({"question": "Use pytest?", "options": ["yes", "no"]})},
        {"ts": T0 + 4000, "type": "say", "say": "user_feedback", "text": "yes"},
        {"ts": T0 + 5000, "type": "say", "say": "completion_result", "text": "Added 4 tests."},
    ]
    (task / "ui_messages.json").write_text(json.dumps(ui_messages), encoding="utf-8")

    orphan = ext_dir / "tasks" / "1737370800000"
    orphan.mkdir()
    (orphan / "ui_messages.json").write_text(json.dumps([
        {"ts": T0 + 3600000, "type": "say", "say": "text", "text": "Where am I?", "images": []},
    ]), encoding="utf-8")

    return ext_dir


# ── Lingma ───────────────────────────────────────────────────────


@pytest.fixture
def tmp_lingma_db(tmp_path):
    db_path = tmp_path / "lingma" / "local.db"
    db_path.parent.mkdir(parents=True)
    conn = sqlite3.connect(str(db_path))
    conn.execute(
        "CREATE TABLE chat_record (session_id TEXT, request_id TEXT, chat_prompt TEXT, "
        "summary TEXT, error_result TEXT, gmt_create INTEGER, extra TEXT)"
    )
    rows = [
        ("s1", "r1", "How do I parse JSON?", "Use json.loads", "{}", T0, None),
        ("s1", "r2", "And dump it?", "", "{}", T0 + 60000, None),
        ("s2", "r3", "Fix the build", None, "timeout", T0 + 120000, None),
        ("s3", "r4", "", "ignored", "{}", T0, None),
    ]
    conn.executemany("INSERT INTO chat_record VALUES (?, ?, ?, ?, ?, ?, ?)", rows)
    conn.commit()
    conn.close()
    return db_path


# ── CodeBuddy ────────────────────────────────────────────────────


CODEBUDDY_PROJECT = "/Users/testuser/dev/myapp"


@pytest.fixture
def tmp_codebuddy_dir(tmp_path):
    """CodeBuddy data dir with a history tree for CODEBUDDY_PROJECT."""
    base = tmp_path / "CodeBuddyExtension" / "Data"
    history = base / "Public" / "tencent-cloud.coding-copilot" / "history"
    project_dir = history / hashlib.md5(CODEBUDDY_PROJECT.encode("utf-8")).hexdigest()
    conv = project_dir / "conv-1"
    (conv / "messages").mkdir(parents=True)

    (project_dir / "index.json").write_text(
        json.dumps({"conversations": [{"id": "conv-1", "createdAt": T0}]}), encoding="utf-8"
    )
    (conv / "index.json").write_text(json.dumps({"messages": [
        {"id": "m1", "role": "user"},
        {"id": "m2", "role": "assistant"},
        {"id": "m3", "role": "user"},
        {"id": "missing", "role": "assistant"},
    ]}), encoding="utf-8")

    user_body = {"content": [{"type": "text", "text":
        "<user_info>macOS</user_info>\n<user_query>Rename the helper</user_query>"}]}
    (conv / "messages" / "m1.json").write_text(json.dumps({"message": json.dumps(user_body)}), encoding="utf-8")
    reply_body = {"content": "Renamed it to parse_args.", "model": "hunyuan"}
    (conv / "messages" / "m2.json").write_text(json.dumps({"message": json.dumps(reply_body)}), encoding="utf-8")
    noise_body = {"content": [{"type": "text", "text": "<system_reminder>be brief</system_reminder>"}]}
    (conv / "messages" / "m3.json").write_text(json.dumps({"message": json.dumps(noise_body)}), encoding="utf-8")

    return base


# ── Kiro ─────────────────────────────────────────────────────────


@pytest.fixture
def tmp_kiro_dir(tmp_path):
    """Kiro data dir with one visible session and its API log."""
    base = tmp_path / "Kiro"
    ws_dir = base / "User" / "globalStorage" / "kiro.kiroagent" / "workspace-sessions" / "L1VzZXJz"
    ws_dir.mkdir(parents=True)

    (ws_dir / "sessions.json").write_text(json.dumps([
        {"sessionId": "k1", "title": "Build login", "dateCreated": str(T0),
         "workspaceDirectory": "/Users/testuser/dev/myapp"},
        {"sessionId": "k2", "title": "Hidden", "dateCreated": str(T0), "hidden": True,
         "workspaceDirectory": "/Users/testuser/dev/myapp"},
    ]), encoding="utf-8")
    (ws_dir / "k1.json").write_text(json.dumps({"history": [
        {"message": {"role": "user", "content": [{"type": "text", "text": "Build a login page"}]}},
        {"message": {"role": "assistant", "content": "Short reply"}},
        {"message": {"role": "user", "content": "Add validation"}},
        {"message": {"role": "assistant", "content": "Validation added"}},
    ]}), encoding="utf-8")

    log_dir = base / "logs" / "20250120T100000" / "window1" / "exthost" / "output_logging_20250120T100000"
    log_dir.mkdir(parents=True)
    log_lines = [
        '2025-01-20 10:00:00.000 [info] {"request":{"conversationState":{"conversationId":"k1"}}}',
        '2025-01-20 10:00:01.000 [info] {"response":{"fullResponse":"```json\\n{\\"chat\\":0,\\"do\\":1,\\"spec\\":0}\\n```"}}',
        '2025-01-20 10:00:02.000 [info] {"response":{"fullResponse":"Here is the full login page."}}',
        "2025-01-20 10:00:03.000 [info] plain text line",
    ]
    (log_dir / "1-q-chat-api-log.log").write_text("\n".join(log_lines), encoding="utf-8")

    return base
