"""
Shared test fixtures for dslsync tests.

This module provides common fixtures used across the test suite:
- Sample DSL documents
- Application directories with config
- Fake browser stores and HTTP responses
"""

import json
from pathlib import Path
from typing import Any
from unittest.mock import Mock

import pytest

# ============================================================================
# DSL FIXTURES
# ============================================================================

SAMPLE_DSL = """\
app:
  description: ''
  icon: 🤖
  mode: workflow
  name: Support Bot
kind: app
version: 0.1.5
workflow:
  conversation_variables: []
  features:
    file_upload:
      enabled: false
  graph:
    edges:
    - id: start-llm
      source: '1718000000001'
      target: '1718000000002'
    nodes:
    - data:
        desc: ''
        title: Start
        type: start
        variables:
        - label: Question
          max_length: 4000
          required: true
          type: paragraph
          variable: question
        - label: Tone
          required: true
          type: text-input
          variable: tone
        - label: Limit
          required: true
          type: number
          variable: limit
        - label: Notes
          required: false
          type: text-input
          variable: notes
      height: 116
      id: '1718000000001'
      position:
        x: 80
        y: 282
      type: custom
    - data:
        context:
          enabled: false
          variable_selector: []
        model:
          completion_params:
            temperature: 0.7
          mode: chat
          name: gpt-4o
          provider: openai
        prompt_template:
        - id: sys-1
          role: system
          text: |-
            You are a helpful support agent.
            Answer in a {{#1718000000001.tone#}} tone.
        - id: usr-1
          role: user
          text: '{{#1718000000001.question#}}'
        selected: false
        title: Draft reply (v2)
        type: llm
        vision:
          enabled: false
      height: 98
      id: '1718000000002'
      position:
        x: 380
        y: 282
      type: custom
    - data:
        model:
          mode: chat
          name: gpt-4o-mini
          provider: openai
        prompt_template:
        - role: system
          text: You write summaries.
        - role: user
          text: Summarize {{#1718000000002.text#}}
        - role: assistant
          text: Summary
        title: 总结
        type: llm
      id: '1718000000003'
      type: custom
    - data:
        outputs:
        - value_selector:
          - '1718000000003'
          - text
          variable: result
        title: End
        type: end
      id: '1718000000004'
      type: custom
"""


@pytest.fixture
def sample_dsl() -> str:
    """Workflow DSL with a start node, two llm nodes and an end node."""
    return SAMPLE_DSL


@pytest.fixture
def app_dir(tmp_path) -> Path:
    """Application directory with an app.toml."""
    directory = tmp_path / "apps" / "Support Bot-TEST-app-123"
    directory.mkdir(parents=True)
    (directory / "app.toml").write_text('app_id = "app-123"\n')
    return directory


@pytest.fixture
def settings_file(tmp_path) -> Path:
    """Global settings file pointing at a fake console."""
    path = tmp_path / "settings.toml"
    path.write_text(
        'console_url = "https://console.example.com"\n'
        f'credential_cache = "{(tmp_path / "credentials.json").as_posix()}"\n'
    )
    return path


# ============================================================================
# CREDENTIAL FIXTURES
# ============================================================================


@pytest.fixture
def fake_store_items() -> list[tuple[bytes, bytes]]:
    """Local Storage entries as Chrome writes them (framing byte prefixes)."""
    return [
        (b"META:https://console.example.com", b"\x08\x01"),
        (b"_https://console.example.com\x00\x01console_token", b"\x01session-token-AAA"),
        (b"_https://console.example.com\x00\x01refresh_token", b"\x01refresh-token-BBB"),
        (b"_https://other.example.org\x00\x01console_token", b"\x01not-ours"),
    ]


@pytest.fixture
def browser_store(tmp_path) -> Path:
    """Directory standing in for Chrome's Local Storage LevelDB."""
    store = tmp_path / "leveldb"
    store.mkdir()
    (store / "000003.log").write_bytes(b"\x00" * 16)
    (store / "LOCK").write_text("")
    return store


def _make_response(status_code: int = 200, payload: Any = None, text: str | None = None) -> Mock:
    response = Mock()
    response.status_code = status_code
    if payload is not None:
        response.json.return_value = payload
        response.text = json.dumps(payload)
        response.headers = {"Content-Type": "application/json"}
    else:
        response.json.side_effect = ValueError("not json")
        response.text = text or ""
        response.headers = {"Content-Type": "text/plain"}
    return response


@pytest.fixture
def make_response():
    """Factory for fake requests.Response objects."""
    return _make_response
