"""Unit tests for dsl_codec module.

Tests decoding the console's DSL export into typed nodes and encoding it back:
- Node typing (start, llm, other kinds)
- Preservation of fields the codec does not model
- Document invariants (unique node ids, mapping root)
- Documents without a workflow graph
"""

import pytest

from dslsync.dsl_codec import (
    Document,
    Node,
    NodeKind,
    PromptNode,
    PromptTurn,
    StartNode,
    decode,
    encode,
    load_document,
    save_document,
)
from dslsync.exceptions import DocumentError


class TestDecode:
    """Test decode()."""

    def test_nodes_typed_by_kind(self, sample_dsl):
        """Test start and llm nodes get their own types, others stay generic."""
        document = decode(sample_dsl)

        kinds = [type(node) for node in document.nodes]
        assert kinds == [StartNode, PromptNode, PromptNode, Node]
        assert document.nodes[3].kind == "end"

    def test_graph_order_preserved(self, sample_dsl):
        """Test nodes keep the order they have in the graph."""
        document = decode(sample_dsl)

        assert [node.id for node in document.nodes] == [
            "1718000000001",
            "1718000000002",
            "1718000000003",
            "1718000000004",
        ]

    def test_app_metadata(self, sample_dsl):
        """Test app name and mode are exposed."""
        document = decode(sample_dsl)

        assert document.app_name == "Support Bot"
        assert document.app_mode == "workflow"
        assert document.has_graph() is True

    def test_start_node_variables(self, sample_dsl):
        """Test start variables are parsed with name, type and required flag."""
        start = decode(sample_dsl).start_node()

        assert start is not None
        assert [v.name for v in start.required_variables()] == ["question", "tone", "limit"]
        assert start.variables[2].type == "number"
        assert start.variables[0].extra["max_length"] == 4000

    def test_prompt_node_turns_and_params(self, sample_dsl):
        """Test llm node splits into turns and the remaining parameters."""
        node = decode(sample_dsl).node("1718000000002")

        assert isinstance(node, PromptNode)
        assert [turn.role for turn in node.turns] == ["system", "user"]
        assert node.turns[0].text.startswith("You are a helpful support agent.\n")
        assert node.turns[0].extra == {"id": "sys-1"}
        assert "prompt_template" not in node.params
        assert node.params["model"]["name"] == "gpt-4o"
        assert node.title == "Draft reply (v2)"

    def test_llm_node_without_chat_template_kept_generic(self):
        """Test a completion-style llm node (template is a mapping) is not a PromptNode."""
        text = """
workflow:
  graph:
    nodes:
    - id: n1
      data:
        type: llm
        title: Completion
        prompt_template:
          text: Say hi
"""
        document = decode(text)

        assert not isinstance(document.nodes[0], PromptNode)
        assert document.prompt_nodes() == []

    def test_duplicate_node_ids_rejected(self):
        """Test two nodes sharing an id fail decoding."""
        text = """
workflow:
  graph:
    nodes:
    - id: same
      data: {type: start}
    - id: same
      data: {type: end}
"""
        with pytest.raises(DocumentError, match="Duplicate node id"):
            decode(text)

    def test_node_without_id_rejected(self):
        """Test a node with no id fails decoding."""
        text = "workflow:\n  graph:\n    nodes:\n    - data: {type: start}\n"

        with pytest.raises(DocumentError, match="has no id"):
            decode(text)

    def test_invalid_yaml_rejected(self):
        """Test malformed YAML raises DocumentError."""
        with pytest.raises(DocumentError, match="Invalid DSL YAML"):
            decode("app: [unclosed")

    def test_non_mapping_rejected(self):
        """Test a YAML list at the root is rejected."""
        with pytest.raises(DocumentError, match="must be a mapping"):
            decode("- a\n- b\n")

    def test_nodes_must_be_list(self):
        """Test a non-list node collection is rejected."""
        with pytest.raises(DocumentError, match="must be a list"):
            decode("workflow:\n  graph:\n    nodes: {}\n")

    def test_unquoted_dates_stay_strings(self):
        """Test ISO dates and timestamps decode as text, not date objects."""
        document = decode("app:\n  created: 2024-05-01\n  updated: 2024-05-01 10:30:00\n")

        assert document.tree["app"] == {
            "created": "2024-05-01",
            "updated": "2024-05-01 10:30:00",
        }

    def test_document_without_graph(self):
        """Test chat-mode apps without a workflow graph decode with no nodes."""
        document = decode("app:\n  name: Chat\n  mode: chat\nmodel_config:\n  prompt: hi\n")

        assert document.has_graph() is False
        assert document.nodes == []
        assert document.start_node() is None
        assert document.to_dict() == {
            "app": {"name": "Chat", "mode": "chat"},
            "model_config": {"prompt": "hi"},
        }


class TestEncode:
    """Test encode()."""

    def test_round_trip_preserves_tree(self, sample_dsl):
        """Test decode(encode(D)) equals D, unknown fields included."""
        document = decode(sample_dsl)

        again = decode(encode(document))

        assert again.to_dict() == document.to_dict()
        assert again.tree["workflow"]["features"] == {"file_upload": {"enabled": False}}
        assert again.tree["workflow"]["graph"]["edges"][0]["id"] == "start-llm"

    def test_prompt_template_keeps_key_position(self, sample_dsl):
        """Test prompt_template is written back where it was in the payload."""
        document = decode(sample_dsl)

        data = document.to_dict()["workflow"]["graph"]["nodes"][1]["data"]

        assert list(data.keys()) == [
            "context",
            "model",
            "prompt_template",
            "selected",
            "title",
            "type",
            "vision",
        ]

    def test_edited_turns_are_encoded(self, sample_dsl):
        """Test changes to typed fields reach the encoded text."""
        document = decode(sample_dsl)
        node = document.node("1718000000003")
        node.turns.append(PromptTurn(role="user", text="And translate it"))

        encoded = encode(document)

        assert "And translate it" in encoded
        template = decode(encoded).node("1718000000003").turns
        assert [turn.role for turn in template] == ["system", "user", "assistant", "user"]

    def test_numeric_node_ids_preserved(self):
        """Test unquoted numeric ids keep their type so edges still reference them."""
        text = """
workflow:
  graph:
    edges:
    - source: 1718000000001
      target: 1718000000002
    nodes:
    - id: 1718000000001
      data: {type: start, title: Start}
    - id: 1718000000002
      data:
        type: llm
        title: Reply
        prompt_template: [{role: system, text: hi}]
"""
        document = decode(text)

        again = decode(encode(document))

        nodes = again.tree["workflow"]["graph"]["nodes"]
        edge = again.tree["workflow"]["graph"]["edges"][0]
        assert nodes[0]["id"] == 1718000000001
        assert type(nodes[0]["id"]) is type(edge["source"])
        assert again.to_dict() == document.to_dict()
        assert document.node("1718000000002").title == "Reply"

    def test_node_without_data_unchanged(self):
        """Test nodes without a data payload do not gain one."""
        document = decode("workflow:\n  graph:\n    nodes:\n    - id: n1\n      type: note\n")

        assert document.to_dict()["workflow"]["graph"]["nodes"] == [{"id": "n1", "type": "note"}]

    def test_multiline_text_as_literal_block(self):
        """Test multi-line strings are written as YAML literal blocks."""
        document = Document(tree={"text": "line one\nline two"})

        assert "text: |-\n  line one\n  line two\n" in encode(document)

    def test_unicode_written_as_is(self, sample_dsl):
        """Test non-ASCII text is not escaped."""
        encoded = encode(decode(sample_dsl))

        assert "总结" in encoded
        assert "\\u" not in encoded

    def test_node_kind_values(self):
        """Test NodeKind string values match the DSL's type tags."""
        assert NodeKind.START == "start"
        assert NodeKind.LLM == "llm"


class TestDocumentFiles:
    """Test load_document() and save_document()."""

    def test_save_and_load(self, tmp_path, sample_dsl):
        """Test a saved document loads back equal."""
        path = tmp_path / "DSL" / "main.yml"
        document = decode(sample_dsl)

        save_document(path, document)

        assert path.exists()
        assert load_document(path).to_dict() == document.to_dict()

    def test_load_missing_file(self, tmp_path):
        """Test loading a missing file raises DocumentError."""
        with pytest.raises(DocumentError, match="not found"):
            load_document(tmp_path / "missing.yml")

    def test_copy_is_independent(self, sample_dsl):
        """Test Document.copy() does not share node state."""
        document = decode(sample_dsl)
        clone = document.copy()

        clone.prompt_nodes()[0].turns[0].text = "changed"

        assert document.prompt_nodes()[0].turns[0].text != "changed"
