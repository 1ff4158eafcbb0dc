"""DSL document codec.

Decodes the console's YAML export into a Document whose workflow nodes are
typed by kind, and encodes it back. The document format belongs to the
console, so everything this module does not model is carried through
untouched: the full decoded tree is kept, every node keeps its raw mapping,
and typed fields are written back into those mappings on encode.

Document Structure (fields this tool inspects):
    app:
      name: Application name
      mode: workflow | advanced-chat | ...
    workflow:
      graph:
        nodes:
          - id: node id (unique)
            data:
              type: node kind (start, llm, ...)
              title: display title
              variables: [...]          # start nodes
              prompt_template: [...]    # llm nodes
"""

import copy
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

try:
    import yaml
except ImportError:
    raise ImportError("PyYAML not available. Install with: pip install pyyaml")

from dslsync.exceptions import DocumentError

logger = logging.getLogger(__name__)

TIMESTAMP_TAG = "tag:yaml.org,2002:timestamp"


class NodeKind(StrEnum):
    """Node kinds this tool understands."""

    START = "start"
    LLM = "llm"


class VariableType(StrEnum):
    """Start variable types with a known default value."""

    TEXT_INPUT = "text-input"
    NUMBER = "number"


@dataclass
class PromptTurn:
    """One role-tagged block of a prompt template."""

    role: str
    text: str
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        turn = dict(self.extra)
        turn["role"] = self.role
        turn["text"] = self.text
        return turn

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PromptTurn":
        extra = {k: v for k, v in data.items() if k not in ("role", "text")}
        return cls(role=str(data.get("role", "")), text=data.get("text") or "", extra=extra)


@dataclass
class Variable:
    """Input variable declared by the start node."""

    name: str
    type: str
    required: bool = False
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Variable":
        extra = {k: v for k, v in data.items() if k not in ("variable", "type", "required")}
        return cls(
            name=str(data.get("variable", "")),
            type=str(data.get("type", "")),
            required=bool(data.get("required", False)),
            extra=extra,
        )


@dataclass
class Node:
    """Workflow node of a kind this tool does not edit.

    Attributes:
        id: Node identifier as text; `raw` keeps the id exactly as decoded
        kind: The payload's `type` tag
        raw: Complete node mapping, including the `data` payload
    """

    id: str
    kind: str
    raw: dict[str, Any]

    @property
    def data(self) -> dict[str, Any]:
        return self.raw.get("data") or {}

    @property
    def title(self) -> str:
        return str(self.data.get("title") or "")

    def to_data(self) -> dict[str, Any]:
        return copy.deepcopy(self.data)

    def to_dict(self) -> dict[str, Any]:
        node = copy.deepcopy(self.raw)
        if isinstance(node.get("data"), dict):
            node["data"] = self.to_data()
        return node


@dataclass
class StartNode(Node):
    """Start node; its variables drive the default test inputs."""

    variables: list[Variable] = field(default_factory=list)

    def required_variables(self) -> list[Variable]:
        return [v for v in self.variables if v.required]


@dataclass
class PromptNode(Node):
    """LLM node with a chat-style prompt template.

    `params` holds the payload minus `prompt_template`; `template_position`
    remembers where `prompt_template` sat among the payload keys.
    """

    turns: list[PromptTurn] = field(default_factory=list)
    params: dict[str, Any] = field(default_factory=dict)
    template_position: int | None = None

    @property
    def title(self) -> str:
        return str(self.params.get("title") or "")

    def to_data(self) -> dict[str, Any]:
        template = [turn.to_dict() for turn in self.turns]
        items = list(copy.deepcopy(self.params).items())
        position = len(items) if self.template_position is None else self.template_position
        items.insert(min(position, len(items)), ("prompt_template", template))
        return dict(items)


def _build_node(raw: Any, index: int) -> Node:
    if not isinstance(raw, dict):
        raise DocumentError(f"Node #{index} is not a mapping")
    node_id = raw.get("id")
    if node_id is None or node_id == "":
        raise DocumentError(f"Node #{index} has no id")
    node_id = str(node_id)
    data = raw.get("data") or {}
    if not isinstance(data, dict):
        raise DocumentError(f"Node {node_id} has a non-mapping data payload")
    kind = str(data.get("type", ""))

    if kind == NodeKind.START:
        variables = [
            Variable.from_dict(v) for v in data.get("variables") or [] if isinstance(v, dict)
        ]
        return StartNode(id=node_id, kind=kind, raw=raw, variables=variables)

    template = data.get("prompt_template")
    if kind == NodeKind.LLM and isinstance(template, list):
        keys = list(data.keys())
        return PromptNode(
            id=node_id,
            kind=kind,
            raw=raw,
            turns=[PromptTurn.from_dict(t) for t in template if isinstance(t, dict)],
            params={k: v for k, v in data.items() if k != "prompt_template"},
            template_position=keys.index("prompt_template"),
        )
    if kind == NodeKind.LLM:
        logger.debug(f"LLM node {node_id} has no chat prompt template; kept as-is")

    return Node(id=node_id, kind=kind, raw=raw)


@dataclass
class Document:
    """Decoded DSL document.

    Attributes:
        tree: Full decoded mapping
        nodes: Workflow nodes in graph order (empty for apps without a graph)
    """

    tree: dict[str, Any]
    nodes: list[Node] = field(default_factory=list)

    @property
    def app_name(self) -> str:
        app = self.tree.get("app") or {}
        return str(app.get("name") or "")

    @property
    def app_mode(self) -> str:
        app = self.tree.get("app") or {}
        return str(app.get("mode") or "")

    def has_graph(self) -> bool:
        return isinstance(_graph_nodes(self.tree), list)

    def start_node(self) -> StartNode | None:
        for node in self.nodes:
            if isinstance(node, StartNode):
                return node
        return None

    def prompt_nodes(self) -> list[PromptNode]:
        return [node for node in self.nodes if isinstance(node, PromptNode)]

    def node(self, node_id: str) -> Node | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def copy(self) -> "Document":
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        tree = copy.deepcopy(self.tree)
        if self.has_graph():
            tree["workflow"]["graph"]["nodes"] = [node.to_dict() for node in self.nodes]
        return tree


def _graph_nodes(tree: dict[str, Any]) -> Any:
    workflow = tree.get("workflow")
    if not isinstance(workflow, dict):
        return None
    graph = workflow.get("graph")
    if not isinstance(graph, dict):
        return None
    return graph.get("nodes")


class _DocumentLoader(yaml.SafeLoader):
    """Safe loader that keeps dates and timestamps as plain strings."""


_DocumentLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != TIMESTAMP_TAG]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


class _DocumentDumper(yaml.SafeDumper):
    """Safe dumper writing multi-line strings as literal blocks."""


def _represent_str(dumper: yaml.SafeDumper, value: str) -> yaml.ScalarNode:
    if "\n" in value:
        return dumper.represent_scalar("tag:yaml.org,2002:str", value, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", value)


_DocumentDumper.add_representer(str, _represent_str)


def decode(text: str) -> Document:
    """Decode DSL text into a Document.

    Unquoted dates and timestamps are kept as strings so every payload stays
    JSON-serializable.

    Raises:
        DocumentError: If the text is not a YAML mapping or node ids repeat
    """
    try:
        tree = yaml.load(text, Loader=_DocumentLoader)
    except yaml.YAMLError as e:
        raise DocumentError(f"Invalid DSL YAML: {e}") from e

    if not isinstance(tree, dict):
        raise DocumentError("DSL document must be a mapping")

    raw_nodes = _graph_nodes(tree)
    if raw_nodes is None:
        return Document(tree=tree)
    if not isinstance(raw_nodes, list):
        raise DocumentError("workflow.graph.nodes must be a list")

    nodes = [_build_node(raw, index) for index, raw in enumerate(raw_nodes)]

    seen: set[str] = set()
    for node in nodes:
        if node.id in seen:
            raise DocumentError(f"Duplicate node id: {node.id}")
        seen.add(node.id)

    return Document(tree=tree, nodes=nodes)


def encode(document: Document) -> str:
    """Encode a Document as DSL text."""
    return yaml.dump(
        document.to_dict(),
        Dumper=_DocumentDumper,
        allow_unicode=True,
        sort_keys=False,
        default_flow_style=False,
        width=120,
    )


def load_document(path: Path) -> Document:
    """Read and decode a DSL file.

    Raises:
        DocumentError: If the file is missing or invalid
    """
    if not path.exists():
        raise DocumentError(f"DSL file not found: {path}")
    return decode(path.read_text(encoding="utf-8"))


def save_document(path: Path, document: Document) -> None:
    """Encode a Document and write it to path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(encode(document), encoding="utf-8")
    logger.debug(f"Wrote DSL document to {path}")


__all__ = [
    "Document",
    "Node",
    "NodeKind",
    "PromptNode",
    "PromptTurn",
    "StartNode",
    "Variable",
    "VariableType",
    "decode",
    "encode",
    "load_document",
    "save_document",
]
