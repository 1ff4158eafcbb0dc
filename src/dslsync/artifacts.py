"""Split/merge between a DSL document and an application's artifact set.

Directory contract (one application):

    <app_dir>/
      DSL/main.yml                  the document
      prompts/<name>.<role>.md      one file per (prompt node, role)
      prompts/<name>.json           the node's other parameters
      test/inputs.json              default inputs for required variables
      test/inputs/1/<var>.txt       placeholder per required variable

`<name>` is derived from the node title by safe_name(). Nodes whose names
collide are disambiguated with their node id; split and merge both go
through artifact_names() so the mapping is the same in both directions.
"""

import dataclasses
import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dslsync.dsl_codec import Document, PromptNode, PromptTurn, Variable, VariableType
from dslsync.exceptions import ArtifactError, DocumentError

logger = logging.getLogger(__name__)

PROMPT_SUFFIX = ".md"
SIDECAR_SUFFIX = ".json"
TURN_EXTRAS_KEY = "_turn_extras"
DEFAULT_INPUT_SET = "1"

ROLE_PRIORITY = {"system": 0, "user": 1, "assistant": 2}
_OTHER_ROLE_PRIORITY = len(ROLE_PRIORITY)

# Word characters are ASCII-only here; CJK ideographs are kept explicitly
_UNSAFE_CHARS = re.compile(r"[^\w\u4e00-\u9fa5-]+", re.ASCII)


def safe_name(name: str) -> str:
    """Turn a node title into a file name stem.

    Each run of characters other than ASCII word characters, CJK ideographs
    and hyphens becomes a single underscore.

    Examples:
        >>> safe_name("Draft reply (v2)")
        'Draft_reply_v2_'
        >>> safe_name("生成摘要-final")
        '生成摘要-final'
    """
    return _UNSAFE_CHARS.sub("_", name)


def artifact_names(nodes: list[PromptNode]) -> dict[str, str]:
    """Assign every prompt node a unique artifact name.

    The first node (in document order) to claim a name keeps it; later nodes
    with the same name get their node id appended.

    Returns:
        Mapping of node id -> artifact name
    """
    names: dict[str, str] = {}
    taken: set[str] = set()
    for node in nodes:
        base = safe_name(node.title or f"llm_{node.id}")
        name = base
        if name in taken:
            name = f"{base}_{safe_name(node.id)}"
            logger.warning(
                f"Prompt node {node.id} shares the name '{base}' with another node; "
                f"its artifacts are named '{name}'"
            )
        taken.add(name)
        names[node.id] = name
    return names


@dataclass(frozen=True)
class ArtifactLayout:
    """File locations of one application's artifact set."""

    app_dir: Path

    @property
    def dsl_path(self) -> Path:
        return self.app_dir / "DSL" / "main.yml"

    @property
    def prompts_dir(self) -> Path:
        return self.app_dir / "prompts"

    @property
    def test_dir(self) -> Path:
        return self.app_dir / "test"

    @property
    def inputs_file(self) -> Path:
        return self.test_dir / "inputs.json"

    def input_set_dir(self, input_set: str = DEFAULT_INPUT_SET) -> Path:
        return self.test_dir / "inputs" / input_set

    def prompt_path(self, name: str, role: str) -> Path:
        return self.prompts_dir / f"{name}.{role}{PROMPT_SUFFIX}"

    def sidecar_path(self, name: str) -> Path:
        return self.prompts_dir / f"{name}{SIDECAR_SUFFIX}"

    def prompt_files(self, name: str) -> dict[str, Path]:
        """Find the prompt files of one node, keyed by role, ordered by file name."""
        if not self.prompts_dir.is_dir():
            return {}
        prefix = f"{name}."
        found: dict[str, Path] = {}
        for path in sorted(self.prompts_dir.iterdir()):
            file_name = path.name
            if not path.is_file() or not file_name.startswith(prefix):
                continue
            if not file_name.endswith(PROMPT_SUFFIX):
                continue
            role = file_name[len(prefix) : -len(PROMPT_SUFFIX)]
            if not role or "." in role:
                continue
            found[role] = path
        return found


@dataclass
class SplitResult:
    """What split() wrote."""

    inputs: dict[str, Any] = field(default_factory=dict)
    placeholders_created: list[Path] = field(default_factory=list)
    prompt_nodes: dict[str, str] = field(default_factory=dict)  # node id -> artifact name
    files_written: list[Path] = field(default_factory=list)


def default_inputs(variables: list[Variable]) -> dict[str, Any]:
    """Build the default-inputs map for the required variables.

    number -> 0, text-input -> "", anything else -> None.
    """
    inputs: dict[str, Any] = {}
    for variable in variables:
        if not variable.required:
            continue
        if variable.type == VariableType.NUMBER:
            inputs[variable.name] = 0
        elif variable.type == VariableType.TEXT_INPUT:
            inputs[variable.name] = ""
        else:
            inputs[variable.name] = None
    return inputs


def write_input_scaffolding(
    document: Document, layout: ArtifactLayout
) -> tuple[dict[str, Any], list[Path]]:
    """Write test/inputs.json and the per-variable placeholder files.

    inputs.json is always rewritten; placeholder files that already exist
    are left untouched.

    Returns:
        (default inputs, placeholder files created by this call)
    """
    start = document.start_node()
    variables = start.required_variables() if start else []
    inputs = default_inputs(variables)

    layout.test_dir.mkdir(parents=True, exist_ok=True)
    layout.inputs_file.write_text(
        json.dumps(inputs, indent=2, ensure_ascii=False), encoding="utf-8"
    )
    logger.info(f"Generated {layout.inputs_file.relative_to(layout.app_dir)}: {inputs}")

    input_dir = layout.input_set_dir()
    input_dir.mkdir(parents=True, exist_ok=True)
    created: list[Path] = []
    for variable in variables:
        placeholder = input_dir / f"{variable.name}.txt"
        if placeholder.exists():
            continue
        placeholder.write_text("", encoding="utf-8")
        created.append(placeholder)
    return inputs, created


def _write_sidecar(path: Path, node: PromptNode) -> None:
    sidecar = dict(node.params)
    turn_extras = {turn.role: turn.extra for turn in node.turns if turn.extra}
    if turn_extras:
        sidecar[TURN_EXTRAS_KEY] = turn_extras
    try:
        content = json.dumps(sidecar, indent=2, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise DocumentError(
            f"Node {node.id} has parameters that cannot be saved as JSON: {e}"
        ) from e
    path.write_text(content, encoding="utf-8")


def _read_prompt(path: Path) -> str:
    # newline="" keeps CRLF and bare CR as written
    with open(path, encoding="utf-8", newline="") as f:
        return f.read()


def split(document: Document, app_dir: Path) -> SplitResult:
    """Write the artifact set for a document.

    Args:
        document: Decoded DSL document
        app_dir: Application directory

    Returns:
        SplitResult describing the written files

    Raises:
        DocumentError: If a prompt node carries parameters JSON cannot hold
    """
    layout = ArtifactLayout(app_dir)
    result = SplitResult()
    result.inputs, result.placeholders_created = write_input_scaffolding(document, layout)

    prompt_nodes = document.prompt_nodes()
    if not prompt_nodes:
        logger.info("No llm nodes found")
        return result

    layout.prompts_dir.mkdir(parents=True, exist_ok=True)
    names = artifact_names(prompt_nodes)
    for node in prompt_nodes:
        name = names[node.id]
        roles_seen: set[str] = set()
        for turn in node.turns:
            if turn.role in roles_seen:
                logger.warning(
                    f"{name}: role '{turn.role}' appears more than once; "
                    "only the last turn with that role is kept on disk"
                )
            roles_seen.add(turn.role)
            path = layout.prompt_path(name, turn.role)
            path.write_text(turn.text, encoding="utf-8", newline="")
            result.files_written.append(path)

        sidecar = layout.sidecar_path(name)
        _write_sidecar(sidecar, node)
        result.files_written.append(sidecar)
        result.prompt_nodes[node.id] = name
        logger.info(f"Exported: {name}.[role]{PROMPT_SUFFIX}, {name}{SIDECAR_SUFFIX}")

    logger.info(f"Exported {len(result.prompt_nodes)} llm node(s)")
    return result


def _load_sidecar(layout: ArtifactLayout, name: str) -> dict[str, Any]:
    path = layout.sidecar_path(name)
    if not path.exists():
        raise ArtifactError(f"Skipping {name}: missing {path.name}")
    try:
        params = json.loads(path.read_text(encoding="utf-8"))
    except ValueError as e:
        raise ArtifactError(f"Skipping {name}: {path.name} is not valid JSON ({e})") from e
    if not isinstance(params, dict):
        raise ArtifactError(f"Skipping {name}: {path.name} must contain a JSON object")
    return params


def order_turns(turns: list[PromptTurn], previous: list[PromptTurn]) -> list[PromptTurn]:
    """Sort turns system, user, assistant, then any other role.

    Other roles keep the order they had in `previous`; roles new to the node
    follow in the order given.
    """
    previous_index = {turn.role: index for index, turn in enumerate(previous)}
    unknown = len(previous_index)

    def sort_key(item: tuple[int, PromptTurn]) -> tuple[int, int, int]:
        position, turn = item
        priority = ROLE_PRIORITY.get(turn.role, _OTHER_ROLE_PRIORITY)
        if priority < _OTHER_ROLE_PRIORITY:
            return priority, 0, position
        return priority, previous_index.get(turn.role, unknown), position

    return [turn for _, turn in sorted(enumerate(turns), key=sort_key)]


def merge(document: Document, app_dir: Path) -> Document:
    """Rebuild a document's prompt nodes from the artifact set.

    Nodes without a sidecar file are skipped with a warning and keep their
    current state. The input document is not modified.

    Args:
        document: Last known DSL document
        app_dir: Application directory

    Returns:
        New document with merged prompt nodes
    """
    layout = ArtifactLayout(app_dir)
    merged = document.copy()
    names = artifact_names(merged.prompt_nodes())
    merged_count = 0

    for index, node in enumerate(merged.nodes):
        if not isinstance(node, PromptNode):
            continue
        name = names[node.id]
        try:
            params = _load_sidecar(layout, name)
        except ArtifactError as e:
            logger.warning(str(e))
            continue

        turn_extras = params.pop(TURN_EXTRAS_KEY, None) or {}
        turns = [
            PromptTurn(
                role=role,
                text=_read_prompt(path),
                extra=dict(turn_extras.get(role) or {}),
            )
            for role, path in layout.prompt_files(name).items()
        ]
        merged.nodes[index] = dataclasses.replace(
            node,
            turns=order_turns(turns, node.turns),
            params=params,
        )
        merged_count += 1
        logger.info(f"Merged: {name}")

    logger.info(f"Merged {merged_count} llm node(s)")
    return merged


__all__ = [
    "ArtifactLayout",
    "SplitResult",
    "artifact_names",
    "default_inputs",
    "merge",
    "order_turns",
    "safe_name",
    "split",
    "write_input_scaffolding",
]
