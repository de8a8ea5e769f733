"""Resolution of references inside block inputs.

Supported syntax:
    {{NAME}}              decrypted environment variable
    <variable.name>       workflow variable (typed)
    <loop.index>          current loop iteration (also currentItem, items)
    <blockname.a.b>       output field of another block; `start` is the starter
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from app.executor.exceptions import ReferenceResolutionError

if TYPE_CHECKING:
    from app.executor.context import ExecutionContext
    from app.models import SerializedBlock, SerializedWorkflow

logger = logging.getLogger(__name__)

ENV_VAR_PATTERN = re.compile(r"\{\{([^{}]+)\}\}")
REFERENCE_PATTERN = re.compile(r"<([a-zA-Z0-9_\-][a-zA-Z0-9_\- ]*(?:\.[a-zA-Z0-9_\-]+)*)>")
# Both syntaxes in one pass so substituted values are never re-parsed
TOKEN_PATTERN = re.compile(rf"{ENV_VAR_PATTERN.pattern}|{REFERENCE_PATTERN.pattern}")

STARTER_ALIAS = "start"
LOOP_ALIAS = "loop"
VARIABLE_ALIAS = "variable"
LOOP_FIELDS = ("index", "currentItem", "items")

# Params that are resolved by their handler instead of up front
DEFERRED_PARAMS = {"condition": {"conditions"}}


def normalize_name(name: str) -> str:
    """Normalize a block or variable name for reference matching."""
    return name.replace(" ", "").lower()


def has_env_reference(value: Any) -> bool:
    """Whether a raw param value contains a `{{NAME}}` reference anywhere."""
    if isinstance(value, str):
        return ENV_VAR_PATTERN.search(value) is not None
    if isinstance(value, dict):
        return any(has_env_reference(v) for v in value.values())
    if isinstance(value, list):
        return any(has_env_reference(v) for v in value)
    return False


class InputResolver:
    """Resolves env vars, variables, loop fields and block references."""

    def __init__(
        self,
        workflow: SerializedWorkflow,
        context: ExecutionContext,
        block_loops: Mapping[str, str] | None = None,
    ):
        """Initialize the resolver.

        Args:
            workflow: The workflow being executed.
            context: The run context holding block outputs and loop states.
            block_loops: Block ID to the ID of the loop containing it.
        """
        self._context = context
        self._block_loops = dict(block_loops or {})
        self._blocks = {block.id: block for block in workflow.blocks}
        self._name_index: dict[str, str] = {}
        for block in workflow.blocks:
            self._name_index[block.id.lower()] = block.id
            if block.metadata.name:
                self._name_index[normalize_name(block.metadata.name)] = block.id
            if block.block_type == "starter":
                self._name_index[STARTER_ALIAS] = block.id

    def resolve_inputs(self, block: SerializedBlock, params: dict[str, Any]) -> dict[str, Any]:
        """Resolve every param of a block, except those its handler resolves."""
        deferred = DEFERRED_PARAMS.get(block.block_type, set())
        return {
            key: value if key in deferred else self.resolve_value(value, block)
            for key, value in params.items()
        }

    def resolve_value(self, value: Any, block: SerializedBlock, literal: bool = False) -> Any:
        """Resolve references in a value, recursing into dicts and lists.

        Args:
            value: The raw value.
            block: The block the value belongs to (for loop context).
            literal: Render interpolated values as Python literals, used for
                condition expressions.
        """
        if isinstance(value, str):
            return self._resolve_string(value, block, literal)
        if isinstance(value, dict):
            return {k: self.resolve_value(v, block, literal) for k, v in value.items()}
        if isinstance(value, list):
            return [self.resolve_value(v, block, literal) for v in value]
        return value

    def _resolve_string(self, text: str, block: SerializedBlock, literal: bool) -> Any:
        stripped = text.strip()

        # A string that is exactly one reference keeps the referenced type
        whole = REFERENCE_PATTERN.fullmatch(stripped)
        if whole and not literal:
            found, resolved = self._resolve_reference(whole.group(1), block)
            if found:
                return resolved

        whole_env = ENV_VAR_PATTERN.fullmatch(stripped)
        if whole_env and not literal:
            return self._env_value(whole_env.group(1))

        def replace(match: re.Match[str]) -> str:
            env_name, reference = match.group(1), match.group(2)
            if env_name is not None:
                return self._format(self._env_value(env_name), literal)
            found, resolved = self._resolve_reference(reference, block)
            if not found:
                return match.group(0)
            return self._format(resolved, literal)

        return TOKEN_PATTERN.sub(replace, text)

    def _resolve_reference(self, reference: str, block: SerializedBlock) -> tuple[bool, Any]:
        """Resolve `<...>` content. Returns (found, value); not found means leave as text."""
        head, _, path = reference.partition(".")
        head_key = normalize_name(head)

        if head_key == LOOP_ALIAS and path in LOOP_FIELDS:
            return True, self._loop_value(path, block)

        if head_key == VARIABLE_ALIAS and path:
            name, _, rest = path.partition(".")
            value = self._variable_value(name)
            return True, self._walk(value, rest, f"variable.{name}") if rest else value

        block_id = self._name_index.get(head_key) or self._name_index.get(head.lower())
        if block_id is None:
            if not path:
                return False, None
            raise ReferenceResolutionError(f"Block reference not found: \"{head}\"")

        if block_id not in self._context.block_states:
            # Blocks on an inactive branch resolve to an empty value
            return True, ""

        output = self._context.block_output(block_id)
        if not path:
            return True, output
        source_name = self._blocks[block_id].display_name
        return True, self._walk(output, path, source_name)

    def _walk(self, value: Any, path: str, source_name: str) -> Any:
        current = value
        for segment in path.split("."):
            if isinstance(current, Mapping) and segment in current:
                current = current[segment]
            elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
                current = current[int(segment)]
            else:
                raise ReferenceResolutionError(
                    f"No value found at path \"{path}\" in block \"{source_name}\""
                )
        return current

    def _loop_value(self, field: str, block: SerializedBlock) -> Any:
        loop_id = self._block_loops.get(block.id)
        if loop_id is None:
            raise ReferenceResolutionError(
                f"<loop.{field}> used outside of a loop in block \"{block.display_name}\""
            )
        state = self._context.loop_states[loop_id]
        if field == "index":
            return state.iteration
        if field == "currentItem":
            return state.current_item
        return state.items

    def _variable_value(self, name: str) -> Any:
        wanted = normalize_name(name)
        for variable in self._context.workflow_variables.values():
            data = variable if isinstance(variable, Mapping) else variable.model_dump()
            if normalize_name(str(data.get("name", ""))) == wanted:
                return _typed_variable_value(data.get("type", "string"), data.get("value"))
        raise ReferenceResolutionError(f"Variable \"{name}\" not found")

    def _env_value(self, name: str) -> str:
        key = name.strip()
        if key not in self._context.environment_variables:
            raise ReferenceResolutionError(f"Environment variable \"{key}\" was not found")
        return self._context.environment_variables[key]

    @staticmethod
    def _format(value: Any, literal: bool) -> str:
        if literal:
            return repr(value)
        if value is None:
            return ""
        if isinstance(value, str):
            return value
        return json.dumps(value)


def _typed_variable_value(var_type: str, value: Any) -> Any:
    """Convert a stored variable value to its declared type."""
    if var_type == "plain" or not isinstance(value, str):
        if var_type == "boolean" and not isinstance(value, bool):
            return bool(value)
        return value

    if var_type == "string":
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError:
            return value
        return decoded if isinstance(decoded, str) else value

    if var_type == "number":
        try:
            number = float(value)
        except ValueError as e:
            raise ReferenceResolutionError(f"Variable value is not a number: {value}") from e
        return int(number) if number.is_integer() else number

    if var_type == "boolean":
        return value.strip().lower() == "true"

    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise ReferenceResolutionError(f"Variable value is not valid JSON: {e}") from e
