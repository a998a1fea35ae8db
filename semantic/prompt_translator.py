import re
import json
import logging
from typing import Optional, Sequence

from semantic.errors import MalformedModelOutput, ValidationError
from semantic.schema import SchemaRegistry
from semantic.translator import QueryTranslator
from semantic.types import PinnedItem, QuerySpec

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)

RESPONSE_REMINDER = "Remember: Respond with ONLY valid JSON, no markdown."


def parse_model_output(text: str) -> QuerySpec:
    """
    Extract a QuerySpec from raw model text.

    Markdown fences are removed and the JSON object is taken from the first
    '{' to the last '}'. Anything that does not yield an object with a
    `table` and a non-empty `measures` list raises MalformedModelOutput.
    """
    raw_text = text or ""
    cleaned = _FENCE_RE.sub("", raw_text)
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end < start:
        raise MalformedModelOutput(raw_text, "no JSON object found")

    try:
        data = json.loads(cleaned[start:end + 1])
    except ValueError as e:
        raise MalformedModelOutput(raw_text, f"invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedModelOutput(raw_text, "reply is not a JSON object")
    if not data.get("table") or not isinstance(data["table"], str):
        raise MalformedModelOutput(raw_text, "missing table")
    measures = data.get("measures")
    if not isinstance(measures, list) or not measures:
        raise MalformedModelOutput(raw_text, "measures must be a non-empty list")
    for key in ("dimensions", "filters"):
        value = data.get(key)
        if value is not None and not isinstance(value, list):
            raise MalformedModelOutput(raw_text, f"{key} must be a list")

    return QuerySpec(
        table=data["table"],
        measures=[str(m) for m in measures],
        dimensions=[str(d) for d in data.get("dimensions") or []],
        filters=[str(f) for f in data.get("filters") or []],
        explanation=str(data.get("explanation") or ""),
    )


class SemanticPromptTranslator:
    """
    Natural language to QuerySpec through the local model.

    The model only ever chooses names. Whatever it returns is validated
    against the registry before anyone builds SQL from it.
    """

    def __init__(self, llm, registry: SchemaRegistry, translator: Optional[QueryTranslator] = None,
                 temperature: float = 0.0, max_tokens: int = 300, correction_attempts: int = 0):
        self.llm = llm
        self.registry = registry
        self.translator = translator or QueryTranslator(registry)
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.correction_attempts = correction_attempts
        self.system_prompt = self.build_system_prompt()

    def build_system_prompt(self) -> str:
        sections = []
        for model in self.registry.models():
            dims = []
            for dim in model.dimensions.values():
                line = f"  - {dim.name}: {dim.description}"
                if dim.values and len(dim.values) <= 8:
                    line += f" (values: {', '.join(dim.values)})"
                dims.append(line)
            measures = [f"  - {m.name}: {m.description}" for m in model.measures.values()]
            sections.append(
                f"# Table: {model.key}\n"
                f"# {model.description}\n"
                f"Dimensions:\n" + "\n".join(dims) + "\n"
                f"Measures:\n" + "\n".join(measures)
            )
        first = self.registry.models()[0]
        example_measure = first.measure_names()[0]
        example_dim = first.dimension_names()[0]

        return f"""### You are a semantic query planner for an analytics warehouse.
### Task: Turn the user's question into a JSON query spec that names a table, its dimensions and its measures.
### Only use names listed below. Never invent dimensions or measures.

{chr(10).join(sections)}

### Response format (JSON only, no markdown, no commentary):
{{"table": "<table>", "dimensions": ["<dimension>", ...], "measures": ["<measure>", ...], "filters": ["<sql predicate>", ...], "explanation": "<one sentence>"}}

### Guidelines:
- "measures" must contain at least one measure of the chosen table
- "dimensions" may be empty for a single total
- Filters are plain SQL predicates on the table's columns, prefixed with "_." (e.g. "_.{example_dim} IS NOT NULL")
- Use a time dimension when the question asks for a trend or "over time"

### Example:
Question: total {example_measure.replace('_', ' ')} by {example_dim.replace('_', ' ')}
{{"table": "{first.key}", "dimensions": ["{example_dim}"], "measures": ["{example_measure}"], "filters": [], "explanation": "{example_measure} grouped by {example_dim}"}}"""

    def _history_context(self, history: Sequence[PinnedItem]) -> str:
        if not history:
            return ""
        lines = [f'- Goal: "{item.prompt}"\n  SQL: {item.sql}' for item in list(history)[:5] if item.prompt]
        if not lines:
            return ""
        return "\n\n### Relevant analytical history (successful patterns):\n" + "\n".join(lines)

    def _complete(self, user_prompt: str) -> str:
        return self.llm.complete(
            self.system_prompt,
            user_prompt,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )

    def _correction_prompt(self, prompt: str, error: ValidationError) -> str:
        return (
            f"Your previous answer used names that do not exist: {', '.join(error.unknown)}.\n"
            f"Valid {error.kind}s: {', '.join(error.allowed)}.\n"
            f'ORIGINAL REQUEST: "{prompt}"\n\n{RESPONSE_REMINDER}'
        )

    def translate(self, prompt: str, history: Optional[Sequence[PinnedItem]] = None) -> QuerySpec:
        """Ask the model for a spec and validate it. Raises MalformedModelOutput or ValidationError."""
        user_prompt = f"{prompt}{self._history_context(history or [])}\n\n{RESPONSE_REMINDER}"
        text = self._complete(user_prompt)
        spec = parse_model_output(text)

        attempt = 0
        while True:
            try:
                self.translator.validate(spec)
                return spec
            except ValidationError as e:
                if attempt >= self.correction_attempts:
                    raise
                attempt += 1
                logger.warning(f"Model reply failed validation ({e}); correction attempt {attempt}/{self.correction_attempts}")
                # malformed replies to a correction are not retried
                spec = parse_model_output(self._complete(self._correction_prompt(prompt, e)))
