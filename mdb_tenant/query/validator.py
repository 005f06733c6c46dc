"""
Safety checks for caller-provided queries and aggregation pipelines.

Filters produced by the translator are safe by construction. Pipelines
handed to ``Repository.aggregate`` and the orderings callers stack on a
request are not, so the repository runs them through ``QueryValidator``
before they reach the server.
"""

import logging
import re
from typing import Any

from ..constants import (
    DANGEROUS_OPERATORS,
    MAX_PIPELINE_STAGES,
    MAX_QUERY_DEPTH,
    MAX_REGEX_COMPLEXITY,
    MAX_REGEX_LENGTH,
    MAX_SORT_FIELDS,
)
from ..exceptions import QueryValidationError

logger = logging.getLogger(__name__)

# quantifiers, alternation, a group inside a group, lookarounds
_REGEX_HAZARDS = tuple(
    re.compile(hazard) for hazard in (r"[*+?{]", r"\|", r"\([^)]*\([^)]*\)", r"\(\?[=!<>]")
)


def _require(condition: bool, message: str, query_type: str, **details: Any) -> None:
    if not condition:
        raise QueryValidationError(message, query_type=query_type, **details)


class QueryValidator:
    """
    Rejects server-side JavaScript operators, deep nesting, long pipelines,
    wide sorts and regexes that are too long or too prone to backtracking.

    ``dangerous_operators`` adds to the default block list, it never
    replaces it.
    """

    def __init__(
        self,
        max_depth: int = MAX_QUERY_DEPTH,
        max_pipeline_stages: int = MAX_PIPELINE_STAGES,
        max_regex_length: int = MAX_REGEX_LENGTH,
        max_regex_complexity: int = MAX_REGEX_COMPLEXITY,
        max_sort_fields: int = MAX_SORT_FIELDS,
        dangerous_operators: set[str] | None = None,
    ):
        self.max_depth = max_depth
        self.max_pipeline_stages = max_pipeline_stages
        self.max_regex_length = max_regex_length
        self.max_regex_complexity = max_regex_complexity
        self.max_sort_fields = max_sort_fields
        self.blocked_operators = frozenset(DANGEROUS_OPERATORS) | frozenset(
            dangerous_operators or ()
        )

    def validate_filter(self, query: dict[str, Any] | None, path: str = "") -> None:
        if not query:
            return
        _require(
            isinstance(query, dict),
            f"Query filter must be a dictionary, got {type(query).__name__}",
            "filter",
            path=path,
        )
        self._scan(query, path, "filter")

    def validate_pipeline(self, pipeline: list[dict[str, Any]] | None) -> None:
        """
        Check an aggregation pipeline stage by stage.

        Raises:
            QueryValidationError: On a non-list pipeline, too many stages, a
                non-dict stage, or anything ``validate_filter`` rejects
        """
        if not pipeline:
            return
        _require(
            isinstance(pipeline, list),
            f"Aggregation pipeline must be a list, got {type(pipeline).__name__}",
            "pipeline",
        )
        stages = len(pipeline)
        _require(
            stages <= self.max_pipeline_stages,
            f"Aggregation pipeline exceeds maximum stages: {stages} > {self.max_pipeline_stages}",
            "pipeline",
            context={"stages": stages, "max_stages": self.max_pipeline_stages},
        )
        for index, stage in enumerate(pipeline):
            stage_path = f"$[{index}]"
            _require(
                isinstance(stage, dict),
                f"Pipeline stage {index} must be a dictionary, got {type(stage).__name__}",
                "pipeline",
                path=stage_path,
            )
            self._scan(stage, stage_path, "pipeline")

    def validate_regex(self, pattern: Any, path: str = "") -> None:
        """Length, complexity score and compilability of a ``$regex`` value."""
        if not isinstance(pattern, str):
            return
        length = len(pattern)
        _require(
            length <= self.max_regex_length,
            f"Regex pattern exceeds maximum length: {length} > {self.max_regex_length}",
            "regex",
            path=path,
            context={"length": length, "max_length": self.max_regex_length},
        )
        score = self.regex_complexity(pattern)
        _require(
            score <= self.max_regex_complexity,
            f"Regex pattern exceeds maximum complexity: {score} > {self.max_regex_complexity}",
            "regex",
            path=path,
            context={"complexity": score, "max_complexity": self.max_regex_complexity},
        )
        try:
            re.compile(pattern)
        except re.error as e:
            raise QueryValidationError(
                f"Invalid regex pattern: {e}", query_type="regex", path=path
            ) from e

    def validate_sort(self, sort: Any) -> None:
        """``sort`` is either ``[(field, direction), ...]`` or a dict."""
        width = len(sort or ())
        _require(
            width <= self.max_sort_fields,
            f"Sort specification exceeds maximum fields: {width} > {self.max_sort_fields}",
            "sort",
            context={"fields": width, "max_fields": self.max_sort_fields},
        )

    @staticmethod
    def regex_complexity(pattern: str) -> int:
        return sum(len(hazard.findall(pattern)) for hazard in _REGEX_HAZARDS)

    def _scan(self, root: dict[str, Any], path: str, query_type: str) -> None:
        pending = [(root, path, 0)]
        while pending:
            node, node_path, depth = pending.pop()
            _require(
                depth <= self.max_depth,
                f"Query exceeds maximum nesting depth: {depth} > {self.max_depth}",
                query_type,
                path=node_path,
                context={"depth": depth, "max_depth": self.max_depth},
            )
            for key, value in node.items():
                key_path = f"{node_path}.{key}" if node_path else key
                if key in self.blocked_operators:
                    logger.warning(f"Blocked operator '{key}' at '{key_path}'")
                    raise QueryValidationError(
                        f"Dangerous operator '{key}' is not allowed. Found at path: {key_path}",
                        query_type=query_type,
                        operator=key,
                        path=key_path,
                    )
                if key == "$regex":
                    self.validate_regex(value, key_path)
                if isinstance(value, dict):
                    pending.append((value, key_path, depth + 1))
                elif isinstance(value, list):
                    pending.extend(
                        (item, f"{key_path}[{index}]", depth + 1)
                        for index, item in enumerate(value)
                        if isinstance(item, dict)
                    )
