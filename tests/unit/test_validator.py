"""
Unit tests for QueryValidator.

Tests dangerous operator blocking, query depth limits, regex limits
and pipeline validation.
"""

import pytest

from mdb_tenant.exceptions import ErrorKind, QueryValidationError, ValidationError
from mdb_tenant.query import QueryValidator


@pytest.mark.unit
class TestValidateFilter:
    """Test filter validation."""

    def test_empty_filters_are_allowed(self):
        validator = QueryValidator()
        validator.validate_filter(None)
        validator.validate_filter({})

    @pytest.mark.parametrize("operator", ["$where", "$eval", "$function", "$accumulator"])
    def test_dangerous_operators_are_blocked(self, operator):
        validator = QueryValidator()

        with pytest.raises(QueryValidationError, match="Dangerous operator") as exc_info:
            validator.validate_filter({operator: "code"})

        assert exc_info.value.operator == operator

    def test_dangerous_operator_inside_array(self):
        validator = QueryValidator()
        query = {"$or": [{"status": "open"}, {"$where": "true"}]}

        with pytest.raises(QueryValidationError) as exc_info:
            validator.validate_filter(query)

        assert exc_info.value.path == "$or[1].$where"

    def test_extra_dangerous_operators(self):
        validator = QueryValidator(dangerous_operators={"$lookup"})

        with pytest.raises(QueryValidationError):
            validator.validate_filter({"$lookup": {}})

    def test_safe_operators(self):
        validator = QueryValidator()
        validator.validate_filter({"age": {"$gt": 18}})
        validator.validate_filter({"$and": [{"status": "open"}, {"tags": {"$in": ["a"]}}]})

    def test_max_depth(self):
        validator = QueryValidator(max_depth=2)
        query = {"a": {"b": {"c": {"d": 1}}}}

        with pytest.raises(QueryValidationError, match="nesting depth"):
            validator.validate_filter(query)

    def test_non_dict_filter(self):
        with pytest.raises(QueryValidationError, match="must be a dictionary"):
            QueryValidator().validate_filter(["status"])


@pytest.mark.unit
class TestValidatePipeline:
    """Test pipeline validation."""

    def test_valid_pipeline(self):
        QueryValidator().validate_pipeline(
            [{"$match": {"status": "open"}}, {"$group": {"_id": "$status", "n": {"$sum": 1}}}]
        )

    def test_too_many_stages(self):
        validator = QueryValidator(max_pipeline_stages=2)

        with pytest.raises(QueryValidationError, match="maximum stages"):
            validator.validate_pipeline([{"$match": {}}] * 3)

    def test_stage_must_be_dict(self):
        with pytest.raises(QueryValidationError, match="must be a dictionary"):
            QueryValidator().validate_pipeline([{"$match": {}}, "$limit"])

    def test_dangerous_operator_in_stage(self):
        with pytest.raises(QueryValidationError) as exc_info:
            QueryValidator().validate_pipeline(
                [{"$group": {"_id": None, "x": {"$accumulator": {}}}}]
            )

        assert exc_info.value.context["query_type"] == "pipeline"

    def test_regex_inside_match_is_checked(self):
        validator = QueryValidator(max_regex_length=5)

        with pytest.raises(QueryValidationError, match="maximum length"):
            validator.validate_pipeline([{"$match": {"name": {"$regex": "abcdefgh"}}}])


@pytest.mark.unit
class TestValidateRegexAndSort:
    def test_complex_regex(self):
        validator = QueryValidator(max_regex_complexity=3)

        with pytest.raises(QueryValidationError, match="complexity"):
            validator.validate_regex("(a+)+(b*)*|c?")

    def test_invalid_regex(self):
        with pytest.raises(QueryValidationError, match="Invalid regex"):
            QueryValidator().validate_regex("[a-")

    def test_non_string_regex_is_ignored(self):
        QueryValidator().validate_regex(None)

    def test_sort_width(self):
        validator = QueryValidator(max_sort_fields=1)
        validator.validate_sort([("a", 1)])

        with pytest.raises(QueryValidationError, match="maximum fields"):
            validator.validate_sort({"a": 1, "b": -1})

    def test_query_validation_error_is_a_validation_error(self):
        error = QueryValidationError("bad", query_type="filter")

        assert isinstance(error, ValidationError)
        assert error.kind is ErrorKind.VALIDATION
