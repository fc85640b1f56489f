"""Tests for FieldPolicy and RelationJoin."""

import pytest

from fastapi_listquery.models import AggregateKind
from fastapi_listquery.policy import FieldPolicy, RelationJoin


class TestFieldPolicy:
    def test_empty_policy(self):
        policy = FieldPolicy()
        assert policy.search_fields == ()
        assert dict(policy.sortable_fields) == {}
        assert policy.default_sort == (None, None)

    def test_default_sort_is_first_entry(self):
        policy = FieldPolicy(sortable_fields={"createdAt": "created_at", "name": "name"})
        assert policy.default_sort == ("createdAt", "created_at")

    def test_collections_are_frozen(self):
        policy = FieldPolicy(search_fields=["name"], sortable_fields={"name": "name"})
        assert policy.search_fields == ("name",)
        with pytest.raises(TypeError):
            policy.sortable_fields["email"] = "email"

    def test_source_dict_changes_do_not_leak(self):
        sortable = {"name": "name"}
        policy = FieldPolicy(sortable_fields=sortable)
        sortable["email"] = "email"
        assert "email" not in policy.sortable_fields

    def test_is_numeric(self):
        policy = FieldPolicy(numeric_fields=["age"])
        assert policy.is_numeric("age")
        assert policy.is_numeric("years", "age")
        assert not policy.is_numeric("name")

    def test_dotted_column_allowed(self):
        policy = FieldPolicy(sortable_fields={"team": "teams.name"})
        assert policy.sortable_fields["team"] == "teams.name"

    @pytest.mark.parametrize(
        "column", ["name; DROP TABLE users", "1name", "a.b.c", "", "name desc"]
    )
    def test_invalid_identifier(self, column):
        with pytest.raises(ValueError, match="Invalid column identifier"):
            FieldPolicy(sortable_fields={"name": column})

    def test_invalid_search_field(self):
        with pytest.raises(ValueError):
            FieldPolicy(search_fields=["name--"])

    def test_relation_join_from_dict(self):
        policy = FieldPolicy(
            relation_joins={"team": {"relation": "team", "foreign_key": "team_id", "table": "teams"}}
        )
        join = policy.relation_joins["team"]
        assert isinstance(join, RelationJoin)
        assert join.related_key == "id"


class TestAggregates:
    def test_normalized(self):
        policy = FieldPolicy(
            aggregates={"avg": [("ratings", "rating")], AggregateKind.COUNT: ["ratings"]}
        )
        assert policy.aggregates[AggregateKind.AVG] == (("ratings", "rating"),)
        assert policy.aggregates[AggregateKind.COUNT] == (("ratings", None),)

    def test_count_with_column(self):
        policy = FieldPolicy(aggregates={AggregateKind.COUNT: [("ratings", "id")]})
        assert policy.aggregates[AggregateKind.COUNT] == (("ratings", "id"),)

    def test_non_count_needs_column(self):
        with pytest.raises(ValueError, match="needs a column"):
            FieldPolicy(aggregates={AggregateKind.SUM: ["ratings"]})

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            FieldPolicy(aggregates={"median": [("ratings", "rating")]})


class TestRelationJoin:
    def test_valid(self):
        join = RelationJoin(relation="team", foreign_key="team_id", table="teams")
        assert join.table == "teams"

    def test_invalid_table(self):
        with pytest.raises(ValueError, match="Invalid table identifier"):
            RelationJoin(relation="team", foreign_key="team_id", table="teams t")
