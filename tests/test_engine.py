"""End-to-end tests for ListQueryEngine through a FastAPI app."""

import logging

from fastapi.testclient import TestClient
from sqlmodel import Session

from fastapi_listquery import (
    EnvelopeShape,
    FieldPolicy,
    ListEnvelope,
    ListQueryConfig,
    ListQueryEngine,
    PaginatedResponse,
)
from tests.main import HERO_POLICY, Hero


def names(response) -> list:
    return [item["name"] for item in response.json()["data"]]


class TestListEndpoint:
    """GET /heroes/ with the {data, pagination} envelope."""

    def test_default_request(self, client: TestClient):
        r = client.get("/heroes/")
        assert r.status_code == 200
        body = r.json()
        assert set(body) == {"data", "pagination"}
        assert body["pagination"] == {"page": 1, "limit": 10, "total": 5, "totalPages": 1}
        assert len(body["data"]) == 5

    def test_pagination(self, client: TestClient):
        r = client.get("/heroes/?limit=2&page=2&sortBy=name&sortOrder=asc")
        assert r.status_code == 200
        assert names(r) == ["Rusty-Man", "Spider-Boy"]
        assert r.json()["pagination"] == {"page": 2, "limit": 2, "total": 5, "totalPages": 3}

    def test_limit_is_capped(self, client: TestClient):
        r = client.get("/heroes/?limit=1000")
        assert r.json()["pagination"]["limit"] == 100

    def test_non_numeric_page_and_limit_use_defaults(self, client: TestClient):
        r = client.get("/heroes/?page=abc&limit=xyz")
        assert r.status_code == 200
        assert r.json()["pagination"]["page"] == 1
        assert r.json()["pagination"]["limit"] == 10

    def test_global_search_case_insensitive(self, client: TestClient):
        r = client.get("/heroes/?search=RUSTY")
        assert names(r) == ["Rusty-Man"]

    def test_global_search_matches_any_field(self, client: TestClient):
        r = client.get("/heroes/?search=sharp")
        assert names(r) == ["Rusty-Man"]

    def test_global_search_numeric_field(self, client: TestClient):
        r = client.get("/heroes/?search=48")
        assert r.status_code == 200
        assert names(r) == ["Rusty-Man"]

    def test_global_search_no_match(self, client: TestClient):
        r = client.get("/heroes/?search=nonexistent")
        assert r.json()["data"] == []
        assert r.json()["pagination"]["total"] == 0

    def test_column_search(self, client: TestClient):
        r = client.get("/heroes/?columnSearch[name]=alp")
        assert names(r) == ["ALPHA"]

    def test_column_search_combines_with_and(self, client: TestClient):
        r = client.get("/heroes/?columnSearch[secretName]=secret&columnSearch[name]=be")
        assert names(r) == ["beta"]

    def test_column_search_numeric(self, client: TestClient):
        r = client.get("/heroes/?columnSearch[age]=2&sortBy=age&sortOrder=asc")
        assert names(r) == ["beta", "Deadpond"]

    def test_unknown_column_search_key_is_ignored(self, client: TestClient):
        r = client.get("/heroes/?columnSearch[bogus]=zzz")
        assert r.status_code == 200
        assert r.json()["pagination"]["total"] == 5

    def test_empty_column_search_value_is_ignored(self, client: TestClient):
        r = client.get("/heroes/?columnSearch[name]=")
        assert r.json()["pagination"]["total"] == 5

    def test_sort_ascending(self, client: TestClient):
        r = client.get("/heroes/?sortBy=name&sortOrder=asc")
        assert names(r) == ["ALPHA", "Deadpond", "Rusty-Man", "Spider-Boy", "beta"]

    def test_sort_descending(self, client: TestClient):
        r = client.get("/heroes/?sort_by=createdAt&sort_order=DESC")
        assert names(r) == ["beta", "ALPHA", "Spider-Boy", "Rusty-Man", "Deadpond"]

    def test_invalid_sort_falls_back_to_first_sortable_field(self, client: TestClient, caplog):
        with caplog.at_level(logging.INFO, logger="fastapi_listquery"):
            r = client.get("/heroes/?sortBy=droptable&sortOrder=asc")
        assert r.status_code == 200
        assert names(r) == ["ALPHA", "Deadpond", "Rusty-Man", "Spider-Boy", "beta"]
        assert "Invalid sortBy parameter" in caplog.text
        assert "droptable" in caplog.text

    def test_nullable_sort_desc_puts_nulls_last(self, client: TestClient):
        r = client.get("/heroes/?sortBy=age&sortOrder=desc")
        ages = [item["age"] for item in r.json()["data"]]
        assert ages == [48, 28, 20, 10, None]

    def test_nullable_sort_asc_puts_nulls_first(self, client: TestClient):
        r = client.get("/heroes/?sortBy=age&sortOrder=asc")
        ages = [item["age"] for item in r.json()["data"]]
        assert ages == [None, 10, 20, 28, 48]

    def test_sort_by_relation_column(self, client: TestClient):
        r = client.get("/heroes/?sortBy=team&sortOrder=desc")
        assert r.status_code == 200
        result = names(r)
        assert result[0] == "Spider-Boy"
        assert set(result[1:3]) == {"Rusty-Man", "ALPHA"}
        assert len(result) == 5

    def test_sort_by_relation_with_search(self, client: TestClient):
        r = client.get("/heroes/?sortBy=team&sortOrder=asc&search=a&columnSearch[name]=a")
        assert r.status_code == 200
        assert set(names(r)) == {"ALPHA", "Rusty-Man", "Deadpond", "beta"}

    def test_filter_equality(self, client: TestClient):
        r = client.get("/heroes/?teamId=1&sortBy=name&sortOrder=asc")
        assert names(r) == ["ALPHA", "Rusty-Man"]

    def test_filter_operator_map(self, client: TestClient):
        r = client.get("/heroes/?age[gte]=20&age[lt]=48&sortBy=age&sortOrder=asc")
        assert names(r) == ["beta", "Deadpond"]

    def test_filter_repeated_key_is_in(self, client: TestClient):
        r = client.get("/heroes/?age=10&age=48&sortBy=age&sortOrder=asc")
        assert names(r) == ["ALPHA", "Rusty-Man"]

    def test_filter_plain_and_operator_combine(self, client: TestClient):
        for query in ("age=28&age[gt]=20", "age[gt]=20&age=28"):
            r = client.get(f"/heroes/?{query}")
            assert names(r) == ["Deadpond"]

    def test_unlisted_filter_is_ignored(self, client: TestClient):
        r = client.get("/heroes/?secret_name=nope")
        assert r.json()["pagination"]["total"] == 5

    def test_with_relation_in_response(self, client: TestClient):
        r = client.get("/heroes/?with=team&sortBy=name&sortOrder=asc")
        assert r.status_code == 200
        by_name = {item["name"]: item for item in r.json()["data"]}
        assert by_name["ALPHA"]["team"] == {"id": 1, "name": "Avengers"}
        assert by_name["Spider-Boy"]["team"]["name"] == "Justice"
        assert by_name["Deadpond"]["team"] is None

    def test_with_nested_relation_in_response(self, client: TestClient):
        r = client.get("/heroes/?with=team.heroes&columnSearch[name]=rusty")
        (hero,) = r.json()["data"]
        assert hero["team"]["name"] == "Avengers"
        assert {member["name"] for member in hero["team"]["heroes"]} == {"Rusty-Man", "ALPHA"}

    def test_without_relations_no_relation_keys(self, client: TestClient):
        r = client.get("/heroes/")
        assert all("team" not in item for item in r.json()["data"])

    def test_unknown_relation_is_ignored(self, client: TestClient):
        r = client.get("/heroes/?with=bogus")
        assert r.status_code == 200
        assert all("bogus" not in item for item in r.json()["data"])

    def test_huge_page_returns_empty_page(self, client: TestClient):
        r = client.get("/heroes/?page=999999999999999999999")
        assert r.status_code == 200
        assert r.json()["data"] == []
        assert r.json()["pagination"]["total"] == 5
        assert r.json()["pagination"]["page"] == 999999999999999999999


class TestRelationSortFallback:
    """GET /heroes-by-team/ where the first sortable field needs a join."""

    def test_invalid_sort_falls_back_to_joined_column(self, client: TestClient):
        r = client.get("/heroes-by-team/?sortBy=droptable&sortOrder=desc")
        assert r.status_code == 200
        result = names(r)
        assert result[0] == "Spider-Boy"
        assert set(result[1:3]) == {"Rusty-Man", "ALPHA"}
        assert r.json()["pagination"]["total"] == 5

    def test_missing_sort_falls_back_to_joined_column(self, client: TestClient):
        r = client.get("/heroes-by-team/?sortOrder=desc")
        assert r.status_code == 200
        assert names(r)[0] == "Spider-Boy"

    def test_other_sort_key_needs_no_join(self, client: TestClient):
        r = client.get("/heroes-by-team/?sortBy=name&sortOrder=asc")
        assert names(r) == ["ALPHA", "Deadpond", "Rusty-Man", "Spider-Boy", "beta"]


class TestMetaEnvelopeEndpoint:
    """GET /rated-heroes/ with aggregates and the {data, meta, links} envelope."""

    def test_meta_envelope(self, client: TestClient):
        r = client.get("/rated-heroes/")
        assert r.status_code == 200
        body = r.json()
        assert set(body) == {"data", "meta", "links"}
        assert body["meta"] == {
            "total": 5,
            "perPage": 15,
            "currentPage": 1,
            "lastPage": 1,
            "from": 1,
            "to": 5,
        }
        assert body["links"]["prev"] is None
        assert body["links"]["next"] is None
        assert "page=1" in body["links"]["first"]

    def test_aggregates_attached(self, client: TestClient):
        r = client.get("/rated-heroes/?sortBy=name&sortOrder=asc")
        by_name = {item["name"]: item for item in r.json()["data"]}
        assert by_name["Rusty-Man"]["ratings_avg_rating"] == 4.5
        assert by_name["Rusty-Man"]["ratings_count"] == 2
        assert by_name["beta"]["ratings_avg_rating"] is None
        assert by_name["beta"]["ratings_count"] == 0

    def test_aggregates_with_relation(self, client: TestClient):
        r = client.get("/rated-heroes/?with=team&sortBy=name&sortOrder=asc")
        by_name = {item["name"]: item for item in r.json()["data"]}
        assert by_name["Rusty-Man"]["ratings_count"] == 2
        assert by_name["Rusty-Man"]["team"]["name"] == "Avengers"
        assert by_name["beta"]["team"] is None

    def test_sort_by_aggregate_nulls_last(self, client: TestClient):
        r = client.get("/rated-heroes/?sortBy=rating&sortOrder=desc")
        result = names(r)
        assert result[:3] == ["Deadpond", "Rusty-Man", "ALPHA"]
        assert set(result[3:]) == {"Spider-Boy", "beta"}

    def test_sort_by_aggregate_nulls_first(self, client: TestClient):
        r = client.get("/rated-heroes/?sortBy=rating&sortOrder=asc")
        result = names(r)
        assert set(result[:2]) == {"Spider-Boy", "beta"}
        assert result[2:] == ["ALPHA", "Rusty-Man", "Deadpond"]

    def test_links_between_pages(self, client: TestClient):
        r = client.get("/rated-heroes/?limit=2&page=2&sortBy=name")
        links = r.json()["links"]
        assert "page=1" in links["prev"]
        assert "page=3" in links["next"]
        assert "page=3" in links["last"]
        assert r.json()["meta"]["from"] == 3
        assert r.json()["meta"]["to"] == 4


class TestEngineDirect:
    """ListQueryEngine used without the HTTP layer."""

    def test_from_model_with_mapping(self, seeded_session: Session):
        engine = ListQueryEngine(HERO_POLICY)
        result = engine.from_model(Hero, seeded_session, {"search": "man", "sortBy": "name"})
        assert isinstance(result, ListEnvelope)
        assert [hero.name for hero in result.data] == ["Rusty-Man"]

    def test_meta_shape_from_config(self, seeded_session: Session):
        engine = ListQueryEngine(HERO_POLICY, config=ListQueryConfig(envelope=EnvelopeShape.META))
        result = engine.from_model(Hero, seeded_session, {"limit": "2"})
        assert isinstance(result, PaginatedResponse)
        assert result.meta.last_page == 3
        assert result.links.next == 2

    def test_idempotent_across_fresh_handles(self, seeded_session: Session):
        engine = ListQueryEngine(HERO_POLICY)
        req = engine.parse({"search": "e", "sortBy": "team", "sortOrder": "asc", "limit": "3"})
        first = engine.get_list(engine.query_for(Hero, seeded_session), req)
        second = engine.get_list(engine.query_for(Hero, seeded_session), req)
        assert [hero.id for hero in first.data] == [hero.id for hero in second.data]
        assert first.pagination == second.pagination

    def test_filter_hook(self, seeded_session: Session):
        calls = []

        def only_with_team(query, column_search, base_table):
            calls.append((dict(column_search), base_table))
            return query.where(Hero.team_id.is_not(None))

        engine = ListQueryEngine(HERO_POLICY, filter_hook=only_with_team)
        result = engine.from_model(Hero, seeded_session, {"columnSearch[name]": "a"})
        assert {hero.name for hero in result.data} == {"Rusty-Man", "ALPHA"}
        assert calls == [({"name": "a"}, None)]

        engine.from_model(Hero, seeded_session, {"sortBy": "team"})
        assert calls[-1] == ({}, "heroes")

    def test_injected_logger(self, seeded_session: Session):
        class RecordingLogger:
            def __init__(self):
                self.entries = []

            def log(self, message, context):
                self.entries.append((message, context))

        logger = RecordingLogger()
        engine = ListQueryEngine(HERO_POLICY, logger=logger)
        engine.from_model(Hero, seeded_session, {"sortBy": "droptable"})
        assert logger.entries == [
            (
                "Invalid sortBy parameter",
                {
                    "provided": "droptable",
                    "using": "name",
                    "allowed": ["name", "age", "createdAt", "team"],
                },
            )
        ]

    def test_empty_policy_lists_everything(self, seeded_session: Session):
        engine = ListQueryEngine(FieldPolicy())
        result = engine.from_model(
            Hero, seeded_session, {"search": "zzz", "columnSearch[name]": "zzz", "sortBy": "name"}
        )
        assert result.pagination.total == 5
