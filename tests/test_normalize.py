"""Tests for the normalization engine."""

import pytest

from restcache import (
    Entity,
    InvalidSchemaError,
    MissingIdentityError,
    ShapeMismatchError,
    normalize,
)


@pytest.fixture
def user() -> Entity:
    return Entity("users")


@pytest.fixture
def article(user: Entity) -> Entity:
    return Entity("articles", {"author": user})


class TestNormalizeEntity:
    """Entity nodes are extracted and replaced by their id."""

    def test_flat_entity(self) -> None:
        payload = {"id": 5, "title": "hi", "tags": ["a", "b"]}
        normalized = normalize(payload, Entity("Article"))

        assert normalized.entities == {
            "Article": {"5": {"id": 5, "title": "hi", "tags": ["a", "b"]}}
        }
        assert normalized.result == "5"

    def test_nested_entity_replaced_by_id(self, article: Entity) -> None:
        payload = {"id": 1, "title": "x", "author": {"id": 7, "username": "bob"}}
        normalized = normalize(payload, article)

        assert normalized.result == "1"
        assert normalized.entities["articles"]["1"] == {
            "id": 1,
            "title": "x",
            "author": "7",
        }
        assert normalized.entities["users"]["7"] == {"id": 7, "username": "bob"}

    def test_payload_is_not_mutated(self, article: Entity) -> None:
        payload = {"id": 1, "author": {"id": 7}}
        normalize(payload, article)
        assert payload == {"id": 1, "author": {"id": 7}}

    def test_missing_identity_raises(self) -> None:
        with pytest.raises(MissingIdentityError) as exc_info:
            normalize({"title": "no id"}, Entity("articles"))
        assert exc_info.value.schema_key == "articles"

    def test_nested_entity_falls_back_to_field_name(self, article: Entity) -> None:
        normalized = normalize({"id": 1, "author": {"username": "anon"}}, article)

        assert normalized.entities["articles"]["1"]["author"] == "author"
        assert normalized.entities["users"]["author"] == {"username": "anon"}

    def test_custom_id_attribute(self) -> None:
        user = Entity("users", id_attribute=lambda value, parent, key: value["username"])
        normalized = normalize({"username": "bob", "email": "b@b.com"}, user)

        assert normalized.result == "bob"
        assert normalized.entities["users"]["bob"]["email"] == "b@b.com"

    def test_repeated_entity_merged_within_one_pass(self, article: Entity) -> None:
        payload = [
            {"id": 1, "author": {"id": 7, "username": "bob"}},
            {"id": 2, "author": {"id": 7, "email": "bob@bob.com"}},
        ]
        normalized = normalize(payload, [article])

        assert normalized.entities["users"]["7"] == {
            "id": 7,
            "username": "bob",
            "email": "bob@bob.com",
        }

    def test_custom_merge_strategy(self) -> None:
        first_wins = Entity("users", merge_strategy=lambda existing, incoming: existing)
        normalized = normalize(
            [{"id": 1, "name": "first"}, {"id": 1, "name": "second"}], [first_wins]
        )
        assert normalized.entities["users"]["1"]["name"] == "first"

    def test_custom_process_strategy(self) -> None:
        user = Entity(
            "users",
            process_strategy=lambda value, parent, key: {**value, "seen": True},
        )
        normalized = normalize({"id": 3}, user)
        assert normalized.entities["users"]["3"] == {"id": 3, "seen": True}

    def test_scalar_reference_stored_as_id(self, article: Entity) -> None:
        normalized = normalize({"id": 1, "author": 7}, article)

        assert normalized.entities["articles"]["1"]["author"] == "7"
        assert "users" not in normalized.entities

    def test_null_relationship_kept(self, article: Entity) -> None:
        normalized = normalize({"id": 1, "author": None}, article)
        assert normalized.entities["articles"]["1"]["author"] is None

    def test_list_in_entity_position_raises(self, article: Entity) -> None:
        with pytest.raises(ShapeMismatchError) as exc_info:
            normalize([{"id": 1}], article)

        assert exc_info.value.fetch_key is None
        assert exc_info.value.expected == "entity"
        assert exc_info.value.actual == "list"

    def test_list_in_nested_entity_field_raises(self, article: Entity) -> None:
        with pytest.raises(ShapeMismatchError):
            normalize({"id": 1, "author": [{"id": 7}]}, article)

    def test_null_root_stays_null(self, article: Entity) -> None:
        normalized = normalize(None, article)
        assert normalized.result is None
        assert normalized.entities == {}


class TestNormalizeList:
    """List nodes map over elements."""

    def test_list_of_entities(self) -> None:
        normalized = normalize([{"id": 1}, {"id": 2}], [Entity("articles")])
        assert normalized.result == ["1", "2"]
        assert set(normalized.entities["articles"]) == {"1", "2"}

    def test_items_without_identity_are_skipped(self) -> None:
        normalized = normalize(
            [{"id": 1}, {"title": "no id"}, {"id": 3}], [Entity("articles")]
        )
        assert normalized.result == ["1", "3"]

    def test_empty_list(self) -> None:
        normalized = normalize([], [Entity("articles")])
        assert normalized.result == []
        assert normalized.entities == {}

    def test_object_against_list_schema_raises(self) -> None:
        with pytest.raises(ShapeMismatchError) as exc_info:
            normalize({"id": 1, "title": "x"}, [Entity("articles")])

        assert exc_info.value.fetch_key is None
        assert exc_info.value.expected == "list"
        assert exc_info.value.actual == "object"

    def test_bad_item_shape_is_not_skipped(self) -> None:
        with pytest.raises(ShapeMismatchError):
            normalize([{"id": 1}, [{"id": 2}]], [Entity("articles")])

    def test_cyclic_schema(self) -> None:
        article = Entity("articles")
        comment = Entity("comments", {"article": article})
        article.define({"comments": [comment]})

        payload = {
            "id": 1,
            "comments": [{"id": 10, "article": {"id": 1, "title": "t"}}],
        }
        normalized = normalize(payload, article)

        assert normalized.entities["articles"]["1"] == {
            "id": 1,
            "title": "t",
            "comments": ["10"],
        }
        assert normalized.entities["comments"]["10"] == {"id": 10, "article": "1"}


class TestNormalizeObject:
    """Object nodes replace schema fields and pass the rest through."""

    def test_pagination_fields_pass_through(self) -> None:
        payload = {
            "prevPage": "23asdl",
            "nextPage": "s3f3",
            "results": [{"id": 23}, {"id": 44}],
        }
        normalized = normalize(payload, {"results": [Entity("articles")]})

        assert normalized.result == {
            "prevPage": "23asdl",
            "nextPage": "s3f3",
            "results": ["23", "44"],
        }

    def test_plain_value_against_object_schema_raises(self) -> None:
        with pytest.raises(ShapeMismatchError) as exc_info:
            normalize(5, {"data": Entity("articles")})

        assert exc_info.value.expected == "object"
        assert exc_info.value.actual == "entity"

    def test_list_against_object_schema_raises(self) -> None:
        with pytest.raises(ShapeMismatchError):
            normalize([{"data": {"id": 1}}], {"data": Entity("articles")})

    def test_invalid_schema_raises(self) -> None:
        with pytest.raises(InvalidSchemaError):
            normalize({}, 5)
