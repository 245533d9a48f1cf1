"""
Tests for the `$meta` schema guard.

The nearest metadata on the way to a target governs alone; metadata at
different levels is never merged.
"""

import pytest

from dynvars.core.document import DocumentStore
from dynvars.exceptions import SchemaViolationError
from dynvars.execution.executor import OperationExecutor
from dynvars.execution.schema import SchemaGuard, SchemaMeta
from dynvars.models import AddOperation, ModifyOperation, MoveOperation, RemoveOperation


@pytest.fixture
def schema_store():
    return DocumentStore(
        {
            "$meta": {"extensible": True, "required": ["player"]},
            "player": {
                "$meta": {"extensible": False, "required": ["name"]},
                "name": "Alice",
                "hp": 100,
                "inventory": {"potion": 1},
            },
            "world": {
                "$meta": {"extensible": False, "recursiveExtensible": True},
                "regions": {"north": {}},
            },
            "npcs": {
                "$meta": {"template": {"mood": "neutral", "hp": 10}},
            },
            "loose": {},
        }
    )


@pytest.fixture
def guard(schema_store):
    return SchemaGuard(schema_store)


class TestGoverningMeta:
    """Tests for nearest-metadata lookup."""

    def test_nearest_meta_wins(self, guard):
        governing = guard.governing_meta(["player"])
        assert governing.owner == ["player"]
        assert governing.direct is True
        assert governing.meta.extensible is False

    def test_inherited_meta(self, guard):
        """Test a container without metadata is governed by its ancestor's."""
        governing = guard.governing_meta(["player", "inventory"])
        assert governing.owner == ["player"]
        assert governing.direct is False

    def test_root_meta(self, guard):
        governing = guard.governing_meta(["loose"])
        assert governing.owner == []

    def test_no_meta(self):
        assert SchemaGuard(DocumentStore({"a": {}})).governing_meta(["a"]) is None

    def test_alias_parsing(self):
        meta = SchemaMeta.model_validate({"recursiveExtensible": True})
        assert meta.recursive_extensible is True
        assert meta.extensible is True


class TestValidation:
    """Tests for validating individual operations."""

    def test_new_key_in_closed_container(self, guard):
        with pytest.raises(SchemaViolationError):
            guard.validate(AddOperation(path="player.mana", value=5))

    def test_existing_key_in_closed_container(self, guard):
        """Test overwriting an existing key is allowed."""
        guard.validate(AddOperation(path="player.hp", value=5))

    def test_descendant_of_closed_container(self, guard):
        """Test a closed container also closes descendants without their own meta."""
        with pytest.raises(SchemaViolationError):
            guard.validate(AddOperation(path="player.inventory.elixir", value=1))

    def test_recursive_extensible_opens_descendants(self, guard):
        guard.validate(AddOperation(path="world.regions.south", value={}))
        with pytest.raises(SchemaViolationError):
            guard.validate(AddOperation(path="world.oceans", value={}))

    def test_required_key_cannot_be_removed(self, guard):
        with pytest.raises(SchemaViolationError):
            guard.validate(RemoveOperation(path="player.name"))
        guard.validate(RemoveOperation(path="player.hp"))

    def test_required_is_not_merged_across_levels(self, guard):
        """Test the root's required list does not apply where world's meta governs."""
        guard.validate(RemoveOperation(path="world.player"))
        with pytest.raises(SchemaViolationError):
            guard.validate(RemoveOperation(path="loose.player"))

    def test_move_checks_both_halves(self, guard):
        with pytest.raises(SchemaViolationError):
            guard.validate(MoveOperation(from_="player.name", path="loose.name"))
        with pytest.raises(SchemaViolationError):
            guard.validate(MoveOperation(from_="loose", path="player.loose"))
        guard.validate(MoveOperation(from_="player.hp", path="loose.hp"))

    def test_merge_new_key_into_closed_container(self, guard):
        with pytest.raises(SchemaViolationError):
            guard.validate(ModifyOperation(path="player", action="merge", value={"mana": 5}))

    def test_merge_existing_keys_into_closed_container(self, guard):
        guard.validate(ModifyOperation(path="player", action="merge", value={"hp": 5, "name": "Bob"}))

    def test_merge_into_open_container(self, guard):
        guard.validate(ModifyOperation(path="loose", action="merge", value={"mana": 5}))

    def test_sequence_modify_is_not_a_new_key(self):
        store = DocumentStore({"$meta": {"extensible": False}, "bag": ["sword"]})
        SchemaGuard(store).validate(ModifyOperation(path="bag", action="append", value="rope"))

    def test_keyed_removal_checks_required(self, guard):
        with pytest.raises(SchemaViolationError):
            guard.validate(RemoveOperation(path="player", key="name"))
        guard.validate(RemoveOperation(path="player", key="hp"))


class TestTemplate:
    """Tests for template filling."""

    def test_template_fills_missing_keys(self, guard):
        filled = guard.apply_template("npcs.bob", {"hp": 30})
        assert filled == {"mood": "neutral", "hp": 30}

    def test_template_is_copied(self, guard, schema_store):
        filled = guard.apply_template("npcs.bob", {})
        filled["mood"] = "angry"
        assert schema_store.get("npcs.$meta.template.mood") == "neutral"

    def test_non_mapping_values_pass_through(self, guard):
        assert guard.apply_template("npcs.count", 3) == 3


class TestExecutorIntegration:
    """Tests for schema enforcement inside the executor."""

    def test_violation_becomes_failed_result(self, schema_store):
        executor = OperationExecutor(schema_store, schema_validation=True)
        result = executor.execute({"op": "add", "path": "player.mana", "value": 5})
        assert result.success is False
        assert "not extensible" in result.error
        assert schema_store.get("player.mana") is None

    def test_validation_off_by_default(self, schema_store):
        executor = OperationExecutor(schema_store)
        assert executor.execute({"op": "add", "path": "player.mana", "value": 5}).success

    def test_added_mapping_gets_template(self, schema_store):
        executor = OperationExecutor(schema_store, schema_validation=True)
        executor.execute({"op": "add", "path": "npcs.bob", "value": {"mood": "happy"}})
        assert schema_store.get("npcs.bob") == {"mood": "happy", "hp": 10}

    def test_rejected_merge_leaves_mapping_unchanged(self, schema_store):
        executor = OperationExecutor(schema_store, schema_validation=True)
        before = schema_store.export()
        result = executor.execute({"op": "modify", "path": "player", "action": "merge", "value": {"hp": 1, "mana": 5}})
        assert result.success is False
        assert "not extensible" in result.error
        assert schema_store.export() == before

    def test_merge_of_existing_keys_applies(self, schema_store):
        executor = OperationExecutor(schema_store, schema_validation=True)
        result = executor.execute({"op": "modify", "path": "player", "action": "merge", "value": {"hp": 80}})
        assert result.success
        assert schema_store.get("player.hp") == 80
