"""
Tests for the document store and its projections.
"""

import pytest

from dynvars.core.document import (
    MISSING,
    DocumentStore,
    Source,
    is_described_leaf,
    unwrap_value,
)
from dynvars.exceptions import AddressError
from dynvars.models import ChangeRecord


class TestGet:
    """Tests for reading through the store."""

    def test_simple_read(self, store):
        assert store.get("hp") == 100
        assert store.get("stats.str") == 5
        assert store.get("/bag/0") == "sword"

    def test_described_leaf_is_unwrapped(self, store):
        """Test [value, description] leaves read as their value."""
        assert store.get("name") == "Alice"
        assert store.lookup("name") == ["Alice", "player name"]

    def test_two_item_sequence_ending_in_string_reads_as_described(self):
        """Test a [value, str] pair is always treated as a described leaf."""
        store = DocumentStore({"pair": ["sword", "shield"]})
        assert store.get("pair") == "sword"
        assert store.get("pair.1") == "shield"

    def test_missing_path_returns_default(self, store):
        """Test missing paths fall back to the default."""
        assert store.get("nope") is None
        assert store.get("nope.deeper", default=7) == 7

    def test_null_intermediate_stops_resolution(self):
        """Test a None intermediate ends resolution with the default."""
        store = DocumentStore({"a": None})
        assert store.get("a.b", default="fallback") == "fallback"

    def test_negative_index_does_not_resolve(self):
        """Test "a.b.-1" is out of range rather than the last element."""
        store = DocumentStore({"a": {"b": [1, 2, 3]}})
        assert store.get("a.b.-1") is None
        assert store.lookup("a.b.-1") is MISSING
        assert store.get("a.b.2") == 3

    def test_append_marker_never_resolves(self, store):
        assert store.lookup("bag/-") is MISSING

    def test_empty_path_reads_projection(self, store):
        assert store.get() is store.stat_data

    def test_read_other_projection(self, store):
        """Test reading from the display projection by name."""
        store.record_change(ChangeRecord("hp", 100, 90, "hit"))
        assert store.get("hp", source="display") == "100 → 90 (hit)"
        assert store.get("hp", source=Source.DELTA) == "100 → 90 (hit)"

    def test_exists(self, store):
        assert store.exists("stats.dex")
        assert not store.exists("stats.luck")


class TestSet:
    """Tests for writing through the store."""

    def test_creates_mapping_intermediates(self):
        """Test a string next segment creates a mapping."""
        store = DocumentStore()
        store.set("a.b.c", 1)
        assert store.stat_data == {"a": {"b": {"c": 1}}}

    def test_creates_sequence_intermediates(self):
        """Test an integer next segment creates a sequence."""
        store = DocumentStore()
        store.set("list.0.name", "x")
        assert store.stat_data == {"list": [{"name": "x"}]}

    def test_append_marker_pushes(self, store):
        store.set("bag/-", "potion")
        assert store.lookup("bag") == ["sword", "potion"]

    def test_append_marker_on_missing_creates_sequence(self):
        store = DocumentStore()
        store.set("items/-", 1)
        assert store.stat_data == {"items": [1]}

    def test_index_past_end_pads_with_null(self):
        store = DocumentStore({"xs": [1]})
        store.set("xs[3]", 4)
        assert store.get("xs") == [1, None, None, 4]

    def test_scalar_intermediate_is_an_error(self, store):
        """Test writing below a scalar raises AddressError."""
        with pytest.raises(AddressError):
            store.set("hp.max", 10)

    def test_root_write_is_an_error(self, store):
        with pytest.raises(AddressError):
            store.set("", 1)

    def test_assign_keeps_description(self, store):
        """Test assign rewrites the value half of a described leaf."""
        store.assign("name", "Bob")
        assert store.lookup("name") == ["Bob", "player name"]
        assert store.get("name") == "Bob"


class TestDelete:
    """Tests for deleting keys and indices."""

    def test_delete_key(self, store):
        assert store.delete("stats.dex") is True
        assert store.get("stats") == {"str": 5}

    def test_delete_index_splices(self):
        store = DocumentStore({"xs": [1, 2, 3]})
        assert store.delete("xs[1]") is True
        assert store.get("xs") == [1, 3]

    def test_missing_intermediate_reports_false(self, store):
        assert store.delete("nope.deeper") is False
        assert store.delete("bag[5]") is False


class TestChanges:
    """Tests for change annotations, observers and snapshots."""

    def test_record_change_annotates_projections(self, store):
        store.record_change(ChangeRecord("stats.str", 5, 6, "+1"))
        assert store.display_data == {"stats": {"str": "5 → 6 (+1)"}}
        assert store.delta_data == {"stats": {"str": "5 → 6 (+1)"}}

    def test_clear_delta_keeps_display(self, store):
        store.record_change(ChangeRecord("hp", 100, 90, "hit"))
        store.clear_delta()
        assert store.delta_data == {}
        assert store.get("hp", source="display") == "100 → 90 (hit)"

    def test_observers_receive_records(self, store):
        received = []
        unsubscribe = store.subscribe(received.append)
        record = ChangeRecord("hp", 100, 90, "hit")
        store.record_change(record)
        unsubscribe()
        store.record_change(ChangeRecord("hp", 90, 80, "hit"))
        assert received == [record]

    def test_failing_observer_does_not_block_others(self, store, caplog):
        """Test an observer exception is logged and later observers still run."""

        def broken(record):
            raise RuntimeError("boom")

        received = []
        store.subscribe(broken)
        store.subscribe(received.append)
        store.record_change(ChangeRecord("hp", 100, 90))
        assert len(received) == 1
        assert "Change observer" in caplog.text

    def test_export_is_a_deep_copy(self, store):
        snapshot = store.export()
        store.set("stats.str", 99)
        assert snapshot["stat_data"]["stats"]["str"] == 5
        assert set(snapshot) == {"stat_data", "display_data", "delta_data"}

    def test_import_replaces_present_projections(self, store):
        store.record_change(ChangeRecord("hp", 100, 90))
        store.import_data({"stat_data": {"hp": 1}})
        assert store.stat_data == {"hp": 1}
        assert store.get("hp", source="display") == "100 → 90"

    def test_restore_is_in_place(self, store):
        data = store.stat_data
        snapshot = store.export()
        store.set("hp", 1)
        store.restore(snapshot)
        assert store.stat_data is data
        assert store.get("hp") == 100


class TestLeafHelpers:
    """Tests for described-leaf helpers."""

    def test_described_leaf_shape(self):
        assert is_described_leaf([1, "desc"])
        assert not is_described_leaf([1, 2])
        assert not is_described_leaf(["a", "b", "c"])

    def test_unwrap(self):
        assert unwrap_value([3, "desc"]) == 3
        assert unwrap_value({"a": 1}) == {"a": 1}
