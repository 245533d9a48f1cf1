"""
Tests for the per-session context object.

These run generated text end to end: parse, group, execute and report.
"""

from dynvars import VariableSession, __version__
from dynvars.settings import EngineSettings

STORY = (
    "The goblin strikes you.\n"
    '<VariablePatch>[{"op": "increment", "path": "hp", "delta": -30}]</VariablePatch>\n'
    "You find a rope.\n"
    "push bag rope\n"
)


class TestProcessText:
    """Tests for whole-text ingestion."""

    def test_applies_all_surfaces(self):
        session = VariableSession(data={"hp": 100, "bag": []})
        report = session.process_text(STORY + "_.set('gold', 10)")
        assert report.success is True
        assert session.get("hp") == 70
        assert session.get("bag") == ["rope"]
        assert session.get("gold") == 10
        assert [change.path for change in report.changes] == ["hp", "bag[0]", "gold"]

    def test_display_and_delta(self):
        session = VariableSession(data={"hp": 100, "bag": []})
        session.process_text(STORY)
        assert session.get("hp", source="delta") == "100 → 70 (-30)"
        session.clear_delta()
        assert session.get("hp", source="delta") is None
        assert session.get("hp", source="display") == "100 → 70 (-30)"

    def test_failed_expected_value_blocks_write(self):
        """Test `set ... expect` never writes after a failed check."""
        session = VariableSession(data={"hp": 50})
        report = session.process_text("set hp 80 expect 100")
        assert report.success is False
        assert report.results[0].rollback is True
        assert session.get("hp") == 50

    def test_atomic_block_rollback(self):
        session = VariableSession(data={"gold": 50, "bag": []})
        report = session.process_text(
            '<VariablePatch>{"atomic": true, "operations": ['
            '{"op": "test", "path": "gold", "gte": 100},'
            '{"op": "increment", "path": "gold", "delta": -100},'
            '{"op": "add", "path": "bag/-", "value": "potion"}]}</VariablePatch>'
        )
        assert report.success is False
        assert report.changes == []
        assert session.get("gold") == 50
        assert session.get("bag") == []

    def test_diagnostics_are_reported_per_call(self):
        session = VariableSession()
        first = session.process_text("<VariablePatch>{oops</VariablePatch>")
        second = session.process_text("set a 1")
        assert len(first.diagnostics) == 1
        assert second.diagnostics == []

    def test_disabled_session_does_nothing(self):
        session = VariableSession({"enabled": False}, data={"hp": 100})
        report = session.process_text("set hp 1")
        assert report.commands == []
        assert session.get("hp") == 100

    def test_auto_update_off_parses_only(self):
        session = VariableSession(EngineSettings(auto_update=False), data={"hp": 100})
        report = session.process_text("set hp 1")
        assert len(report.commands) == 1
        assert report.results == []
        assert session.get("hp") == 100

    def test_schema_validation_setting(self):
        data = {"player": {"$meta": {"extensible": False}, "hp": 1}}
        session = VariableSession({"schema_validation": True}, data=data)
        report = session.process_text("set player.mana 5")
        assert report.success is False
        session.update_settings(schema_validation=False)
        assert session.process_text("set player.mana 5").success is True

    def test_schema_validation_covers_merge(self):
        data = {"player": {"$meta": {"extensible": False}, "hp": 1}}
        session = VariableSession({"schema_validation": True}, data=data)
        report = session.process_text('_.modify("player", "merge", {"mana": 5})')
        assert report.success is False
        assert session.get("player.mana") is None

    def test_remove_element_by_value(self):
        session = VariableSession(data={"bag": ["sword", "shield", "rope"]})
        report = session.process_text("_.remove('bag', 'shield')")
        assert report.success is True
        assert session.store.lookup("bag") == ["sword", "rope"]

    def test_assign_pushes_inserts_and_sets(self):
        session = VariableSession(data={"bag": ["sword", "bow", "axe"], "stats": {}})
        report = session.process_text(
            "_.assign('bag', 'rope')\n_.assign('bag', 0, 'map')\n_.assign('stats', 'luck', 2)"
        )
        assert report.success is True
        assert session.store.lookup("bag") == ["map", "sword", "bow", "axe", "rope"]
        assert session.get("stats") == {"luck": 2}

    def test_prose_opening_with_a_verb_changes_nothing(self):
        """Test lines such as "remove it" run as commands and fail on absent paths."""
        session = VariableSession(data={"hp": 100})
        report = session.process_text("You pause.\nremove it\ntest the waters\n")
        assert len(report.commands) == 2
        assert report.success is False
        assert session.get("hp") == 100
        assert session.store.export()["stat_data"] == {"hp": 100}


class TestDirectExecution:
    """Tests for executing operations without text."""

    def test_execute_and_subscribe(self):
        session = VariableSession(data={"hp": 100})
        seen = []
        unsubscribe = session.subscribe(seen.append)
        session.execute({"op": "increment", "path": "hp", "delta": 5})
        unsubscribe()
        session.execute({"op": "increment", "path": "hp", "delta": 5})
        assert [record.new_value for record in seen] == [105]

    def test_execute_batch(self):
        session = VariableSession(data={"a": 1})
        result = session.execute_batch(
            [{"op": "replace", "path": "a", "value": 2}, {"op": "remove", "path": "b"}], atomic=True
        )
        assert result.rollback is True
        assert session.get("a") == 1

    def test_export_import(self):
        session = VariableSession(data={"hp": 100})
        snapshot = session.export()
        session.execute({"op": "replace", "path": "hp", "value": 1})
        session.import_data(snapshot)
        assert session.get("hp") == 100
        assert session.get("hp", source="display") is None


class TestStreaming:
    """Tests for streamed ingestion through a session."""

    def test_streaming_mode_applies_closed_blocks(self):
        session = VariableSession(data={"hp": 100, "bag": []})
        stream = session.open_stream()
        first = stream.feed("The goblin strikes.<VariablePatch>[{\"op\": \"increment\", ")
        assert first.display_text == "The goblin strikes."
        assert session.get("hp") == 100

        second = stream.feed('"path": "hp", "delta": -30}]</VariablePatch> Ouch.\npush bag rope\n')
        assert session.get("hp") == 70
        assert second.report.changes[0].path == "hp"
        assert session.get("bag") == []

        final = stream.finish()
        assert session.get("bag") == ["rope"]
        assert final.display_text == "The goblin strikes. Ouch.\npush bag rope\n"

    def test_background_mode_defers_blocks(self):
        session = VariableSession({"update_mode": "background"}, data={"hp": 100})
        stream = session.open_stream()
        stream.feed('<VariablePatch>{"op": "replace", "path": "hp", "value": 1}</VariablePatch>')
        assert session.get("hp") == 100
        stream.finish()
        assert session.get("hp") == 1

    def test_disabled_stream_only_filters_display(self):
        session = VariableSession({"enabled": False}, data={"hp": 100})
        stream = session.open_stream()
        update = stream.feed('Hi<VariablePatch>{"op": "replace", "path": "hp", "value": 1}</VariablePatch>')
        assert update.display_text == "Hi"
        assert update.report.commands == []
        stream.finish()
        assert session.get("hp") == 100


def test_version_is_exposed():
    assert isinstance(__version__, str)
