import json
import logging
from datetime import UTC, datetime

import pytest

from persona_quiz.core.flow_state import FlowStep
from persona_quiz.core.memory_storage import MemoryStateStore
from persona_quiz.core.models import Dimension, GeneratedItem, SessionState, UserProfile
from persona_quiz.core.question_bank import load_templates
from persona_quiz.core.state_snapshot import SnapshotError, load_snapshot
from persona_quiz.core.storage import DatabaseStateStore


def _sample_state() -> SessionState:
    templates = load_templates()[:4]
    state = SessionState.fresh(len(templates))
    state.flow_step = FlowStep.QUIZ
    state.profile_collection_index = 4
    state.profile = UserProfile(age=40, occupation="Nurse", gender_label="Female", interest_tags=["#running", "books"])
    state.generated_items[0] = GeneratedItem.from_template(templates[0])
    state.generated_items[2] = GeneratedItem.from_template(templates[2])
    state.answers = {1: "E"}
    state.current_question_index = 1
    return state


LEGACY_DOCUMENT = {
    "step": "quiz",
    "dataStep": 3,
    "userContext": {"age": 22, "occupation": "Student", "gender": "Male", "interests": "#gaming, music, gaming"},
    "questions": [
        {
            "id": 1,
            "dimension": "E-I",
            "text": "At a party you:",
            "options": [{"text": "Mingle", "value": "E"}, {"text": "Stay close to friends", "value": "I"}],
        },
        None,
        "garbage",
    ],
    "currentQuestionIndex": 1,
    "answers": {"1": "E"},
    "result": "",
    "scores": None,
}


class TestSnapshotDecoding:
    def test_round_trip_keeps_everything(self):
        state = _sample_state()

        restored = load_snapshot(state.model_dump_json())

        assert restored == state

    def test_legacy_document_is_migrated(self):
        restored = load_snapshot(json.dumps(LEGACY_DOCUMENT))

        assert restored.flow_step == FlowStep.QUIZ
        assert restored.profile_collection_index == 3
        assert restored.profile.gender_label == "Male"
        assert restored.profile.interest_tags == ("gaming", "music")
        assert restored.generated_items[0].rendered_text == "At a party you:"
        assert restored.generated_items[0].dimension == Dimension.EI
        assert restored.generated_items[0].choice_b.value == "I"
        assert restored.generated_items[1:] == [None, None]
        assert restored.answers == {1: "E"}
        assert restored.dimension_scores["E"] == 0

    @pytest.mark.parametrize("step", ["bogus", None, 7])
    def test_unknown_step_falls_back_to_welcome(self, step):
        document = dict(LEGACY_DOCUMENT, step=step)

        assert load_snapshot(json.dumps(document)).flow_step == FlowStep.WELCOME

    def test_drifted_array_fields_are_reset(self):
        document = dict(LEGACY_DOCUMENT, questions="not a list", answers=["E", "I"])

        restored = load_snapshot(json.dumps(document))

        assert restored.generated_items == []
        assert restored.answers == {}
        assert restored.current_question_index == 0

    @pytest.mark.parametrize("data_step, expected", [(4, 3), (12, 3), (-1, 0), ("2", 0), (True, 0)])
    def test_profile_index_is_kept_on_an_askable_field(self, data_step, expected):
        document = dict(LEGACY_DOCUMENT, step="data-collection", dataStep=data_step)

        restored = load_snapshot(json.dumps(document))

        assert restored.flow_step == FlowStep.PROFILE_COLLECTION
        assert restored.profile_collection_index == expected

    def test_profile_index_past_collection_is_capped(self):
        document = dict(LEGACY_DOCUMENT, dataStep=9)

        assert load_snapshot(json.dumps(document)).profile_collection_index == 4

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("2026-10-18T04:00:00", datetime(2026, 10, 18, 4, 0, tzinfo=UTC)),
            ("2026-10-18T04:00:00Z", datetime(2026, 10, 18, 4, 0, tzinfo=UTC)),
            ("2026-10-18T06:00:00+02:00", datetime(2026, 10, 18, 4, 0, tzinfo=UTC)),
        ],
    )
    def test_last_activity_is_timezone_aware(self, raw, expected):
        document = dict(LEGACY_DOCUMENT, lastActivityAt=raw)

        restored = load_snapshot(json.dumps(document))

        assert restored.last_activity_at.tzinfo is not None
        assert restored.last_activity_at == expected

    @pytest.mark.parametrize("raw", ["yesterday", "", 1700000000, None, ["2026-10-18"]])
    def test_unreadable_last_activity_is_replaced(self, raw):
        document = dict(LEGACY_DOCUMENT, lastActivityAt=raw)

        before = datetime.now(UTC)
        restored = load_snapshot(json.dumps(document))

        assert restored.last_activity_at >= before

    def test_naive_last_activity_gets_utc_on_construction(self):
        state = SessionState(last_activity_at=datetime(2026, 10, 18, 4, 0))

        assert state.last_activity_at == datetime(2026, 10, 18, 4, 0, tzinfo=UTC)

    @pytest.mark.parametrize("raw",["", "{not json", "[]", "42"])
    def test_undecodable_documents_raise(self, raw):
        with pytest.raises(SnapshotError):
            load_snapshot(raw)


class TestMemoryStateStore:
    def setup_method(self):
        self.store = MemoryStateStore()

    def test_load_empty_store(self):
        assert self.store.load() is None

    def test_save_and_load(self):
        state = _sample_state()

        self.store.save(state)
        loaded = self.store.load()

        assert loaded == state
        assert loaded is not state

    def test_save_overwrites_whole_snapshot(self):
        state = _sample_state()
        self.store.save(state)

        replacement = SessionState.fresh(4)
        self.store.save(replacement)

        loaded = self.store.load()
        assert loaded.flow_step == FlowStep.WELCOME
        assert loaded.answers == {}
        assert loaded.generated_count() == 0

    def test_mutating_loaded_state_does_not_touch_store(self):
        self.store.save(_sample_state())

        loaded = self.store.load()
        loaded.answers[2] = "S"

        assert 2 not in self.store.load().answers

    def test_malformed_document_counts_as_absent(self, caplog):
        caplog.set_level(logging.WARNING, logger="persona_quiz")
        self.store.put_raw("{broken")

        assert self.store.load() is None
        assert any(getattr(record, "event", None) == "state.load_failed" for record in caplog.records)

    def test_clear(self):
        self.store.save(_sample_state())

        self.store.clear()
        self.store.clear()

        assert self.store.load() is None


class TestDatabaseStateStore:
    @pytest.fixture
    def store(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        store = DatabaseStateStore(db_path="data/quiz.db")
        yield store
        store.close()

    def test_path_validation(self, store):
        with pytest.raises(ValueError, match="Database path outside working directory"):
            DatabaseStateStore(db_path="../../../etc/malicious.db")

    def test_creates_database_file(self, store, tmp_path):
        assert (tmp_path / "data" / "quiz.db").exists()

    def test_save_and_load(self, store):
        state = _sample_state()

        store.save(state)
        loaded = store.load()

        assert loaded == state
        assert loaded.profile.interest_tags == ("running", "books")

    def test_upsert_replaces_snapshot(self, store):
        store.save(_sample_state())
        finished = _sample_state()
        finished.flow_step = FlowStep.RESULTS
        finished.derived_type = "ESTJ"
        finished.last_activity_at = datetime(2024, 1, 1, tzinfo=UTC)

        store.save(finished)

        loaded = store.load()
        assert loaded.flow_step == FlowStep.RESULTS
        assert loaded.derived_type == "ESTJ"
        assert loaded.last_activity_at == datetime(2024, 1, 1, tzinfo=UTC)

    def test_survives_reopen(self, store):
        state = _sample_state()
        store.save(state)
        store.close()

        reopened = DatabaseStateStore(db_path="data/quiz.db")
        try:
            assert reopened.load() == state
        finally:
            reopened.close()

    def test_malformed_document_counts_as_absent(self, store):
        store.put_raw("definitely not json")

        assert store.load() is None

    def test_legacy_document_is_migrated(self, store):
        store.put_raw(json.dumps(LEGACY_DOCUMENT))

        loaded = store.load()

        assert loaded.flow_step == FlowStep.QUIZ
        assert loaded.profile.occupation == "Student"

    def test_clear(self, store):
        store.save(_sample_state())

        store.clear()

        assert store.load() is None
        store.clear()

    def test_separate_keys_do_not_collide(self, store):
        other = DatabaseStateStore(db_path="data/quiz.db", storage_key="other")
        try:
            store.save(_sample_state())
            assert other.load() is None
        finally:
            other.close()
