from __future__ import annotations

from datetime import datetime, timezone

import pytest

from anviksha_ai.models import AnalysisResult, Modality
from anviksha_store.models import ChatMessage, ConversationSession, UserProfile
from anviksha_store.profile import PROFILE_KEY, ProfileStore
from anviksha_store.records import RECORDS_KEY, RecordStore
from anviksha_store.sessions import CHAT_SESSIONS_KEY, SessionStore

NOW = datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc)


def _record(record_id: str, condition: str = "Lobar Pneumonia") -> AnalysisResult:
    return AnalysisResult(
        id=record_id,
        date="2026-03-14T09:30:00Z",
        modality=Modality.XRAY,
        condition=condition,
        confidence=81,
        description="Right lower lobe consolidation.",
        details="Air bronchograms present.",
        treatment="Empirical antibiotics per protocol.",
        is_emergency=False,
        clinical_alerts=("Monitor SpO2",),
        cost=1800,
    )


def test_records_are_newest_first_and_saved_once(db):
    store = RecordStore(db)
    assert store.save(_record("scan-1")) is True
    assert store.save(_record("scan-2")) is True
    assert store.save(_record("scan-1", condition="changed")) is False

    records = store.list_records()
    assert [record.id for record in records] == ["scan-2", "scan-1"]
    assert records[1].condition == "Lobar Pneumonia"
    assert store.get("scan-1") == _record("scan-1")


def test_record_delete(db):
    store = RecordStore(db)
    store.save(_record("scan-1"))
    assert store.delete("scan-1") is True
    assert store.delete("scan-1") is False
    assert store.list_records() == []


def test_corrupt_record_entries_are_skipped(db):
    good = _record("scan-ok").to_payload()
    db.write_json(RECORDS_KEY, [good, {"id": "scan-bad"}, "garbage", 42])
    assert [record.id for record in RecordStore(db).list_records()] == ["scan-ok"]


def test_corrupt_json_falls_back_to_defaults(db, corrupt_state):
    corrupt_state(RECORDS_KEY, "[{not json")
    corrupt_state(CHAT_SESSIONS_KEY, "oops")
    corrupt_state(PROFILE_KEY, "{")

    assert RecordStore(db).list_records() == []
    assert SessionStore(db, CHAT_SESSIONS_KEY).load() == []
    assert ProfileStore(db).load() == UserProfile()


def test_sessions_round_trip_and_skip_bad_messages(db):
    store = SessionStore(db, CHAT_SESSIONS_KEY)
    session = ConversationSession(
        id="session-1",
        title="Headache since Monday",
        timestamp=NOW,
        messages=[
            ChatMessage(id="m1", role="ai", text="Hello", timestamp=NOW),
            ChatMessage(id="m2", role="user", text="Headache since Monday", timestamp=NOW, image="scan.png"),
        ],
    )
    store.save([session])
    assert store.load() == [session]

    raw = db.read_json(CHAT_SESSIONS_KEY, [])
    raw[0]["messages"].append({"id": "m3", "role": "robot", "text": "?", "timestamp": "2026-03-14T09:31:00Z"})
    raw.append({"title": "no id or timestamp"})
    db.write_json(CHAT_SESSIONS_KEY, raw)

    loaded = store.load()
    assert len(loaded) == 1
    assert [message.id for message in loaded[0].messages] == ["m1", "m2"]


def test_profile_defaults_and_save(db):
    store = ProfileStore(db)
    profile = store.load()
    assert profile.name == "Guest Patient"
    assert profile.sex == "unspecified"

    store.save(UserProfile(name="Asha", age=34, sex="female", allergies=["Penicillin"]))
    loaded = store.load()
    assert loaded.name == "Asha"
    assert loaded.allergies == ["Penicillin"]
    assert loaded.history_summary() == "34y female; allergies: Penicillin"


def test_profile_rejects_unknown_sex():
    with pytest.raises(ValueError):
        UserProfile(sex="robot")


def test_purge_clears_every_key(db):
    RecordStore(db).save(_record("scan-1"))
    ProfileStore(db).save(UserProfile(name="Asha"))
    assert db.purge() == 2
    assert RecordStore(db).list_records() == []
    assert ProfileStore(db).load() == UserProfile()
