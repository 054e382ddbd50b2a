from __future__ import annotations

import pytest

pytest.importorskip("PyQt6")

from swipelink.services.conversation import EngineEvent
from swipelink.services.event_synchronizer import EventSynchronizer
from swipelink.services.interceptor import CapturePhase
from swipelink.services.local_engine import LocalConversationEngine
from swipelink.services.mapping_store import MappingKey
from conftest import FakeScheduler, FakeSurface


class RecordingResponder:
    def __init__(self) -> None:
        self.requests: list[list[dict[str, str]]] = []
        self.failing = False

    def __call__(self, messages: list[dict[str, str]]) -> str:
        self.requests.append(messages)
        if self.failing:
            raise RuntimeError("backend unavailable")
        return f"reply {len(self.requests)}"


@pytest.fixture()
def harness():
    responder = RecordingResponder()
    engine = LocalConversationEngine(responder, session_id="session-a")
    surface = FakeSurface(engine)
    scheduler = FakeScheduler()
    synchronizer = EventSynchronizer(engine, surface, scheduler=scheduler)
    synchronizer.start()
    scheduler.flush()
    yield engine, surface, scheduler, synchronizer, responder
    synchronizer.stop()


def _add_variant(engine, scheduler, input_text: str) -> None:
    """Edit the latest input and generate another variant for it."""

    engine.edit(0, input_text)
    scheduler.flush()
    engine.swipe(1)
    scheduler.flush()


def test_send_stores_mapping_for_generated_output(harness) -> None:
    engine, _surface, _scheduler, synchronizer, _responder = harness

    engine.send("hello")

    assert synchronizer.state.store.get(MappingKey(1, 0)) == "hello"
    assert synchronizer.state.active_key == MappingKey(1, 0)
    assert synchronizer.state.pending.is_empty
    assert synchronizer.state.generating is False


def test_swiping_shows_the_input_that_produced_each_variant(harness) -> None:
    engine, surface, scheduler, synchronizer, _responder = harness
    engine.send("hello")
    scheduler.flush()
    _add_variant(engine, scheduler, "hi there")

    assert synchronizer.state.store.get(MappingKey(1, 1)) == "hi there"
    assert engine.records()[1].variant_index == 1

    engine.swipe(-1)
    scheduler.flush()

    assert synchronizer.state.active_key == MappingKey(1, 0)
    assert surface.elements[0].text == "hello"
    assert surface.elements[0].linked is True

    engine.swipe(1)
    scheduler.flush()

    assert synchronizer.state.active_key == MappingKey(1, 1)
    assert surface.elements[0].text == "hi there"
    assert surface.elements[0].linked is True
    # The record itself is never rewritten by a swipe.
    assert engine.records()[0].text == "hi there"


def test_swipe_on_rehydrated_exchange_pushes_mapped_text(harness) -> None:
    engine, surface, scheduler, synchronizer, _responder = harness
    engine.load_session(
        "session-b",
        [
            {"is_user": True, "mes": "a"},
            {"mes": "b"},
            {"is_user": True, "mes": "c"},
            {"mes": "d"},
            {"is_user": True, "mes": "hello"},
            {"mes": "r0", "swipes": ["r0", "r1"], "swipe_id": 0},
        ],
    )
    store = synchronizer.state.store
    store.set(MappingKey(5, 0), "hello")
    store.set(MappingKey(5, 1), "hi there")
    scheduler.flush()

    engine.swipe(1)
    scheduler.flush()

    assert synchronizer.state.active_key == MappingKey(5, 1)
    assert surface.elements[4].text == "hi there"
    assert surface.elements[4].linked is True


def test_outgoing_request_uses_text_of_visible_variant(harness) -> None:
    engine, _surface, scheduler, synchronizer, responder = harness
    engine.send("hello")
    scheduler.flush()
    _add_variant(engine, scheduler, "hi there")
    engine.swipe(-1)
    scheduler.flush()

    engine.send("next")
    scheduler.flush()

    request = responder.requests[-1]
    assert request[0] == {"role": "user", "content": "hello"}
    assert request[-1] == {"role": "user", "content": "next"}
    assert engine.records()[0].text == "hi there"
    assert synchronizer.interceptor.phase is CapturePhase.IDLE
    assert scheduler.active_timers == []
    assert synchronizer.state.store.get(MappingKey(3, 0)) == "next"


def test_new_variant_request_is_not_patched_with_older_text(harness) -> None:
    engine, _surface, scheduler, _synchronizer, responder = harness
    engine.send("hello")
    scheduler.flush()

    _add_variant(engine, scheduler, "hi there")

    assert responder.requests[-1] == [{"role": "user", "content": "hi there"}]


def test_deleting_an_exchange_drops_its_mappings(harness) -> None:
    engine, surface, scheduler, synchronizer, _responder = harness
    engine.send("first")
    engine.send("second")
    scheduler.flush()
    assert synchronizer.state.active_key == MappingKey(3, 0)

    engine.delete(3)
    scheduler.flush()

    store = synchronizer.state.store
    assert MappingKey(3, 0) not in store
    assert store.get(MappingKey(1, 0)) == "first"
    assert synchronizer.state.active_key is None
    assert not any(element.linked for element in surface.order)


def test_deleting_a_variant_shifts_later_mappings(harness) -> None:
    engine, surface, scheduler, synchronizer, _responder = harness
    engine.send("a")
    scheduler.flush()
    _add_variant(engine, scheduler, "b")
    _add_variant(engine, scheduler, "c")

    engine.delete_variant(1, 1)
    scheduler.flush()

    store = synchronizer.state.store
    assert store.get(MappingKey(1, 0)) == "a"
    assert store.get(MappingKey(1, 1)) == "c"
    assert MappingKey(1, 2) not in store
    assert synchronizer.state.active_key == MappingKey(1, 1)
    assert surface.elements[0].text == "c"
    assert surface.elements[0].linked is True


def test_editing_an_input_keeps_the_edit_on_screen(harness) -> None:
    engine, surface, scheduler, synchronizer, _responder = harness
    engine.send("hello")
    scheduler.flush()
    synchronizer.resync()
    assert surface.elements[0].linked is True

    engine.edit(0, "changed")
    scheduler.flush()

    assert surface.elements[0].text == "changed"
    assert surface.elements[0].linked is False
    assert synchronizer.state.store.get(MappingKey(1, 0)) == "hello"


def test_input_sent_clears_pending_text_but_keeps_mappings(harness) -> None:
    engine, _surface, _scheduler, synchronizer, _responder = harness
    engine.send("hello")
    synchronizer.state.pending.input_text = "stale"

    synchronizer.on_input_sent(2)

    assert synchronizer.state.pending.input_text is None
    assert synchronizer.state.store.get(MappingKey(1, 0)) == "hello"


def test_same_session_notification_does_not_reset(harness) -> None:
    engine, _surface, scheduler, synchronizer, _responder = harness
    engine.send("hello")
    scheduler.flush()

    engine.load_session("session-a", engine.records())
    scheduler.flush()

    assert synchronizer.state.store.get(MappingKey(1, 0)) == "hello"
    assert synchronizer.state.active_key == MappingKey(1, 0)


def test_new_session_resets_state(harness) -> None:
    engine, _surface, scheduler, synchronizer, _responder = harness
    engine.send("hello")
    synchronizer.state.pending.input_text = "leftover"

    engine.new_session()
    scheduler.flush()

    state = synchronizer.state
    assert len(state.store) == 0
    assert state.active_key is None
    assert state.pending.is_empty
    assert state.session_id == engine.session_id


def test_rehydrated_session_is_backfilled_without_overwriting(harness) -> None:
    engine, _surface, scheduler, synchronizer, _responder = harness
    records = [
        {"is_user": True, "mes": "edited question", "swipes": ["original question"]},
        {"mes": "r1", "swipes": ["r0", "r1"], "swipe_id": 1},
    ]

    engine.load_session("restored", records)
    scheduler.flush()

    store = synchronizer.state.store
    assert store.get(MappingKey(1, 1)) == "edited question"
    assert store.get(MappingKey(1, 0)) == "original question"
    assert synchronizer.state.active_key == MappingKey(1, 1)

    store.set(MappingKey(1, 1), "custom")
    engine.load_session("restored", engine.records())
    scheduler.flush()

    assert store.get(MappingKey(1, 1)) == "custom"


def test_dry_run_generation_is_ignored(harness) -> None:
    _engine, _surface, _scheduler, synchronizer, _responder = harness

    synchronizer.on_generation_about_to_start({"dryRun": True})
    synchronizer.on_generation_started({"dryRun": True})

    assert synchronizer.state.generating is False
    assert synchronizer.state.pending.is_empty


def test_generation_started_captures_text_when_not_armed(harness) -> None:
    engine, _surface, scheduler, synchronizer, _responder = harness
    engine.send("hello")
    scheduler.flush()

    synchronizer.on_generation_started({"dryRun": False})

    assert synchronizer.state.generating is True
    assert synchronizer.state.pending.input_text == "hello"


def test_failing_handler_is_logged_not_raised(harness, caplog) -> None:
    engine, _surface, scheduler, synchronizer, _responder = harness

    def explode(payload=None) -> None:
        raise RuntimeError("boom")

    guarded = synchronizer._guard(explode)
    with caplog.at_level("ERROR"):
        guarded(None)

    assert "explode" in caplog.text


def test_debug_snapshot_reports_state(harness) -> None:
    engine, _surface, scheduler, synchronizer, _responder = harness
    engine.send("hello")
    scheduler.flush()

    snapshot = synchronizer.debug_snapshot()

    assert snapshot["session_id"] == "session-a"
    assert snapshot["active_key"] == "1:0"
    assert snapshot["store_size"] == 1
    assert snapshot["phase"] == "idle"
    assert snapshot["native_swipes"] is True
    assert snapshot["output_position"] == 1
    assert snapshot["input_position"] == 0
    assert snapshot["rendered_variant"] == 0


def test_stop_unsubscribes_everything(harness) -> None:
    engine, _surface, scheduler, synchronizer, _responder = harness
    synchronizer.stop()

    engine.send("hello")
    scheduler.flush()

    assert len(synchronizer.state.store) == 0
    assert synchronizer.running is False


def test_failed_send_keeps_mapping_of_previous_exchange(harness) -> None:
    engine, _surface, scheduler, synchronizer, responder = harness
    engine.send("hello")
    scheduler.flush()

    responder.failing = True
    with pytest.raises(RuntimeError):
        engine.send("unrelated follow-up")
    scheduler.flush()

    store = synchronizer.state.store
    assert store.get(MappingKey(1, 0)) == "hello"
    assert len(store) == 1
    assert synchronizer.state.pending.is_empty
    assert synchronizer.state.generating is False
    assert engine.records()[0].text == "hello"


def test_failed_new_variant_stores_nothing(harness) -> None:
    engine, _surface, scheduler, synchronizer, responder = harness
    engine.send("hello")
    scheduler.flush()
    engine.edit(0, "edited")
    scheduler.flush()

    responder.failing = True
    with pytest.raises(RuntimeError):
        engine.generate(new_variant=True)
    scheduler.flush()

    store = synchronizer.state.store
    assert store.get(MappingKey(1, 0)) == "hello"
    assert MappingKey(1, 1) not in store
    assert engine.records()[1].variants == ["reply 1"]
    assert synchronizer.state.pending.is_empty


def test_generation_end_completes_capture_without_output_notification() -> None:
    engine = LocalConversationEngine(
        RecordingResponder(),
        session_id="session-b",
        supported_events=set(EngineEvent) - {EngineEvent.OUTPUT_RECEIVED},
    )
    surface = FakeSurface(engine)
    scheduler = FakeScheduler()
    synchronizer = EventSynchronizer(engine, surface, scheduler=scheduler)
    synchronizer.start()
    scheduler.flush()

    engine.send("hello")
    scheduler.flush()
    assert synchronizer.state.store.get(MappingKey(1, 0)) == "hello"

    _add_variant(engine, scheduler, "hi there")

    assert synchronizer.state.store.get(MappingKey(1, 1)) == "hi there"
    assert synchronizer.state.active_key == MappingKey(1, 1)
    synchronizer.stop()


def test_rendered_output_backfills_variant_zero_first(harness) -> None:
    engine, _surface, scheduler, synchronizer, _responder = harness
    engine.load_session(
        "restored",
        [
            {"is_user": True, "mes": "second question", "swipes": ["first question"]},
            {"mes": "r1", "swipes": ["r0", "r1"], "swipe_id": 1},
        ],
    )
    scheduler.flush()
    store = synchronizer.state.store
    store.clear()

    synchronizer.on_output_rendered(1)
    scheduler.flush()

    assert store.keys() == [MappingKey(1, 0), MappingKey(1, 1)]
    assert store.get(MappingKey(1, 0)) == "first question"
    assert store.get(MappingKey(1, 1)) == "second question"
    assert synchronizer.state.pending.is_empty


def test_rendered_output_backfill_keeps_existing_mappings(harness) -> None:
    engine, _surface, scheduler, synchronizer, _responder = harness
    engine.load_session(
        "restored",
        [
            {"is_user": True, "mes": "second question", "swipes": ["first question"]},
            {"mes": "r1", "swipes": ["r0", "r1"], "swipe_id": 1},
        ],
    )
    scheduler.flush()
    store = synchronizer.state.store
    store.clear()
    store.set(MappingKey(1, 0), "kept")

    synchronizer.on_output_rendered(1)
    scheduler.flush()

    assert store.get(MappingKey(1, 0)) == "kept"
    assert store.get(MappingKey(1, 1)) == "second question"
    assert store.keys() == [MappingKey(1, 0), MappingKey(1, 1)]
