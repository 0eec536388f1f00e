import pytest
from sqlalchemy import select

from settlement.models import DomainEvent
from settlement.services import events


@pytest.fixture
def collected():
    received = []

    def _listener(event):
        received.append((event.kind, event.aggregate_id))

    events.subscribe(events.ANY_KIND, _listener)
    yield received
    events.unsubscribe(events.ANY_KIND, _listener)


def _emit(db_session, aggregate_id, kind=events.ESCROW_CREATED):
    events.emit_event(
        db_session,
        aggregate_type="Escrow",
        aggregate_id=aggregate_id,
        kind=kind,
        to_status="PENDING",
        data={"source": "test"},
    )


def test_relay_delivers_in_order_once(db_session, collected):
    _emit(db_session, 1)
    _emit(db_session, 2, kind=events.ESCROW_FUNDED)
    db_session.commit()

    assert events.relay_pending_events_once(db_session) == 2
    assert collected == [("EscrowCreated", 1), ("EscrowFunded", 2)]

    assert events.relay_pending_events_once(db_session) == 0
    assert len(collected) == 2
    pending = db_session.scalars(select(DomainEvent).where(DomainEvent.dispatched_at.is_(None))).all()
    assert pending == []


def test_kind_listeners_only_see_their_kind(db_session):
    seen = []
    listener = seen.append
    events.subscribe(events.ESCROW_FUNDED, listener)
    try:
        _emit(db_session, 1)
        _emit(db_session, 2, kind=events.ESCROW_FUNDED)
        db_session.commit()
        events.relay_pending_events_once(db_session)
    finally:
        events.unsubscribe(events.ESCROW_FUNDED, listener)

    assert [event.aggregate_id for event in seen] == [2]


def test_listener_failure_keeps_event_pending(db_session, collected):
    calls = {"n": 0}

    def _flaky(event):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("report exporter offline")

    events.subscribe(events.ESCROW_CREATED, _flaky)
    try:
        _emit(db_session, 1)
        db_session.commit()

        assert events.relay_pending_events_once(db_session) == 0
        assert db_session.scalars(select(DomainEvent)).one().dispatched_at is None

        assert events.relay_pending_events_once(db_session) == 1
    finally:
        events.unsubscribe(events.ESCROW_CREATED, _flaky)

    assert db_session.scalars(select(DomainEvent)).one().dispatched_at is not None


def test_list_events_pages_by_id(db_session):
    for aggregate_id in range(1, 6):
        _emit(db_session, aggregate_id)
    _emit(db_session, 99, kind=events.DISPUTE_OPENED)
    db_session.commit()

    first_page = events.list_events(db_session, limit=2)
    assert [e.aggregate_id for e in first_page] == [1, 2]
    rest = events.list_events(db_session, after_id=first_page[-1].id, kind=events.ESCROW_CREATED)
    assert [e.aggregate_id for e in rest] == [3, 4, 5]
