from __future__ import annotations

from sqlmodel import Session, SQLModel, create_engine, select

from taskflow.domain.models import EventEnvelope, EventRecord
from taskflow.infra import events
from taskflow.infra.context import set_request_context
from taskflow.infra.events import EventBus


def test_event_bus_publish_and_subscribe() -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)

    bus = EventBus()
    seen: list[str] = []

    def handler(event: EventEnvelope) -> None:
        seen.append(event.event_id)

    event = EventEnvelope(
        event_type="task.created",
        payload={"task_id": "task-1", "task_no": "T-11101"},
    )
    bus.subscribe("task.created", handler)

    with Session(engine) as session:
        bus.publish(event, session=session)
        session.commit()

    with Session(engine) as session:
        stored = session.exec(select(EventRecord)).all()

    assert len(stored) == 1
    assert stored[0].event_id == event.event_id
    assert stored[0].payload["task_no"] == "T-11101"
    assert seen == [event.event_id]

    bus.unsubscribe("task.created", handler)
    with Session(engine) as session:
        bus.publish(EventEnvelope(event_type="task.created", payload={}), session=session)
        session.commit()
    assert seen == [event.event_id]


def test_failing_handler_does_not_block_other_subscribers() -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)

    bus = EventBus()
    seen: list[str] = []

    def broken(event: EventEnvelope) -> None:
        raise RuntimeError("handler exploded")

    def wildcard(event: EventEnvelope) -> None:
        seen.append(event.event_type)

    bus.subscribe("task.completed", broken)
    bus.subscribe("*", wildcard)

    with Session(engine) as session:
        bus.publish(EventEnvelope(event_type="task.completed", payload={}), session=session)
        session.commit()

    assert seen == ["task.completed"]


def test_namespace_subscribers_receive_nested_types() -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)

    bus = EventBus()
    seen: list[tuple[str, str]] = []
    bus.subscribe("task.*", lambda event: seen.append(("task.*", event.event_type)))
    bus.subscribe("task.acceptance.*", lambda event: seen.append(("task.acceptance.*", event.event_type)))
    bus.subscribe("notification.*", lambda event: seen.append(("notification.*", event.event_type)))

    with Session(engine) as session:
        bus.publish(EventEnvelope(event_type="task.acceptance.updated", payload={}), session=session)
        bus.publish(EventEnvelope(event_type="task.created", payload={}), session=session)
        session.commit()

    assert seen == [
        ("task.acceptance.*", "task.acceptance.updated"),
        ("task.*", "task.acceptance.updated"),
        ("task.*", "task.created"),
    ]


def test_publish_dict_uses_request_actor(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)
    monkeypatch.setattr(events, "engine", engine)

    set_request_context("user-42", "HR")
    try:
        envelope = EventBus().publish_dict("task.reminded", {"task_id": "task-9"})
    finally:
        set_request_context(None, None)

    assert envelope.actor_id == "user-42"
    with Session(engine) as session:
        stored = session.exec(select(EventRecord)).one()
    assert stored.actor_id == "user-42"
    assert stored.event_type == "task.reminded"
