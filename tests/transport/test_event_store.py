import time

import pytest

from relay_mcp.transport.event_store import EventId, InMemoryEventStore
from relay_mcp.types.json_rpc import JSONRPCMessage, JSONRPCNotification

pytestmark = pytest.mark.anyio


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _note(n: int) -> JSONRPCNotification:
    return JSONRPCNotification(method="notifications/message", params={"n": n})


async def _replay(store: InMemoryEventStore, last_event_id: str) -> tuple[str | None, list[tuple[str, int]]]:
    seen: list[tuple[str, int]] = []

    async def collect(event_id: str, message: JSONRPCMessage) -> None:
        assert isinstance(message, JSONRPCNotification)
        seen.append((event_id, message.params["n"]))  # type: ignore[index]

    stream_id = await store.replay_events_after(last_event_id, collect)
    return stream_id, seen


# --- EventId ---


def test_event_id_round_trips_through_wire_form():
    event_id = EventId("abc123", 42)
    assert str(event_id) == "abc123/00000000000000000042"
    assert EventId.parse(str(event_id)) == event_id


def test_event_id_parse_splits_on_last_separator():
    assert EventId.parse("tenant/a/b/00000000000000000007") == EventId("tenant/a/b", 7)


@pytest.mark.parametrize(
    "value",
    ["", "no-separator", "/00000000000000000001", "stream/1", "stream/0000000000000000000x", "stream/"],
)
def test_event_id_parse_rejects_malformed_values(value: str):
    assert EventId.parse(value) is None


def test_event_id_wire_forms_sort_in_arrival_order():
    ids = [EventId("s", n) for n in (9, 10, 100, 2)]
    assert sorted(str(i) for i in ids) == [str(i) for i in sorted(ids)]


# --- InMemoryEventStore ---


async def test_replay_returns_events_after_the_given_id_in_order():
    store = InMemoryEventStore()
    ids = [await store.store_event("s1", _note(n)) for n in range(4)]

    stream_id, seen = await _replay(store, ids[1])

    assert stream_id == "s1"
    assert seen == [(ids[2], 2), (ids[3], 3)]


async def test_replay_after_last_event_returns_stream_with_nothing_to_send():
    store = InMemoryEventStore()
    last = await store.store_event("s1", _note(0))

    stream_id, seen = await _replay(store, last)

    assert stream_id == "s1"
    assert seen == []


async def test_replay_only_includes_events_of_the_same_stream():
    store = InMemoryEventStore()
    first = await store.store_event("s1", _note(0))
    await store.store_event("s2", _note(100))
    second = await store.store_event("s1", _note(1))

    _, seen = await _replay(store, first)

    assert seen == [(second, 1)]


async def test_event_ids_increase_across_streams():
    store = InMemoryEventStore()
    a = EventId.parse(await store.store_event("s1", _note(0)))
    b = EventId.parse(await store.store_event("s2", _note(0)))
    c = EventId.parse(await store.store_event("s1", _note(1)))
    assert a is not None and b is not None and c is not None
    assert a.sequence < b.sequence < c.sequence


@pytest.mark.parametrize("last_event_id", ["garbage", "s1/99999999999999999999", "unknown/00000000000000000001"])
async def test_replay_of_unknown_id_returns_none(last_event_id: str):
    store = InMemoryEventStore()
    await store.store_event("s1", _note(0))

    stream_id, seen = await _replay(store, last_event_id)

    assert stream_id is None
    assert seen == []


async def test_oldest_events_are_evicted_when_stream_is_full():
    store = InMemoryEventStore(max_events_per_stream=2)
    ids = [await store.store_event("s1", _note(n)) for n in range(3)]

    assert store.event_count("s1") == 2
    assert await _replay(store, ids[0]) == (None, [])
    assert await _replay(store, ids[1]) == ("s1", [(ids[2], 2)])


async def test_events_expire_after_ttl():
    clock = FakeClock()
    store = InMemoryEventStore(event_ttl=60, clock=clock)
    old = await store.store_event("s1", _note(0))
    clock.now += 30
    fresh = await store.store_event("s1", _note(1))

    clock.now += 45
    assert await _replay(store, old) == (None, [])
    assert await _replay(store, fresh) == ("s1", [])

    clock.now += 60
    assert await _replay(store, fresh) == (None, [])
    assert store.stream_count == 0


async def test_purge_removes_stream_and_ids_are_not_reused():
    store = InMemoryEventStore()
    before = await store.store_event("s1", _note(0))
    await store.purge_stream("s1")
    await store.purge_stream("never-existed")

    assert store.stream_count == 0
    assert await _replay(store, before) == (None, [])

    after = await store.store_event("s1", _note(1))
    assert after != before
    assert EventId.parse(after) > EventId.parse(before)  # type: ignore[operator]


async def test_events_stored_during_replay_are_not_part_of_it():
    store = InMemoryEventStore()
    first = await store.store_event("s1", _note(0))
    await store.store_event("s1", _note(1))
    seen: list[str] = []

    async def collect(event_id: str, message: JSONRPCMessage) -> None:
        seen.append(event_id)
        await store.store_event("s1", _note(99))

    await store.replay_events_after(first, collect)

    assert len(seen) == 1
    assert store.event_count("s1") == 3


@pytest.mark.parametrize("kwargs", [{"max_events_per_stream": 0}, {"event_ttl": -1}])
def test_invalid_bounds_are_rejected(kwargs: dict[str, float]):
    with pytest.raises(ValueError):
        InMemoryEventStore(**kwargs)  # type: ignore[arg-type]


async def test_storing_does_not_expire_other_streams():
    clock = FakeClock()
    store = InMemoryEventStore(event_ttl=60, clock=clock)
    await store.store_event("idle", _note(0))
    clock.now += 120

    await store.store_event("busy", _note(1))

    assert store.event_count("idle") == 1
    assert store.stream_count == 2


async def test_expire_events_sweeps_every_stream():
    clock = FakeClock()
    store = InMemoryEventStore(event_ttl=60, clock=clock)
    await store.store_event("s1", _note(0))
    await store.store_event("s2", _note(1))
    clock.now += 30
    kept = await store.store_event("s2", _note(2))
    clock.now += 45

    assert await store.expire_events() == 2
    assert store.stream_count == 1
    assert store.event_count("s2") == 1
    assert await _replay(store, kept) == ("s2", [])


async def test_expire_events_without_ttl_keeps_everything():
    store = InMemoryEventStore()
    await store.store_event("s1", _note(0))

    assert await store.expire_events() == 0
    assert store.event_count("s1") == 1


async def test_store_cost_does_not_grow_with_store_size():
    clock = FakeClock()
    store = InMemoryEventStore(max_events_per_stream=100, event_ttl=3600, clock=clock)
    started = time.monotonic()
    for n in range(50_000):
        clock.now += 0.001
        await store.store_event(f"s{n % 500}", _note(n))

    assert time.monotonic() - started < 5
    assert store.stream_count == 500
    assert store.event_count("s0") == 100
