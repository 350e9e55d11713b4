import time
from threading import Barrier, Thread

from conftest import at
from availability import AvailabilityChecker
from errors import SlotUnavailableError
from models import ReservationStatus
from reservation_engine import ReservationEngine
from store import InMemoryReservationStore


class SlowStore(InMemoryReservationStore):
    """Widens the window between the availability read and the insert."""

    def find_conflicts(self, *args, **kwargs):
        found = super().find_conflicts(*args, **kwargs)
        time.sleep(0.01)
        return found


def test_is_available_overlap_rules(engine, reservations):
    checker = AvailabilityChecker(reservations)
    r = engine.create_reservation("u1", "A1", at(6, 12), at(6, 14)).reservation

    assert not checker.is_available("A1", at(6, 13), at(6, 15))
    assert not checker.is_available("A1", at(6, 11), at(6, 12, 1))
    assert checker.is_available("A1", at(6, 14), at(6, 15))
    assert checker.is_available("A1", at(6, 10), at(6, 12))
    assert checker.is_available("A2", at(6, 12), at(6, 14))
    # a reservation never conflicts with itself
    assert checker.is_available("A1", at(6, 12), at(6, 14), exclude_reservation_id=r.reservation_id)


def test_finished_reservations_do_not_block(engine, reservations):
    checker = AvailabilityChecker(reservations)
    r = engine.create_reservation("u1", "A1", at(6, 12), at(6, 14)).reservation
    engine.check_in(r.confirmation_code)
    assert not checker.is_available("A1", at(6, 12), at(6, 14))
    engine.check_out(r.confirmation_code)
    assert checker.is_available("A1", at(6, 12), at(6, 14))


def test_concurrent_creation_admits_one(payments, slots, subscriptions, clock):
    store = SlowStore()
    engine = ReservationEngine(store, payments, slots, subscriptions, clock=clock)

    workers = 12
    barrier = Barrier(workers)
    admitted, rejected = [], []

    def attempt(i):
        barrier.wait()
        try:
            # every interval overlaps 13:00-14:00
            engine.create_reservation(f"user{i}", "A1", at(6, 12, i), at(6, 14))
            admitted.append(i)
        except SlotUnavailableError:
            rejected.append(i)

    threads = [Thread(target=attempt, args=(i,)) for i in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(admitted) == 1
    assert len(rejected) == workers - 1

    held = store.find_conflicts("A1", at(6, 0), at(7, 0))
    assert len(held) == 1
    assert held[0].status is ReservationStatus.CONFIRMED


def test_concurrent_creation_on_different_slots_all_succeed(payments, slots, subscriptions, clock):
    engine = ReservationEngine(SlowStore(), payments, slots, subscriptions, clock=clock)
    errors = []

    def attempt(slot_id):
        try:
            engine.create_reservation("u1", slot_id, at(6, 12), at(6, 14))
        except SlotUnavailableError as e:
            errors.append(e)

    threads = [Thread(target=attempt, args=(s,)) for s in ("A1", "A2")]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
