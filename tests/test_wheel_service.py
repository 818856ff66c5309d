import pytest

from fairsettle.domain import wheel_rules
from fairsettle.domain.errors import AlreadySettled, InvalidRoundState, RoundAlreadyClosed, SeatTaken
from fairsettle.payout_ledger import HOUSE
from fairsettle.services.wheel_service import WheelService, wheel_ref


@pytest.fixture
async def players(ledger):
    for user in ("alice", "bob", "carol"):
        await ledger.deposit(user, 10000, f"seed-{user}")
    return ledger


async def test_open_round_is_idempotent(wheel, notifier):
    first = await wheel.open_round()
    again = await wheel.open_round()
    assert first.round_number == 1
    assert first.status == "betting"
    assert again.round_id == first.round_id
    assert len(notifier.named("wheel:opened")) == 1
    assert "server_seed_hash" in notifier.named("wheel:opened")[0]


async def test_full_round(wheel, players, seeds, notifier):
    current = await wheel.open_round()
    await wheel.place_bet("alice", current.round_id, 0, 100)
    await wheel.place_bet("bob", current.round_id, 9, 200)
    await wheel.place_bet("carol", current.round_id, 11, 50)
    with pytest.raises(SeatTaken):
        await wheel.place_bet("carol", current.round_id, 0, 100)

    closed = await wheel.close_betting(current.round_id)
    assert closed.status == "spinning"
    assert len(closed.boosts) == 3
    with pytest.raises(InvalidRoundState):
        await wheel.place_bet("carol", current.round_id, 3, 100)

    done = await wheel.spin(current.round_id)
    assert done.status == "completed"
    revealed = await seeds.revealed_seed(done.commitment_id)
    segment = wheel_rules.resolve_segment(revealed.hybrid_seed)
    assert done.winning_segment == segment
    boosts = {int(k): v for k, v in done.boosts.items()}
    assert boosts == wheel_rules.resolve_boosts(revealed.hybrid_seed)

    paid = 0
    for seat in done.seats:
        expected = wheel_rules.seat_payout(seat.seat_index, seat.bet, segment, boosts)
        assert seat.payout == expected
        assert await players.read_balance(seat.user_id) == 10000 - seat.bet + expected
        paid += expected
    assert await players.read_balance(HOUSE) == 350 - paid
    assert await players.round_total(wheel_ref(current.round_id)) == 0

    result = notifier.named("wheel:result")[0]
    assert result["revealed"]["server_seed"] == revealed.server_seed
    nxt = await wheel.current_round()
    assert nxt.round_number == 2
    assert nxt.status == "betting"

    with pytest.raises(AlreadySettled):
        await wheel.spin(current.round_id)
    with pytest.raises(RoundAlreadyClosed):
        await wheel.place_bet("alice", current.round_id, 5, 100)


async def test_round_without_bets_completes_on_close(wheel, notifier):
    current = await wheel.open_round()
    closed = await wheel.close_betting(current.round_id)
    assert closed.status == "completed"
    assert closed.winning_segment is None
    assert len(notifier.named("wheel:completed")) == 1
    assert (await wheel.current_round()).round_number == 2


async def test_spin_due_runs_both_transitions_once(wheel, players):
    current = await wheel.open_round()
    await wheel.place_bet("alice", current.round_id, 4, 100)
    await wheel.spin_due(current.round_id)
    await wheel.spin_due(current.round_id)
    done = await wheel.read_round(current.round_id)
    assert done.status == "completed"
    assert await players.round_total(wheel_ref(current.round_id)) == 0


async def test_bets_after_the_deadline_are_refused(Session, ledger, seeds, notifier, players):
    wheel = WheelService(Session, ledger, seeds, notifier, betting_seconds=0)
    current = await wheel.open_round()
    with pytest.raises(InvalidRoundState):
        await wheel.place_bet("alice", current.round_id, 0, 100)
    assert await ledger.read_balance("alice") == 10000


async def test_spinning_requires_closed_betting(wheel):
    current = await wheel.open_round()
    with pytest.raises(InvalidRoundState):
        await wheel.spin(current.round_id)


class RecordingScheduler:
    def __init__(self):
        self.jobs = {}

    def add_job(self, func, trigger, run_date=None, args=None, id=None, **kwargs):
        self.jobs[id] = (func.__name__, run_date, args)


async def test_restore_timers_opens_the_first_round(Session, ledger, seeds, notifier):
    scheduler = RecordingScheduler()
    wheel = WheelService(Session, ledger, seeds, notifier, scheduler=scheduler)
    await wheel.restore_timers()
    current = await wheel.current_round()
    assert current.round_number == 1
    assert scheduler.jobs[f"wheel-close-{current.round_id}"][0] == "close_betting"
    assert scheduler.jobs[f"wheel-spin-{current.round_id}"][0] == "spin_due"


async def test_restore_timers_reschedules_an_unfinished_round(Session, ledger, seeds, notifier, wheel):
    current = await wheel.open_round()
    scheduler = RecordingScheduler()
    restarted = WheelService(Session, ledger, seeds, notifier, scheduler=scheduler)
    await restarted.restore_timers()
    assert set(scheduler.jobs) == {f"wheel-close-{current.round_id}", f"wheel-spin-{current.round_id}"}
    assert scheduler.jobs[f"wheel-spin-{current.round_id}"][2] == [current.round_id]
    assert (await restarted.current_round()).round_id == current.round_id
