from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from fairsettle.domain.errors import (
    AlreadyJoined,
    AlreadySettled,
    InsufficientBalance,
    InvalidRoundState,
    NotRoundCreator,
    ParticipantsNotReady,
    RoundAlreadyClosed,
    RoundFull,
    RoundNotFound,
)
from fairsettle.domain.seed_combiner import hash_server_seed
from fairsettle.domain.ticket_rules import draw_ticket
from fairsettle.payout_ledger import HOUSE
from fairsettle.services.settlement_orchestrator import SettlementOrchestrator, battle_ref

COIN = [{"name": "coin", "value": 700, "chance": "100"}]
MIXED = [
    {"name": "pebble", "value": 100, "chance": "70"},
    {"name": "ruby", "value": 2500, "chance": "30"},
]


@pytest.fixture
async def funded(ledger):
    for user in ("alice", "bob", "carol", "dave"):
        await ledger.deposit(user, 5000, f"seed-{user}")
    return ledger


async def test_tie_splits_the_pot_and_house_keeps_the_rest(orchestrator, funded, make_case, notifier):
    case_id = await make_case("coin", 1000, COIN)
    battle = await orchestrator.create_round("alice", [case_id])
    assert battle.status == "waiting"
    assert await funded.read_balance("alice") == 4000

    battle = await orchestrator.join_round("bob", battle.battle_id)
    assert battle.status == "opened"
    assert battle.pot == 2000

    result = await orchestrator.settle_round(battle.battle_id)
    assert result.winners == ["alice", "bob"]
    assert result.shares == {"alice": "700", "bob": "700"}
    assert result.payouts == {"alice": 700, "bob": 700}
    assert result.balance_deltas == {"alice": -300, "bob": -300}
    assert result.house_delta == 600
    assert result.revealed is not None

    assert await funded.read_balance("alice") == 4700
    assert await funded.read_balance("bob") == 4700
    assert await funded.read_balance(HOUSE) == 600
    assert await funded.round_total(battle_ref(battle.battle_id)) == 0

    ended = await orchestrator.read_round(battle.battle_id)
    assert ended.status == "ended"
    assert ended.winning_teams == [1, 2]
    assert ended.team_totals == {"1": 700, "2": 700}
    published = notifier.named("battle:ended")
    assert len(published) == 1
    assert published[0]["result"]["house_delta"] == 600


async def test_tiebreak_picks_one_team(orchestrator, funded, make_case):
    case_id = await make_case("coin", 1000, COIN)
    battle = await orchestrator.create_round("alice", [case_id])
    await orchestrator.join_round("bob", battle.battle_id)
    result = await orchestrator.settle_round(battle.battle_id, tiebreak_team=2)
    assert result.winners == ["bob"]
    assert result.payouts == {"bob": 1400}
    assert await funded.read_balance("bob") == 5400
    assert await funded.read_balance(HOUSE) == 600


async def test_settled_battle_leaves_no_lock_entries(orchestrator, funded, make_case):
    case_id = await make_case("coin", 1000, COIN)
    battle = await orchestrator.create_round("alice", [case_id])
    await orchestrator.join_round("bob", battle.battle_id)
    await orchestrator.settle_round(battle.battle_id)
    assert funded.lock_manager.locks == {}
    assert funded.lock_manager.holders == {}


async def test_second_settle_changes_nothing(orchestrator, funded, make_case):
    case_id = await make_case("coin", 1000, COIN)
    battle = await orchestrator.create_round("alice", [case_id])
    await orchestrator.join_round("bob", battle.battle_id)
    await orchestrator.settle_round(battle.battle_id)

    with pytest.raises(AlreadySettled):
        await orchestrator.settle_round(battle.battle_id)
    with pytest.raises(RoundAlreadyClosed):
        await orchestrator.join_round("carol", battle.battle_id)
    assert await funded.read_balance("alice") == 4700
    assert await funded.read_balance("carol") == 5000


async def test_join_without_funds_leaves_no_trace(orchestrator, ledger, funded, make_case):
    case_id = await make_case("coin", 1000, COIN)
    battle = await orchestrator.create_round("alice", [case_id])
    with pytest.raises(InsufficientBalance):
        await orchestrator.join_round("pauper", battle.battle_id)
    battle = await orchestrator.read_round(battle.battle_id)
    assert battle.status == "waiting"
    assert [p.user_id for p in battle.participants] == ["alice"]
    assert battle.pot == 1000


async def test_seats_and_teams(orchestrator, funded, make_case):
    case_id = await make_case("coin", 500, COIN)
    battle = await orchestrator.create_round("alice", [case_id], team_size=2)
    assert battle.max_players == 4
    with pytest.raises(AlreadyJoined):
        await orchestrator.join_round("alice", battle.battle_id)

    battle = await orchestrator.join_round("bob", battle.battle_id)
    assert battle.status == "active"
    assert {p.user_id: p.team for p in battle.participants} == {"alice": 1, "bob": 2}

    await orchestrator.join_round("carol", battle.battle_id, team=1)
    with pytest.raises(RoundFull):
        await orchestrator.join_round("dave", battle.battle_id, team=1)
    battle = await orchestrator.join_round("dave", battle.battle_id)
    assert battle.status == "opened"
    assert sorted(p.seat for p in battle.participants) == [0, 1, 2, 3]
    assert battle.pot == 2000


async def test_bots_are_creator_only_and_their_share_stays_home(orchestrator, funded, make_case):
    case_id = await make_case("coin", 1000, COIN)
    battle = await orchestrator.create_round("alice", [case_id])
    with pytest.raises(NotRoundCreator):
        await orchestrator.fill_synthetic("bob", battle.battle_id)

    battle = await orchestrator.fill_synthetic("alice", battle.battle_id)
    assert battle.status == "opened"
    bot = [p for p in battle.participants if p.is_bot][0]
    assert bot.user_id == "bot_1"
    assert bot.stake == 0

    result = await orchestrator.settle_round(battle.battle_id)
    assert result.payouts == {"alice": 700, "bot_1": 700}
    assert result.balance_deltas == {"alice": -300}
    assert result.house_delta == 300
    assert await funded.read_balance("alice") == 4700
    assert await funded.read_balance(HOUSE) == 300
    assert await funded.round_total(battle_ref(battle.battle_id)) == 0


async def test_lock_needs_both_teams_and_ready_players(orchestrator, funded, make_case):
    case_id = await make_case("coin", 1000, COIN)
    battle = await orchestrator.create_round("alice", [case_id], team_size=2)
    with pytest.raises(ParticipantsNotReady):
        await orchestrator.lock_round("alice", battle.battle_id)

    await orchestrator.join_round("bob", battle.battle_id)
    with pytest.raises(NotRoundCreator):
        await orchestrator.lock_round("bob", battle.battle_id)
    with pytest.raises(ParticipantsNotReady):
        await orchestrator.lock_round("alice", battle.battle_id)

    await orchestrator.set_ready("alice", battle.battle_id)
    await orchestrator.set_ready("bob", battle.battle_id)
    with pytest.raises(RoundNotFound):
        await orchestrator.set_ready("carol", battle.battle_id)

    battle = await orchestrator.lock_round("alice", battle.battle_id)
    assert battle.status == "opened"
    assert battle.locked_at is not None


async def test_cannot_settle_before_the_battle_is_opened(orchestrator, funded, make_case):
    case_id = await make_case("coin", 1000, COIN)
    battle = await orchestrator.create_round("alice", [case_id])
    with pytest.raises(InvalidRoundState):
        await orchestrator.settle_round(battle.battle_id)
    with pytest.raises(RoundNotFound):
        await orchestrator.settle_round(uuid4())


async def test_unknown_case(orchestrator, funded):
    with pytest.raises(RoundNotFound):
        await orchestrator.create_round("alice", [uuid4()])
    assert await funded.read_balance("alice") == 5000


async def test_recorded_tickets_verify_against_the_revealed_seed(orchestrator, funded, make_case):
    first = await make_case("mixed", 400, MIXED)
    second = await make_case("coin", 600, COIN)
    battle = await orchestrator.create_round("alice", [first, second])
    await orchestrator.join_round("bob", battle.battle_id)
    result = await orchestrator.settle_round(battle.battle_id)

    revealed = result.revealed
    assert hash_server_seed(revealed.server_seed) == revealed.server_seed_hash
    ended = await orchestrator.read_round(battle.battle_id)
    nonces = []
    for participant in ended.participants:
        assert len(participant.items) == 2
        for drawn in participant.items:
            assert drawn["ticket"] == draw_ticket(revealed.hybrid_seed, drawn["nonce"])
            nonces.append(drawn["nonce"])
        assert participant.total_value == sum(d["value"] for d in participant.items)
    assert sorted(nonces) == [0, 1, 2, 3]
    assert sum(result.payouts.values()) == sum(p.total_value for p in ended.participants)


async def test_joinable_list_respects_the_visibility_window(Session, ledger, seeds, notifier, funded, make_case):
    now = [datetime(2024, 1, 1, 12, 0, 0)]
    orchestrator = SettlementOrchestrator(Session, ledger, seeds, notifier, visibility_minutes=30, clock=lambda: now[0])
    case_id = await make_case("coin", 1000, COIN)
    battle = await orchestrator.create_round("alice", [case_id])

    assert [b.battle_id for b in await orchestrator.list_joinable()] == [battle.battle_id]
    now[0] += timedelta(minutes=31)
    assert await orchestrator.list_joinable() == []
