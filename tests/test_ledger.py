"""Pool ledger and exit queue tests (pytest-free).

Validates token minting and burning, cash-bounded payouts, locked capital
conversions and FIFO settlement of queued withdrawals."""

from pool_sim.decisions import MANAGER_TYPES
from pool_sim.ledger import ExitQueue, PoolLedger
from pool_sim.state import ManagerAgent
from tests.utils import assert_close


# --- Derived quantities ------------------------------------------------------

def test_empty_pool_uses_nominal_defaults():
    """Zero tokens and zero value never divide by zero."""
    ledger = PoolLedger()
    assert ledger.pool_value(20_000.0) == 0.0
    assert ledger.token_price(20_000.0) == 1.0
    assert ledger.utilization(20_000.0) == 0.0


def test_pool_value_marks_locked_capital():
    ledger = PoolLedger(cash=1_000.0, locked_asset=0.5)
    assert_close(ledger.pool_value(20_000.0), 11_000.0)
    assert_close(ledger.utilization(20_000.0), 10_000.0 / 11_000.0)


# --- Deposits and burns ------------------------------------------------------

def test_first_deposit_mints_one_to_one():
    ledger = PoolLedger()
    minted = ledger.deposit(10_000.0, 20_000.0)
    assert_close(minted, 10_000.0)
    assert_close(ledger.cash, 10_000.0)
    assert_close(ledger.total_inflow, 10_000.0)


def test_deposit_mints_at_pre_deposit_token_price():
    """A deposit after a price gain buys fewer tokens per dollar."""
    ledger = PoolLedger()
    ledger.deposit(10_000.0, 20_000.0)
    ledger.lock_capital(5_000.0, 20_000.0)

    # Locked capital doubles in value: pool 15_000 over 10_000 tokens
    assert_close(ledger.token_price(40_000.0), 1.5)
    minted = ledger.deposit(3_000.0, 40_000.0)
    assert_close(minted, 2_000.0)
    assert_close(ledger.token_price(40_000.0), 1.5)


def test_burn_values_tokens_without_moving_cash():
    ledger = PoolLedger()
    ledger.deposit(10_000.0, 20_000.0)
    value = ledger.burn(4_000.0, 20_000.0)
    assert_close(value, 4_000.0)
    assert_close(ledger.total_tokens, 6_000.0)
    assert_close(ledger.cash, 10_000.0)


def test_outstanding_tokens_in_worthless_pool_block_deposits():
    ledger = PoolLedger(total_tokens=500.0)
    assert not ledger.accepts_deposits(20_000.0)
    assert ledger.deposit(1_000.0, 20_000.0) == 0.0
    assert ledger.cash == 0.0
    assert_close(ledger.total_tokens, 500.0)
    assert ledger.total_inflow == 0.0


def test_withdraw_never_exceeds_cash():
    ledger = PoolLedger(cash=500.0)
    paid = ledger.withdraw(800.0)
    assert_close(paid, 500.0)
    assert ledger.cash == 0.0
    assert ledger.withdraw(100.0) == 0.0
    assert_close(ledger.total_outflow, 500.0)


# --- Locked capital ----------------------------------------------------------

def test_lock_and_unlock_capital():
    ledger = PoolLedger(cash=10_000.0)
    qty = ledger.lock_capital(8_000.0, 20_000.0)
    assert_close(qty, 0.4)
    assert_close(ledger.cash, 2_000.0)

    usd = ledger.unlock_capital(qty, 25_000.0)
    assert_close(usd, 10_000.0)
    assert ledger.locked_asset == 0.0
    assert_close(ledger.cash, 12_000.0)


def test_receive_adds_cash_without_tokens():
    ledger = PoolLedger()
    ledger.receive(2_500.0)
    assert_close(ledger.cash, 2_500.0)
    assert ledger.total_tokens == 0.0
    assert_close(ledger.total_inflow, 2_500.0)


# --- Exit queue --------------------------------------------------------------

def _queue_with(*owners):
    queue = ExitQueue()
    for owner_id, amount in owners:
        queue.enqueue(owner_id, "investor", amount, requested_tokens=amount, total_usd=amount, paid_usd=0.0, step=1)
    return queue


def test_drain_pays_oldest_entry_first():
    queue = _queue_with(("inv_a", 300.0), ("inv_b", 200.0))
    ledger = PoolLedger(cash=400.0)

    settlements = queue.drain(ledger)

    assert [s.entry.owner_id for s in settlements] == ["inv_a", "inv_b"]
    assert settlements[0].cleared and not settlements[1].cleared
    assert_close(settlements[1].paid, 100.0)
    assert len(queue) == 1
    assert_close(queue.backlog_usd(), 100.0)
    assert ledger.cash == 0.0


def test_drain_without_cash_is_noop():
    queue = _queue_with(("inv_a", 300.0))
    assert queue.drain(PoolLedger()) == []
    assert_close(queue.backlog_usd(), 300.0)


def test_remaining_is_non_increasing_across_drains():
    queue = _queue_with(("inv_a", 1_000.0))
    ledger = PoolLedger()
    remaining = [queue.backlog_usd()]
    for inflow in (100.0, 0.0, 250.0, 700.0):
        ledger.receive(inflow)
        queue.drain(ledger)
        remaining.append(queue.backlog_usd())
    assert all(a >= b for a, b in zip(remaining, remaining[1:]))
    assert len(queue) == 0
    assert_close(ledger.cash, 50.0)


def test_enqueue_updates_existing_owner_entry():
    queue = _queue_with(("inv_a", 300.0))
    queue.enqueue("inv_a", "investor", 50.0, requested_tokens=50.0, total_usd=50.0, paid_usd=0.0, step=2)
    assert len(queue) == 1
    assert_close(queue.find("inv_a").remaining_usd, 350.0)


def test_snapshot_returns_copies():
    queue = _queue_with(("inv_a", 300.0))
    snapshot = queue.snapshot()
    snapshot[0].remaining_usd = 0.0
    assert_close(queue.backlog_usd(), 300.0)


# --- Manager claims ----------------------------------------------------------

def _open_position(ledger, stake=1_000.0, price=20_000.0, fee_rate=0.2):
    ledger.receive(stake)
    qty = ledger.lock_capital(2 * stake, price)
    manager = ManagerAgent(
        id="mgr_0",
        agent_type=MANAGER_TYPES[1],
        stake=stake,
        pool_match=stake,
        asset_qty=qty,
        entry_price=price,
        entry_step=0,
        fee_rate=fee_rate,
    )
    ledger.open_position(manager)
    return manager


def test_open_position_claims_exclude_stake_from_token_price():
    ledger = PoolLedger()
    ledger.deposit(3_000.0, 20_000.0)
    _open_position(ledger)

    assert_close(ledger.pool_value(20_000.0), 4_000.0)
    assert_close(ledger.manager_claims(20_000.0), 1_000.0)
    assert_close(ledger.net_asset_value(20_000.0), 3_000.0)
    assert_close(ledger.token_price(20_000.0), 1.0)


def test_claims_mark_the_manager_share_of_gains():
    ledger = PoolLedger()
    ledger.deposit(3_000.0, 20_000.0)
    _open_position(ledger)

    # Position worth 2_400: manager is owed 1_000 + 20% of the 400 gain
    assert_close(ledger.manager_claims(24_000.0), 1_080.0)
    assert_close(ledger.token_price(24_000.0), (4_400.0 - 1_080.0) / 3_000.0)


def test_closed_position_leaves_no_claim():
    ledger = PoolLedger()
    ledger.deposit(3_000.0, 20_000.0)
    manager = _open_position(ledger)
    ledger.close_position(manager.id)
    assert ledger.manager_claims(20_000.0) == 0.0
