from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from beergame import models
from beergame.db.session import build_engine
from beergame.models.player import PlayerRole
from beergame.models.supply_chain import EntryKind, GameWeek, PipelineEntry
from beergame.services.events import GameEventBus
from beergame.services.game_service import GameService
from beergame.services.order_intake import OrderIntake
from beergame.services.settlement import SettlementTrigger
from beergame.services.topology import ROLE_SEQUENCE
from beergame.tests.helpers import seat_all

WORKERS = 8


@pytest.fixture()
def file_session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'race.db'}")
    models.Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    try:
        yield factory
    finally:
        engine.dispose()


def started_game(factory, **config):
    db = factory()
    try:
        service = GameService(db, session_factory=factory, notifier=GameEventBus())
        game = service.create_game(config)
        game = seat_all(service, game)
        return service.start_game(game.id).id
    finally:
        db.close()


def in_session(factory, fn):
    db = factory()
    try:
        return fn(db)
    finally:
        db.close()


def test_concurrent_checks_settle_the_week_once(file_session_factory):
    game_id = started_game(file_session_factory, total_weeks=5)

    def order_everyone(db):
        intake = OrderIntake(db)
        for role in ROLE_SEQUENCE:
            intake.submit(game_id, role, 4)

    in_session(file_session_factory, order_everyone)

    def check(_):
        return in_session(
            file_session_factory,
            lambda db: SettlementTrigger(db, notifier=GameEventBus()).check_and_settle(game_id),
        )

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        results = list(pool.map(check, range(WORKERS)))

    assert results.count(True) == 1

    def read_state(db):
        game = GameService(db, notifier=GameEventBus()).get_game_state(game_id)
        weeks = db.execute(select(func.count(GameWeek.id)).where(GameWeek.game_id == game_id)).scalar_one()
        return game.current_week, game.is_advancing_week, weeks

    assert in_session(file_session_factory, read_state) == (2, False, 1)


def test_concurrent_duplicate_orders_record_one(file_session_factory):
    game_id = started_game(file_session_factory)

    def submit(quantity):
        return in_session(
            file_session_factory,
            lambda db: OrderIntake(db).submit(game_id, PlayerRole.RETAILER, quantity).accepted,
        )

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        accepted = list(pool.map(submit, range(1, WORKERS + 1)))

    assert accepted.count(True) == 1

    def read_ledger(db):
        retailer = GameService(db, notifier=GameEventBus()).get_role_state(game_id, PlayerRole.RETAILER)
        entries = db.execute(
            select(func.count(PipelineEntry.id)).where(
                PipelineEntry.game_id == game_id,
                PipelineEntry.kind == EntryKind.ORDER,
            )
        ).scalar_one()
        return retailer.outgoing_order, retailer.order_count, entries

    outgoing, count, entries = in_session(file_session_factory, read_ledger)
    assert outgoing in range(1, WORKERS + 1)
    assert count == 1
    assert entries == 1


def test_last_orders_arriving_together_advance_one_week(file_session_factory):
    game_id = started_game(file_session_factory)

    def submit(role):
        return in_session(
            file_session_factory,
            lambda db: GameService(db, session_factory=file_session_factory, notifier=GameEventBus())
            .submit_order(game_id, role, 4)
            .accepted,
        )

    with ThreadPoolExecutor(max_workers=len(ROLE_SEQUENCE)) as pool:
        accepted = list(pool.map(submit, ROLE_SEQUENCE))

    assert accepted == [True, True, True, True]

    def read_week(db):
        return GameService(db, notifier=GameEventBus()).get_game_state(game_id).current_week

    assert in_session(file_session_factory, read_week) == 2
