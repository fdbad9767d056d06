import random

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from beergame import models
from beergame.db.session import configure_sqlite_engine
from beergame.services.events import GameEventBus
from beergame.services.game_service import GameService
from beergame.tests.helpers import seat_all


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    configure_sqlite_engine(engine)
    models.Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        models.Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def events():
    """Private event bus that records everything published on it."""
    bus = GameEventBus()
    received = []
    bus.subscribe(received.append)
    bus.received = received
    return bus


@pytest.fixture()
def service(db_session, session_factory, events):
    return GameService(db_session, session_factory=session_factory, notifier=events, rng=random.Random(7))


@pytest.fixture()
def make_game(service):
    """Create, seat and start a game; keyword arguments go to ``GameCreate``."""

    def _make(ai_roles=(), start=True, **config):
        config.setdefault("total_weeks", 3)
        game = service.create_game(config)
        game = seat_all(service, game, ai_roles=ai_roles)
        if start:
            game = service.start_game(game.id)
        return game

    return _make

