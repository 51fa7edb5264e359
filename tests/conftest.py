"""Shared fixtures: an in-memory database and its repositories."""

import pytest

from ralph.db.drafts import EpicDraftRepository
from ralph.db.epics import EpicRepository
from ralph.db.session import open_database


@pytest.fixture
def db():
    database = open_database("sqlite://")
    yield database
    database.dispose()


@pytest.fixture
def epics(db):
    return EpicRepository(db)


@pytest.fixture
def drafts(db):
    return EpicDraftRepository(db)
