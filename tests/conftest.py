from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel

from app.domain.permissions import Role
from app.infra import db
from tests.factories import People, add_user


@pytest.fixture()
def engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[Engine, None, None]:
    test_engine = db.build_engine(f"sqlite:///{tmp_path / 'vouchers_test.db'}")
    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture()
def people(engine: Engine) -> People:
    fls = add_user(engine, "fls", Role.SUPERVISOR, position="FLS")
    supervisor = add_user(engine, "sup-s", Role.SUPERVISOR, position="SCSI", fls_supervisor_id=fls.user_id)
    other = add_user(engine, "sup-x", Role.SUPERVISOR, position="SCSI", fls_supervisor_id=fls.user_id)
    fleet = add_user(engine, "fleet-f", Role.FLEET_MANAGER)
    admin = add_user(engine, "admin", Role.ADMIN)
    inspector = add_user(
        engine,
        "inspector-i",
        Role.INSPECTOR,
        position="CSI",
        assigned_supervisor_id=supervisor.user_id,
    )
    return People(
        fls=fls,
        supervisor=supervisor,
        other_supervisor=other,
        fleet=fleet,
        admin=admin,
        inspector=inspector,
    )
