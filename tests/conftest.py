"""Pytest configuration and shared fixtures.

Database fixtures run against a throwaway SQLite file per test. The engine
opens its own sessions, so tests commit their arranged data through
``db_session`` before calling into it.
"""

from types import SimpleNamespace

import pytest

from backoffice.core.config import Settings
from backoffice.core.workflow.service import create_workflow_service
from backoffice.db.base import Base
from backoffice.db import models  # noqa: F401  (registers tables on Base.metadata)
from backoffice.db.session import create_db_engine, create_session_factory
from backoffice.db.tenancy import TenantScope
from tests.doubles import RecordingNotifier
from tests.factories import create_organization, create_role, create_user


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'backoffice.db'}",
        log_dir=str(tmp_path / "logs"),
        log_to_file=False,
        app_base_url="https://erp.example.com",
    )


@pytest.fixture
def engine(settings):
    engine = create_db_engine(settings.database_url, echo=False)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    """Session for arranging and inspecting data. Commit before acting."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def scope(session_factory):
    return TenantScope(session_factory)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def workflow_service(settings, session_factory, notifier):
    return create_workflow_service(settings=settings, session_factory=session_factory, notifier=notifier)


@pytest.fixture
def purchasing(db_session):
    """An organization with a requester, two approver roles and an outsider.

    Committed, so engine sessions can see it.
    """
    org = create_organization(db_session, name="Ferretería Central")
    comprador = create_role(db_session, org=org, code="comprador", permissions=["ordenes_compra:create"])
    gerente = create_role(db_session, org=org, code="gerente", permissions=["ordenes_compra:approve"])
    director = create_role(db_session, org=org, code="director", permissions=["ordenes_compra:*"])

    director_user = create_user(db_session, org=org, role=director, name="Diana Director")
    manager = create_user(db_session, org=org, role=gerente, name="Gabriel Gerente", supervisor=director_user)
    requester = create_user(db_session, org=org, role=comprador, name="Carla Compras", supervisor=manager)
    outsider = create_user(db_session, org=org, role=comprador, name="Oscar Otro")
    db_session.commit()

    return SimpleNamespace(
        org=org,
        roles=SimpleNamespace(comprador=comprador, gerente=gerente, director=director),
        requester=requester,
        manager=manager,
        director=director_user,
        outsider=outsider,
    )
