import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from dispense.db.models import Base, Machine, MachineProduct, Product
from dispense.main import app, get_db


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def machine(db):
    m = Machine(id="m1", mac_id="C0:CD:D6:84:85:DC", machine_id="LNT-001", name="Lobby Napkins")
    db.add(m)
    db.commit()
    return m


@pytest.fixture
def napkin(db, machine):
    product = Product(id="p-napkin", name="napkin-xl", description="Extra large napkin", price=50.0)
    db.add(product)
    db.add(MachineProduct(id="mp-1", machine_id=machine.id, product_id=product.id, price=50.0, stock=10))
    db.commit()
    return product
