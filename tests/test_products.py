import pytest
from sqlalchemy.exc import OperationalError

from storefront import crud
from storefront.errors import Unavailable, ValidationFailed
from storefront.models import Product


def test_duplicate_name_is_rejected_case_insensitively(db):
    crud.create_product(db, {"name": "Rosa Blanca", "price": 12000, "stock": 4})

    with pytest.raises(ValidationFailed):
        crud.create_product(db, {"name": "  rosa blanca ", "price": 9000, "stock": 1})


def test_concurrent_create_with_same_name_is_a_validation_error(db, monkeypatch):
    crud.create_product(db, {"name": "Girasol", "price": 8000, "stock": 2})
    # the uniqueness pre-check ran before the other create committed
    monkeypatch.setattr(crud, "get_product_by_name", lambda db_, name: None)

    with pytest.raises(ValidationFailed) as exc:
        crud.create_product(db, {"name": "Girasol", "price": 8000, "stock": 2})

    assert exc.value.extra["field"] == "name"
    assert db.query(Product).count() == 1


def test_rename_onto_existing_name_after_race_is_a_validation_error(db, monkeypatch):
    crud.create_product(db, {"name": "Tulipan", "price": 5000, "stock": 2})
    other = crud.create_product(db, {"name": "Lirio", "price": 5000, "stock": 2})
    monkeypatch.setattr(crud, "get_product_by_name", lambda db_, name: None)

    with pytest.raises(ValidationFailed):
        crud.update_product(db, other.id, {"name": "Tulipan"})

    assert crud.get_product(db, other.id).name == "Lirio"


def test_database_outage_on_stock_update_is_unavailable(db, make_product, monkeypatch):
    product = make_product(stock=3)

    def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("server closed the connection"))

    monkeypatch.setattr(db, "commit", broken_commit)
    with pytest.raises(Unavailable):
        crud.set_stock(db, product.id, 10)
    monkeypatch.undo()

    assert crud.get_product(db, product.id).stock == 3


def test_negative_stock_is_rejected(db, make_product):
    product = make_product(stock=3)
    with pytest.raises(ValidationFailed):
        crud.set_stock(db, product.id, -1)
