import pytest

from workunit.core import (
    BooleanField,
    Entity,
    EntityConfigurationError,
    FloatField,
    IntegerField,
    StringField,
)


class Product(Entity):
    name = StringField(nullable=False, max_length=20)
    price = FloatField(default=0.0)
    stock = IntegerField(default=0)
    active = BooleanField()


class Auditable(Entity):
    created_by = StringField()

    class Meta:
        abstract = True


class Invoice(Auditable):
    total = FloatField(default=0.0)

    class Meta:
        table = "invoices"


def test_identity_and_version_start_empty():
    product = Product(name="Lamp")
    assert product.id is None
    assert product.version is None
    assert product.active is False
    assert product.stock == 0


def test_table_name_defaults_to_snake_case():
    class OrderLine(Entity):
        quantity = IntegerField()

    assert OrderLine.table_name() == "order_line"
    assert Invoice.table_name() == "invoices"


def test_field_values_exclude_identity_and_version():
    product = Product(name="Lamp", price=9.5, id=3, version=2)
    assert product.field_values() == {"name": "Lamp", "price": 9.5, "stock": 0, "active": False}


def test_to_row_and_from_row_round_trip_columns():
    product = Product(name="Desk", price=120, stock=4, active=True, id=7, version=3)
    row = product.to_row()
    assert row == {"id": 7, "version": 3, "name": "Desk", "price": 120.0, "stock": 4, "active": 1}

    loaded = Product.from_row(row)
    assert loaded.id == 7
    assert loaded.version == 3
    assert loaded.active is True
    assert loaded.field_values() == product.field_values()


def test_from_row_ignores_unknown_columns():
    loaded = Product.from_row({"id": 1, "version": 1, "name": "Pen", "legacy_column": "x"})
    assert loaded.name == "Pen"


def test_abstract_base_fields_are_inherited():
    invoice = Invoice(created_by="ops", total=10)
    assert invoice.field_values() == {"created_by": "ops", "total": 10.0}
    assert [f.name for f in Invoice._meta.tracked_fields()] == ["created_by", "total"]


def test_reserved_field_names_rejected():
    with pytest.raises(EntityConfigurationError):

        class Broken(Entity):
            version = IntegerField()


def test_non_nullable_field_rejects_none():
    product = Product(name="Lamp")
    with pytest.raises(ValueError):
        product.name = None


def test_string_max_length_enforced():
    with pytest.raises(ValueError):
        Product(name="x" * 21)


def test_version_must_be_positive():
    with pytest.raises(ValueError):
        Product(name="Lamp", version=0)


def test_unknown_keyword_rejected():
    with pytest.raises(TypeError):
        Product(name="Lamp", colour="red")
