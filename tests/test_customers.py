import pytest

from service_tracker.errors import ConflictError, NotFoundError, ValidationError
from service_tracker.models import Address, CustomerFields, UnitFields
from service_tracker.services import customers, units


def _upsert(store, **kwargs):
    with store.transaction() as tx:
        return customers.upsert_customer(tx, CustomerFields(**kwargs))


def test_normalize_phone_strips_formatting():
    assert customers.normalize_phone("+91 (987) 654-3210") == "919876543210"
    assert customers.validate_phone("987-654-3210") == "9876543210"


@pytest.mark.parametrize("phone", ["", "12345", "123456789", "1234567890123456", None])
def test_validate_phone_length(phone):
    with pytest.raises(ValidationError) as exc:
        customers.validate_phone(phone)
    assert exc.value.reason == "invalid_phone"


def test_upsert_creates_then_updates(store):
    customer, created = _upsert(store, name="John Doe", phone="98765 43210")
    assert created is True
    assert customer.id is not None
    assert customer.phone == "9876543210"

    again, created = _upsert(store, name="John D.", phone="(987) 654-3210")
    assert created is False
    assert again.id == customer.id
    assert again.name == "John D."
    assert len(customers.list_customers(store)) == 1


def test_upsert_never_clears_existing_fields(store):
    _upsert(
        store,
        name="Jane",
        phone="9876543211",
        email="jane@example.com",
        address=Address(street="Elm Street", city="Los Angeles"),
    )
    customer, created = _upsert(
        store, name="Jane", phone="9876543211", email="", address=Address(city="Pasadena")
    )
    assert created is False
    assert customer.email == "jane@example.com"
    assert customer.address.street == "Elm Street"
    assert customer.address.city == "Pasadena"


def test_upsert_requires_name(store):
    with pytest.raises(ValidationError):
        _upsert(store, name="  ", phone="9876543210")
    assert customers.list_customers(store) == []


def test_upsert_rejects_bad_email(store):
    with pytest.raises(ValidationError) as exc:
        _upsert(store, name="Jo", phone="9876543210", email="not-an-email")
    assert exc.value.reason == "invalid_email"


def test_create_customer_duplicate_phone_conflicts(store):
    customers.create_customer(store, CustomerFields(name="A", phone="9876543210"))
    with pytest.raises(ConflictError):
        customers.create_customer(store, CustomerFields(name="B", phone="+9876543210"))


def test_update_customer_partial(store):
    customer = customers.create_customer(
        store, CustomerFields(name="A", phone="9876543210", email="a@example.com")
    )
    updated = customers.update_customer(
        store, customer.id, CustomerFields(address=Address(pincode="10001"))
    )
    assert updated.name == "A"
    assert updated.email == "a@example.com"
    assert updated.address.pincode == "10001"
    assert customers.get_customer(store, customer.id).address.pincode == "10001"


def test_update_customer_phone_taken(store):
    customers.create_customer(store, CustomerFields(name="A", phone="9876543210"))
    b = customers.create_customer(store, CustomerFields(name="B", phone="9876543211"))
    with pytest.raises(ConflictError):
        customers.update_customer(store, b.id, CustomerFields(phone="9876543210"))


def test_update_customer_empty_name_rejected(store):
    c = customers.create_customer(store, CustomerFields(name="A", phone="9876543210"))
    with pytest.raises(ValidationError):
        customers.update_customer(store, c.id, CustomerFields(name=""))


def test_missing_customer(store):
    with pytest.raises(NotFoundError):
        customers.get_customer(store, 999)
    with pytest.raises(NotFoundError):
        customers.update_customer(store, 999, CustomerFields(name="X"))
    with pytest.raises(NotFoundError):
        customers.delete_customer(store, 999)


def test_delete_customer_removes_units(store, today):
    c = customers.create_customer(store, CustomerFields(name="A", phone="9876543210"))
    units.create_unit(
        store,
        UnitFields(customer_id=c.id, display_name="AC", type="AC", next_service_date="2024-07-01"),
        today,
    )
    customers.delete_customer(store, c.id)
    assert units.list_units(store) == []


def test_list_customers_search(store):
    customers.create_customer(store, CustomerFields(name="Alice", phone="9876543210"))
    customers.create_customer(store, CustomerFields(name="Bob", phone="9123456780"))
    assert [c.name for c in customers.list_customers(store, "ali")] == ["Alice"]
    assert [c.name for c in customers.list_customers(store, "91234")] == ["Bob"]
