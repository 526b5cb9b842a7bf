import threading
from datetime import date

import pytest

from service_tracker.errors import ImportStructureError
from service_tracker.models import NextDateSource
from service_tracker.services import customers, importer, units
from service_tracker.services.data_layer import Store, StoreSession

HEADER = "name,phone,displayName,type,nextServiceDate,email,houseNumber,street,city,state,pincode,lastServiceDate"

GOOD_CSV = "\n".join(
    [
        HEADER,
        "John Doe,9876543210,Living Room AC,AC,2024-07-15,john@example.com,123,Main Street,New York,NY,10001,2024-04-15",
        "John Doe,9876543210,Backup Generator,Generator,2024-06-10,,,,,,,",
        "Jane Smith,9876543211,Workshop Heater,Heater,2024-09-01,jane@example.com,456,Elm Street,Los Angeles,CA,90001,2024-03-01",
        "Raj Kumar,+91 98111 22233,Lathe,Machine,2024-06-15,,,,Pune,MH,411001,",
    ]
)


def test_import_creates_customers_and_units(store, today):
    result = importer.import_csv(store, GOOD_CSV, today)

    assert result.errors == []
    assert result.customers_created == 3
    assert result.customers_updated == 1
    assert result.units_created == 4
    assert result.units_updated == 0

    john = [c for c in customers.list_customers(store) if c.phone == "9876543210"][0]
    assert john.email == "john@example.com"
    assert john.address.city == "New York"
    john_units = units.list_units_for_customer(store, john.id)
    assert {u.display_name for u in john_units} == {"Living Room AC", "Backup Generator"}
    for unit in john_units:
        assert unit.next_service_source == NextDateSource.EXPLICIT

    raj = [c for c in customers.list_customers(store) if c.name == "Raj Kumar"][0]
    assert raj.phone == "919811122233"


def test_reimport_is_idempotent(store, today):
    first = importer.import_csv(store, GOOD_CSV, today)
    _, units_before = store.load_frames()
    snapshot = {
        (u.customer_id, u.display_name): (u.type, u.last_service_date, u.next_service_date)
        for u in units.list_units(store)
    }

    second = importer.import_csv(store, GOOD_CSV, today)

    assert first.customers_created == 3
    assert second.customers_created == 0
    assert second.units_created == 0
    assert second.customers_updated == 4
    assert second.units_updated == 4
    assert second.errors == []
    assert len(customers.list_customers(store)) == 3
    assert {
        (u.customer_id, u.display_name): (u.type, u.last_service_date, u.next_service_date)
        for u in units.list_units(store)
    } == snapshot
    assert len(units_before) == 4


def test_bad_row_does_not_stop_the_batch(store, today):
    csv_text = "\n".join(
        [
            HEADER,
            "A One,9000000001,Unit A,AC,2024-07-01,,,,,,,",
            "B Two,9000000002,Unit B,Heater,2024-07-01,,,,,,,",
            "C Three,9000000003,Unit C,Boiler,2024-07-01,,,,,,,",
            "D Four,9000000004,Unit D,Machine,2024-07-01,,,,,,,",
            "E Five,9000000005,Unit E,Generator,2024-07-01,,,,,,,",
        ]
    )
    result = importer.import_csv(store, csv_text, today)

    assert result.rows_applied == 4
    assert len(result.errors) == 1
    assert result.errors[0].row == 3
    assert result.errors[0].reason == "invalid_type"
    names = {c.name for c in customers.list_customers(store)}
    assert names == {"A One", "B Two", "D Four", "E Five"}


def test_same_phone_later_name_wins(store, today):
    rows = [
        {"name": "First Name", "phone": "9876543210", "displayName": "AC", "type": "AC",
         "nextServiceDate": "2024-07-01"},
        {"name": "Second Name", "phone": "9876543210", "displayName": "AC", "type": "AC",
         "nextServiceDate": "2024-08-01"},
    ]
    result = importer.import_rows(store, rows, today)

    assert result.customers_created == 1
    assert result.customers_updated == 1
    stored = customers.list_customers(store)
    assert [c.name for c in stored] == ["Second Name"]
    assert units.list_units(store)[0].next_service_date == date(2024, 8, 1)


@pytest.mark.parametrize(
    "row, reason",
    [
        ("No Phone,,AC1,AC,2024-07-01,,,,,,,", "missing_field"),
        ("Bad Date,9876543210,AC1,AC,2024-13-01,,,,,,,", "invalid_date"),
        ("Bad Last,9876543210,AC1,AC,2024-07-01,,,,,,,01/02/2024", "invalid_date"),
        ("Future,9876543210,AC1,AC,2024-07-01,,,,,,,2024-12-01", "future_date"),
        ("Short,12345,AC1,AC,2024-07-01,,,,,,,", "invalid_phone"),
        ("Mail,9876543210,AC1,AC,2024-07-01,nope,,,,,,", "invalid_email"),
    ],
)
def test_row_errors_write_nothing(store, today, row, reason):
    result = importer.import_csv(store, f"{HEADER}\n{row}", today)
    assert [(e.row, e.reason) for e in result.errors] == [(1, reason)]
    assert customers.list_customers(store) == []
    assert units.list_units(store) == []


def test_errors_keep_input_order(store, today):
    csv_text = "\n".join(
        [
            HEADER,
            "X,123,U,AC,2024-07-01,,,,,,,",
            "Ok,9876543210,U,AC,2024-07-01,,,,,,,",
            "Y,9876543211,U,Toaster,2024-07-01,,,,,,,",
            "Z,9876543212,U,AC,,,,,,,,",
        ]
    )
    result = importer.import_csv(store, csv_text, today)
    assert [e.row for e in result.errors] == [1, 3, 4]
    assert [e.reason for e in result.errors] == ["invalid_phone", "invalid_type", "missing_field"]


def test_reimport_keeps_last_service_date_when_row_omits_it(store, today):
    importer.import_csv(store, f"{HEADER}\nA,9876543210,AC,AC,2024-07-01,,,,,,,2024-04-01", today)
    importer.import_csv(store, f"{HEADER}\nA,9876543210,AC,Heater,2024-08-01,,,,,,,", today)
    unit = units.list_units(store)[0]
    assert unit.type.value == "Heater"
    assert unit.last_service_date == date(2024, 4, 1)
    assert unit.next_service_date == date(2024, 8, 1)


def test_interval_only_changes_when_column_present(store, today):
    header = HEADER + ",serviceIntervalDays"
    importer.import_csv(store, f"{header}\nA,9876543210,AC,AC,2024-07-01,,,,,,,2024-04-01,90", today)
    assert units.list_units(store)[0].service_interval_days == 90

    importer.import_csv(store, f"{HEADER}\nA,9876543210,AC,AC,2024-07-05,,,,,,,2024-04-05", today)
    unit = units.list_units(store)[0]
    assert unit.service_interval_days == 90
    # row date is taken as given, not recomputed from last + interval
    assert unit.next_service_date == date(2024, 7, 5)


def test_optional_columns_may_be_missing(store, today):
    csv_text = "name,phone,displayName,type,nextServiceDate\nA,9876543210,AC,AC,2024-07-01\n"
    result = importer.import_csv(store, csv_text.encode("utf-8"), today)
    assert result.errors == []
    assert result.units_created == 1


@pytest.mark.parametrize(
    "data, message",
    [
        ("", "empty"),
        (b"   \n", "empty"),
        ("name,phone,type\nA,9876543210,AC", "Missing required columns"),
        (HEADER + "\n", "no data rows"),
        (b"\xff\xfe\x00bad", "UTF-8"),
    ],
)
def test_structural_failures_raise(store, today, data, message):
    with pytest.raises(ImportStructureError, match=message):
        importer.import_csv(store, data, today)


def test_oversized_upload_rejected(store, today):
    with pytest.raises(ImportStructureError, match="exceeds"):
        importer.import_csv(store, GOOD_CSV, today, max_bytes=10)


def test_template_round_trips_through_import(store):
    result = importer.import_csv(store, importer.import_template_csv(), date(2024, 1, 1))
    assert result.errors == []
    assert result.customers_created == 2
    assert result.units_created == 2


def test_concurrent_imports_of_one_phone_make_one_customer(tmp_path, today):
    shared = Store(tmp_path / "shared.db", timeout=10.0)
    shared.init_schema()
    workers = 4
    barrier = threading.Barrier(workers)
    results = []

    def run(n):
        row = {"name": f"Writer {n}", "phone": "9876543210", "displayName": "AC", "type": "AC",
               "nextServiceDate": "2024-07-01"}
        barrier.wait()
        results.append(importer.import_rows(shared, [row], today))

    threads = [threading.Thread(target=run, args=(n,)) for n in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == workers
    assert [e for r in results for e in r.errors] == []
    assert sum(r.customers_created for r in results) == 1
    assert sum(r.customers_updated for r in results) == workers - 1
    assert sum(r.units_created for r in results) == 1
    assert len(customers.list_customers(shared)) == 1
    assert len(units.list_units(shared)) == 1


def test_unique_violation_becomes_conflict_row_error(store, today, monkeypatch):
    lookup = StoreSession.find_customer_by_phone
    seen = []

    def stale_lookup(self, phone):
        # the second lookup of this phone misses the row the first one wrote
        seen.append(phone)
        if phone == "9000000001" and seen.count(phone) == 2:
            return None
        return lookup(self, phone)

    monkeypatch.setattr(StoreSession, "find_customer_by_phone", stale_lookup)
    csv_text = "\n".join(
        [
            HEADER,
            "A One,9000000001,Unit A,AC,2024-07-01,,,,,,,",
            "A Again,9000000001,Unit B,Heater,2024-07-01,,,,,,,",
            "C Three,9000000003,Unit C,Machine,2024-07-01,,,,,,,",
        ]
    )
    result = importer.import_csv(store, csv_text, today)

    assert [(e.row, e.reason) for e in result.errors] == [(2, "conflict")]
    assert result.customers_created == 2
    assert result.units_created == 2
    assert {c.name for c in customers.list_customers(store)} == {"A One", "C Three"}
    assert {u.display_name for u in units.list_units(store)} == {"Unit A", "Unit C"}
