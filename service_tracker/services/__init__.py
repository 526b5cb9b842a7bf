"""
Service layer for the Service Tracker backend API.

Modules:
    data_layer  - SQLite customer/unit store and DataFrame loaders
    recurrence  - Next-service-date math and due-bucket classification
    customers   - Phone-keyed customer upsert and customer CRUD
    units       - Unit CRUD and service completion
    importer    - Bulk CSV import with per-row error collection
    reporting   - Dashboard aggregations
"""
