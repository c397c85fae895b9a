# tasks/tests/__init__.py
"""
Task App Test Suite
===================

Modules:
--------
- test_tasks: CRUD, ownership, list filters, soft delete and completion stamping

Running Tests:
--------------
    # Run all task tests
    python manage.py test tasks

    # Run with verbose output
    python manage.py test tasks -v 2
"""
