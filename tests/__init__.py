"""
PillPulse Reminder Engine Test Suite
====================================

Test Structure:
- test_tools/: timezone resolution, streaks and delivery channels
- test_services/: store and message generator
- test_actions/: detector, dispatcher, coaching, escalation and scheduler
- test_api/: engine API endpoint tests
- conftest.py: Shared pytest fixtures

Running Tests:
    # Run all tests
    pytest

    # Run specific test module
    pytest tests/test_actions/

    # Run only marked tests
    pytest -m "unit"
    pytest -m "api"
"""
