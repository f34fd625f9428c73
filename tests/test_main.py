import importlib

from clinic_scheduler.routes.availability_routes import NextAvailableSlotResponse


def test_app_imports_with_every_router_mounted() -> None:
    main = importlib.import_module('clinic_scheduler.main')

    paths = {route.path for route in main.app.routes}

    assert {
        '/',
        '/auth/me',
        '/availability/next',
        '/availability/{day}',
        '/availability/{day}/live',
        '/appointments',
        '/overrides/day',
    } <= paths


def test_next_available_slot_response_defaults_to_not_found() -> None:
    response = NextAvailableSlotResponse(found=False)

    assert response.date is None
    assert response.time is None
    assert response.model_dump(mode='json') == {'date': None, 'time': None, 'found': False}
