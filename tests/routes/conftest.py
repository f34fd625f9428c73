from datetime import date, timedelta

import pytest

from clinic_scheduler.routes import common
from clinic_scheduler.scheduling.clock import service_date, service_now


@pytest.fixture(autouse=True)
def skip_schema_checks(monkeypatch: pytest.MonkeyPatch) -> None:
    # Route tests run against the per-test sqlite session, not the module engine.
    monkeypatch.setattr(common, 'ensure_appointment_schema', lambda: None)
    monkeypatch.setattr(common, 'ensure_slot_settings_schema', lambda: None)


@pytest.fixture
def tomorrow() -> date:
    return service_date(service_now()) + timedelta(days=1)
