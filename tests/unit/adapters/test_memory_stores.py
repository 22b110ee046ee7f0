"""Tests for the in-memory store adapters."""

from datetime import UTC, datetime, timedelta

import pytest

from adapters.memory.stores import InMemoryAlertStore, InMemoryObservationStore
from alert_engine.domain.models import Alert, AlertStatus, NumericValue, Observation, Severity
from alert_engine.errors import PersistenceError

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def _alert(alert_id: str, rule_id: str = "r1", status: AlertStatus = AlertStatus.TRIGGERED) -> Alert:
    return Alert(
        id=alert_id,
        organization_id="org",
        patient_id="p1",
        rule_id=rule_id,
        severity=Severity.HIGH,
        risk_score=52.5,
        message="High pain",
        status=status,
        triggered_at=T0,
        last_triggered_at=T0,
    )


class TestInMemoryAlertStore:
    async def test_at_most_one_open_alert_per_patient_and_rule(self) -> None:
        store = InMemoryAlertStore()
        await store.create(_alert("a1"))

        with pytest.raises(PersistenceError, match="open alert already exists"):
            await store.create(_alert("a2"))

        await store.create(_alert("a3", rule_id="r2"))
        assert len(await store.list_open("p1")) == 2

    async def test_resolved_alert_does_not_block_a_new_one(self) -> None:
        store = InMemoryAlertStore()
        await store.create(_alert("a1", status=AlertStatus.RESOLVED))

        await store.create(_alert("a2"))

        assert [a.id for a in await store.list_open()] == ["a2"]

    async def test_returns_copies(self) -> None:
        store = InMemoryAlertStore()
        created = await store.create(_alert("a1"))
        created.message_history.append("mutated")

        stored = await store.get("a1")

        assert stored is not None
        assert stored.message_history == []

    async def test_update_of_unknown_alert_fails(self) -> None:
        with pytest.raises(PersistenceError, match="does not exist"):
            await InMemoryAlertStore().update(_alert("a1"))

    async def test_injected_failures_are_consumed(self) -> None:
        store = InMemoryAlertStore()
        store.fail_next_writes = 1

        with pytest.raises(PersistenceError, match="simulated"):
            await store.create(_alert("a1"))
        await store.create(_alert("a1"))

        assert store.writes == 1


class TestInMemoryObservationStore:
    async def test_range_and_limit_keep_the_newest_oldest_first(self) -> None:
        store = InMemoryObservationStore()
        for hours in (5, 1, 3, 2, 4):
            store.record(
                Observation(
                    id=f"o{hours}",
                    patient_id="p1",
                    organization_id="org",
                    metric_key="pain",
                    value=NumericValue(value=hours),
                    recorded_at=T0 - timedelta(hours=hours),
                )
            )

        readings = await store.list_observations(
            "p1", "pain", since=T0 - timedelta(hours=4), until=T0, limit=2
        )

        assert [o.id for o in readings] == ["o2", "o1"]
        assert store.queries == 1
