"""Tests for the Result type, the store call guard and the per-patient lock registry."""

import asyncio

import pytest

from alert_engine.errors import InsufficientWindow, PersistenceError
from alert_engine.services.locks import PatientLockRegistry
from alert_engine.services.stores import Result, guarded


class TestResult:
    def test_ok(self) -> None:
        result: Result[list[int], InsufficientWindow] = Result.ok([1, 2])

        assert result.is_ok()
        assert not result.is_err()
        assert result.unwrap() == [1, 2]

    def test_err(self) -> None:
        error = InsufficientWindow("r1", required=3, available=1)
        result: Result[list[int], InsufficientWindow] = Result.err(error)

        assert result.is_err()
        assert result.unwrap_or([]) == []
        assert result.unwrap_err() is error
        with pytest.raises(InsufficientWindow, match="needs 3"):
            result.unwrap()

    def test_requires_exactly_one_side(self) -> None:
        with pytest.raises(ValueError):
            Result()
        with pytest.raises(ValueError):
            Result(value=1, error=RuntimeError("x"))

    def test_unwrap_err_on_ok(self) -> None:
        with pytest.raises(ValueError):
            Result.ok(1).unwrap_err()


class TestGuarded:
    async def test_passes_value_through(self) -> None:
        async def _read() -> str:
            return "ok"

        assert await guarded("read", _read(), timeout_seconds=1.0) == "ok"

    async def test_timeout_becomes_persistence_error(self) -> None:
        async def _slow() -> None:
            await asyncio.sleep(1)

        with pytest.raises(PersistenceError, match="read timed out after 0.01s"):
            await guarded("read", _slow(), timeout_seconds=0.01)

    async def test_connection_error_becomes_persistence_error(self) -> None:
        async def _broken() -> None:
            raise ConnectionResetError("connection reset by peer")

        with pytest.raises(PersistenceError, match="write failed") as excinfo:
            await guarded("write", _broken(), timeout_seconds=1.0)
        assert isinstance(excinfo.value.__cause__, ConnectionResetError)

    async def test_any_driver_error_becomes_persistence_error(self) -> None:
        class DriverError(Exception):
            pass

        async def _driver() -> None:
            raise DriverError("server closed the connection unexpectedly")

        with pytest.raises(PersistenceError, match="find_open_alert failed") as excinfo:
            await guarded("find_open_alert", _driver(), timeout_seconds=1.0)
        assert isinstance(excinfo.value.__cause__, DriverError)

    async def test_engine_errors_pass_through_unchanged(self) -> None:
        conflict = PersistenceError("open alert already exists")

        async def _conflict() -> None:
            raise conflict

        with pytest.raises(PersistenceError) as excinfo:
            await guarded("create_alert", _conflict(), timeout_seconds=1.0)
        assert excinfo.value is conflict

    async def test_cancellation_propagates(self) -> None:
        async def _cancelled() -> None:
            raise asyncio.CancelledError

        with pytest.raises(asyncio.CancelledError):
            await guarded("read", _cancelled(), timeout_seconds=1.0)


class TestPatientLockRegistry:
    async def test_same_patient_serializes(self) -> None:
        locks = PatientLockRegistry()
        order: list[str] = []

        async def _critical(name: str) -> None:
            async with locks.hold("p1"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(_critical("a"), _critical("b"))

        assert order == ["a-in", "a-out", "b-in", "b-out"]
        assert len(locks) == 0

    async def test_different_patients_run_in_parallel(self) -> None:
        locks = PatientLockRegistry()
        inside = asyncio.Event()

        async def _first() -> None:
            async with locks.hold("p1"):
                await asyncio.wait_for(inside.wait(), timeout=1.0)

        async def _second() -> None:
            async with locks.hold("p2"):
                inside.set()

        await asyncio.gather(_first(), _second())

        assert len(locks) == 0

    async def test_lock_released_on_error(self) -> None:
        locks = PatientLockRegistry()

        with pytest.raises(RuntimeError):
            async with locks.hold("p1"):
                raise RuntimeError("boom")

        async with locks.hold("p1"):
            assert len(locks) == 1
