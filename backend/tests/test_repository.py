"""
Tests for the append-only audit log repository.

Tests cover:
- Rejection of update / delete through the repository and the ORM
- Chain reads (tail, ordered ranges)
- The query and reporting surface
"""
from datetime import datetime, timezone, timedelta

import pytest
from sqlalchemy import select, text

from lexaudit.audit.checksum import to_utc
from lexaudit.audit.errors import ImmutabilityViolation
from lexaudit.audit.repository import AuditLogRepository
from lexaudit.models.audit_log import (
    AuditLog,
    AuditEventType,
    AuditEventCategory,
    AuditSeverity,
)


async def _load(session_factory, log_id: str) -> AuditLog:
    async with session_factory() as session:
        result = await session.execute(select(AuditLog).where(AuditLog.log_id == log_id))
        return result.scalar_one()


@pytest.mark.asyncio
class TestImmutability:
    """Audit entries can never be changed or removed through the application."""

    async def test_repository_update_rejected(self, audit_writer, session_factory, db_session, make_event):
        entry = await audit_writer.record(make_event())
        repository = AuditLogRepository(db_session)

        with pytest.raises(ImmutabilityViolation) as exc_info:
            await repository.update(entry.log_id, action="logout", ip_address="10.9.9.9")
        assert exc_info.value.log_id == entry.log_id

        stored = await _load(session_factory, entry.log_id)
        assert stored.action == entry.action
        assert stored.ip_address == entry.ip_address
        assert stored.checksum == entry.checksum

    async def test_repository_delete_rejected(self, audit_writer, session_factory, db_session, make_event):
        entry = await audit_writer.record(make_event())
        repository = AuditLogRepository(db_session)

        with pytest.raises(ImmutabilityViolation):
            await repository.delete(entry.log_id)

        stored = await _load(session_factory, entry.log_id)
        assert stored.checksum == entry.checksum

    async def test_orm_modification_rejected_on_flush(self, audit_writer, session_factory, make_event):
        entry = await audit_writer.record(make_event(action="login"))

        async with session_factory() as session:
            row = (
                await session.execute(select(AuditLog).where(AuditLog.log_id == entry.log_id))
            ).scalar_one()
            row.action = "nothing to see"

            with pytest.raises(ImmutabilityViolation):
                await session.commit()
            await session.rollback()

        stored = await _load(session_factory, entry.log_id)
        assert stored.action == "login"

    async def test_orm_delete_rejected_on_flush(self, audit_writer, session_factory, make_event):
        entry = await audit_writer.record(make_event())

        async with session_factory() as session:
            row = (
                await session.execute(select(AuditLog).where(AuditLog.log_id == entry.log_id))
            ).scalar_one()
            await session.delete(row)

            with pytest.raises(ImmutabilityViolation):
                await session.commit()
            await session.rollback()

        stored = await _load(session_factory, entry.log_id)
        assert stored.log_id == entry.log_id


@pytest.mark.asyncio
class TestChainReads:
    async def test_find_latest_on_empty_chain(self, db_session):
        assert await AuditLogRepository(db_session).find_latest() is None

    async def test_find_latest_returns_tail(self, audit_writer, db_session, make_event):
        for i in range(3):
            last = await audit_writer.record(make_event(action=f"event {i}"))

        latest = await AuditLogRepository(db_session).find_latest()

        assert latest.log_id == last.log_id

    async def test_query_range_is_inclusive_and_ordered(self, audit_writer, db_session, make_event):
        entries = [await audit_writer.record(make_event(action=f"event {i}")) for i in range(5)]
        repository = AuditLogRepository(db_session)

        in_range = await repository.query_range(entries[1].timestamp, entries[3].timestamp).all()

        assert [e.log_id for e in in_range] == [e.log_id for e in entries[1:4]]

    async def test_query_range_is_restartable(self, audit_writer, db_session, make_event):
        entries = [await audit_writer.record(make_event()) for _ in range(3)]
        audit_range = AuditLogRepository(db_session).query_range(
            entries[0].timestamp, entries[-1].timestamp
        )

        first = [e.log_id async for e in audit_range]
        second = [e.log_id async for e in audit_range]

        assert first == second
        assert len(first) == 3

    async def test_query_range_with_filters(self, audit_writer, db_session, make_event):
        login = await audit_writer.record(make_event())
        await audit_writer.record(make_event(event_type=AuditEventType.LOGOUT, action="logout"))
        relogin = await audit_writer.record(make_event())

        entries = await AuditLogRepository(db_session).query_range(
            login.timestamp, relogin.timestamp, event_type=AuditEventType.LOGIN
        ).all()

        assert [e.log_id for e in entries] == [login.log_id, relogin.log_id]

    async def test_unknown_filter_rejected(self, db_session):
        now = datetime.now(timezone.utc)
        with pytest.raises(ValueError):
            AuditLogRepository(db_session).query_range(now, now, checksum="abc")


@pytest.mark.asyncio
class TestQuerySurface:
    async def _seed(self, writer, make_event):
        await writer.record(make_event(username="j.devries", user_id="u-1"))
        await writer.record(make_event(
            event_type=AuditEventType.LOGIN_FAILED,
            username="m.jansen",
            user_id=None,
            action="Failed login attempt",
            success=False,
            severity=AuditSeverity.MEDIUM,
        ))
        await writer.record(make_event(
            event_type=AuditEventType.DATA_ACCESS,
            event_category=AuditEventCategory.DATA_ACCESS,
            username="j.devries",
            user_id="u-1",
            action="Read",
            resource="case",
            resource_id="2026-0042",
        ))
        await writer.record(make_event(
            event_type=AuditEventType.DATA_UPDATE,
            event_category=AuditEventCategory.DATA_ACCESS,
            username="a.bakker",
            user_id="u-2",
            action="Update",
            resource="case",
            resource_id="2026-0042",
        ))
        await writer.record(make_event(
            event_type=AuditEventType.SECURITY_ALERT,
            event_category=AuditEventCategory.SECURITY,
            username=None,
            user_id=None,
            action="Brute force detected",
            severity=AuditSeverity.HIGH,
        ))

    async def test_get_by_log_id(self, audit_writer, db_session, make_event):
        entry = await audit_writer.record(make_event())
        repository = AuditLogRepository(db_session)

        assert (await repository.get_by_log_id(entry.log_id)).checksum == entry.checksum
        assert await repository.get_by_log_id("LOG-0-missing") is None

    async def test_search_newest_first_with_total(self, audit_writer, db_session, make_event):
        await self._seed(audit_writer, make_event)
        repository = AuditLogRepository(db_session)

        page_one, total = await repository.search(page=1, limit=2)
        page_three, _ = await repository.search(page=3, limit=2)

        assert total == 5
        assert [e.event_type for e in page_one] == ["Security Alert", "Data Update"]
        assert [e.event_type for e in page_three] == ["Login"]

    async def test_search_filters(self, audit_writer, db_session, make_event):
        await self._seed(audit_writer, make_event)
        repository = AuditLogRepository(db_session)

        by_user, total = await repository.search(username="j.devries")
        assert total == 2
        assert {e.event_type for e in by_user} == {"Login", "Data Access"}

        failures, total = await repository.search(success=False)
        assert total == 1
        assert failures[0].username == "m.jansen"

        security, total = await repository.search(event_category=AuditEventCategory.SECURITY)
        assert total == 1
        assert security[0].severity == "High"

    async def test_count_since(self, audit_writer, db_session, make_event):
        before = datetime.now(timezone.utc) - timedelta(seconds=1)
        await self._seed(audit_writer, make_event)
        repository = AuditLogRepository(db_session)

        assert await repository.count_since(before) == 5
        assert await repository.count_since(datetime.now(timezone.utc) + timedelta(hours=1)) == 0

    async def test_user_activity(self, audit_writer, db_session, make_event):
        await self._seed(audit_writer, make_event)

        activity = await AuditLogRepository(db_session).get_user_activity("u-1")

        assert [e.event_type for e in activity] == ["Data Access", "Login"]

    async def test_resource_history(self, audit_writer, db_session, make_event):
        await self._seed(audit_writer, make_event)
        repository = AuditLogRepository(db_session)

        history = await repository.get_resource_history("case", "2026-0042")
        assert [e.action for e in history] == ["Update", "Read"]
        assert await repository.get_resource_history("case", "2026-9999") == []

    async def test_security_events(self, audit_writer, db_session, make_event):
        await self._seed(audit_writer, make_event)
        repository = AuditLogRepository(db_session)

        events = await repository.get_security_events(days=1)
        assert [e.action for e in events] == ["Brute force detected"]

        later = datetime.now(timezone.utc) + timedelta(days=40)
        assert await repository.get_security_events(days=30, now=later) == []

    async def test_failed_logins(self, audit_writer, db_session, make_event):
        await self._seed(audit_writer, make_event)

        failed = await AuditLogRepository(db_session).get_failed_logins(days=7)

        assert [e.username for e in failed] == ["m.jansen"]

    async def test_audit_report(self, audit_writer, db_session, make_event):
        await self._seed(audit_writer, make_event)

        rows = await AuditLogRepository(db_session).get_audit_report()
        by_group = {(row["event_category"], row["success"]): row for row in rows}

        assert sum(row["count"] for row in rows) == 5
        assert by_group[("Authentication", True)]["count"] == 1
        assert by_group[("Authentication", False)]["count"] == 1
        assert by_group[("Authentication", False)]["unique_users"] == 1
        assert by_group[("Security", True)]["unique_users"] == 0

    async def test_find_archivable(self, audit_writer, db_session, make_event):
        entry = await audit_writer.record(make_event())
        repository = AuditLogRepository(db_session)

        assert await repository.find_archivable() == []

        after_retention = to_utc(entry.retention_date) + timedelta(days=1)
        archivable = await repository.find_archivable(after_retention)
        assert [e.log_id for e in archivable] == [entry.log_id]

    async def test_find_archivable_skips_archived(self, audit_writer, session_factory, db_session, make_event):
        first = await audit_writer.record(make_event())
        second = await audit_writer.record(make_event())

        # The archival job is the only writer allowed to flip this flag
        async with session_factory() as session:
            await session.execute(
                text("UPDATE audit_log SET archived = 1 WHERE log_id = :log_id"),
                {"log_id": first.log_id},
            )
            await session.commit()

        after_retention = to_utc(second.retention_date) + timedelta(days=1)
        archivable = await AuditLogRepository(db_session).find_archivable(after_retention)

        assert [e.log_id for e in archivable] == [second.log_id]

    async def test_search_by_ip_address(self, audit_writer, db_session, make_event):
        await self._seed(audit_writer, make_event)
        outsider = await audit_writer.record(make_event(ip_address="198.51.100.4"))

        entries, total = await AuditLogRepository(db_session).search(ip_address="198.51.100.4")

        assert total == 1
        assert entries[0].log_id == outsider.log_id

    async def test_suspicious_activity(self, audit_writer, db_session, make_event):
        await self._seed(audit_writer, make_event)
        blocked = await audit_writer.record(make_event(
            event_type=AuditEventType.IP_BLOCK,
            event_category=AuditEventCategory.SECURITY,
            action="Blocked address",
            ip_address="198.51.100.4",
        ))
        failed = await audit_writer.record(make_event(
            event_type=AuditEventType.API_ACCESS,
            event_category=AuditEventCategory.DATA_ACCESS,
            action="GET /api/v1/cases",
            success=False,
            status_code=403,
            ip_address="198.51.100.4",
        ))
        await audit_writer.record(make_event(ip_address="198.51.100.4"))
        repository = AuditLogRepository(db_session)

        suspicious = await repository.get_suspicious_activity("198.51.100.4")
        assert [e.log_id for e in suspicious] == [failed.log_id, blocked.log_id]

        local = await repository.get_suspicious_activity("10.0.0.1")
        assert [e.username for e in local] == ["m.jansen"]

        later = datetime.now(timezone.utc) + timedelta(hours=25)
        assert await repository.get_suspicious_activity("198.51.100.4", hours=24, now=later) == []

    async def test_find_high_risk(self, audit_writer, db_session, make_event):
        await self._seed(audit_writer, make_event)

        high_risk = await AuditLogRepository(db_session).find_high_risk()

        assert [(e.event_type, e.risk_score) for e in high_risk] == [
            ("Login Failed", 70),
            ("Security Alert", 60),
        ]
