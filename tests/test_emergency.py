"""
Tests for the tenant emergency override service.
"""

import pytest
from datetime import datetime, timedelta
from sqlalchemy.exc import OperationalError

from models import Tenant
from utils.content_refs import ContentRef, ContentType, ContentIntegrityError
from utils.emergency import (
    activate_emergency,
    cancel_emergency,
    clear_if_unchanged,
    get_active_emergency,
    read_emergency,
)

STARTED = datetime(2025, 11, 4, 9, 0)


@pytest.fixture(scope='function')
def alert_playlist(make_playlist):
    return make_playlist('Evacuate')


class TestActivateEmergency:

    def test_sets_state(self, tenant, alert_playlist):
        ref = ContentRef(ContentType.PLAYLIST, alert_playlist.id)
        state = activate_emergency(tenant, ref, 30, now=STARTED)

        assert state.expires_at == STARTED + timedelta(minutes=30)
        assert tenant.emergency_content_type == 'playlist'
        assert tenant.emergency_content_id == alert_playlist.id
        assert tenant.emergency_expires_at == STARTED + timedelta(minutes=30)

    def test_rejects_missing_content(self, tenant):
        with pytest.raises(ContentIntegrityError):
            activate_emergency(tenant, ContentRef(ContentType.PLAYLIST, 404))
        assert not tenant.has_emergency

    @pytest.mark.parametrize('duration', [0, -5, '10', True])
    def test_rejects_bad_duration(self, tenant, alert_playlist, duration):
        with pytest.raises(ValueError):
            activate_emergency(tenant, ContentRef(ContentType.PLAYLIST, alert_playlist.id), duration)


class TestGetActiveEmergency:

    def test_none_when_unset(self, tenant):
        assert get_active_emergency(tenant) is None

    def test_active_before_expiry(self, tenant, alert_playlist):
        activate_emergency(tenant, ContentRef(ContentType.PLAYLIST, alert_playlist.id), 30, now=STARTED)
        state = get_active_emergency(tenant, STARTED + timedelta(minutes=29))
        assert state is not None
        assert state.ref.content_id == alert_playlist.id

    def test_indefinite_never_expires(self, tenant, alert_playlist):
        activate_emergency(tenant, ContentRef(ContentType.PLAYLIST, alert_playlist.id), None, now=STARTED)
        assert get_active_emergency(tenant, STARTED + timedelta(days=365)) is not None

    def test_expired_is_cleared(self, tenant, alert_playlist, db_session):
        activate_emergency(tenant, ContentRef(ContentType.PLAYLIST, alert_playlist.id), 30, now=STARTED)

        assert get_active_emergency(tenant, STARTED + timedelta(minutes=31)) is None

        stored = db_session.get(Tenant, tenant.id)
        assert stored.emergency_content_id is None
        assert stored.emergency_started_at is None
        assert stored.emergency_duration_minutes is None

    def test_clear_skips_replaced_emergency(self, tenant, alert_playlist, make_playlist, db_session):
        activate_emergency(tenant, ContentRef(ContentType.PLAYLIST, alert_playlist.id), 30, now=STARTED)
        observed = read_emergency(tenant)

        # Another admin starts a new emergency before the stale clear lands
        replacement = make_playlist('Replacement')
        activate_emergency(tenant, ContentRef(ContentType.PLAYLIST, replacement.id), 30,
                           now=STARTED + timedelta(minutes=40))

        assert clear_if_unchanged(observed) is False
        assert db_session.get(Tenant, tenant.id).emergency_content_id == replacement.id

    def test_clear_skips_extended_emergency(self, tenant, alert_playlist, db_session):
        activate_emergency(tenant, ContentRef(ContentType.PLAYLIST, alert_playlist.id), 30, now=STARTED)
        observed = read_emergency(tenant)

        tenant.emergency_duration_minutes = 120
        db_session.commit()

        assert clear_if_unchanged(observed) is False
        assert get_active_emergency(tenant, STARTED + timedelta(minutes=40)) is not None

    def test_clear_indefinite_emergency(self, tenant, alert_playlist):
        activate_emergency(tenant, ContentRef(ContentType.PLAYLIST, alert_playlist.id), None, now=STARTED)
        observed = read_emergency(tenant)

        assert clear_if_unchanged(observed) is True
        assert not tenant.has_emergency

    def test_second_clear_is_noop(self, tenant, alert_playlist):
        activate_emergency(tenant, ContentRef(ContentType.PLAYLIST, alert_playlist.id), 30, now=STARTED)
        observed = read_emergency(tenant)

        assert clear_if_unchanged(observed) is True
        assert clear_if_unchanged(observed) is False

    def test_clear_failure_is_swallowed(self, tenant, alert_playlist, monkeypatch, db_session):
        activate_emergency(tenant, ContentRef(ContentType.PLAYLIST, alert_playlist.id), 30, now=STARTED)

        def broken_commit():
            raise OperationalError('UPDATE tenants', {}, Exception('database is locked'))

        monkeypatch.setattr(db_session, 'commit', broken_commit)
        assert get_active_emergency(tenant, STARTED + timedelta(hours=1)) is None
        monkeypatch.undo()

        # Still stored, retried on the next read
        assert db_session.get(Tenant, tenant.id).emergency_content_id == alert_playlist.id
        assert get_active_emergency(tenant, STARTED + timedelta(hours=1)) is None
        assert db_session.get(Tenant, tenant.id).emergency_content_id is None


class TestCancelEmergency:

    def test_cancel(self, tenant, alert_playlist):
        activate_emergency(tenant, ContentRef(ContentType.PLAYLIST, alert_playlist.id))
        assert cancel_emergency(tenant) is True
        assert not tenant.has_emergency
        assert cancel_emergency(tenant) is False
