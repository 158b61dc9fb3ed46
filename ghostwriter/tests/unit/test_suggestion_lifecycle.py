"""
Unit tests for suggestion TTL, expiry and one-way consumption
"""
from datetime import datetime, timedelta, timezone

import pytest

from ghostwriter.core.exceptions import SuggestionStateError
from ghostwriter.db.models import PostSuggestion, SuggestionStatus
from ghostwriter.services.suggestion_lifecycle import SuggestionLifecycleManager
from ghostwriter.tests.fixtures.factories import make_account

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestSuggestionLifecycleManager:

    @pytest.fixture(autouse=True)
    def setup(self, db_session):
        self.db = db_session
        self.manager = SuggestionLifecycleManager(ttl=timedelta(hours=24), retention=timedelta(days=7))
        self.account = make_account(db_session)

    def _create(self, now=T0, content="Evals are the new unit tests"):
        suggestion = self.manager.create_suggestion(
            self.db,
            now=now,
            account_id=self.account.account_id,
            connected_account_id=self.account.id,
            content=content,
            generation_type="network_based",
        )
        self.db.commit()
        return suggestion

    def test_create_sets_pending_and_ttl(self):
        suggestion = self._create()

        assert suggestion.status == SuggestionStatus.PENDING
        assert suggestion.character_count == len("Evals are the new unit tests")
        assert suggestion.expires_at.replace(tzinfo=timezone.utc) == T0 + timedelta(hours=24)

    def test_listed_just_before_ttl(self):
        suggestion = self._create()

        active = self.manager.list_active(self.db, self.account.id, now=T0 + timedelta(hours=23, minutes=59))

        assert [s.id for s in active] == [suggestion.id]

    def test_hidden_just_after_ttl_without_expiry_sweep(self):
        self._create()

        active = self.manager.list_active(self.db, self.account.id, now=T0 + timedelta(hours=24, minutes=1))

        assert active == []
        assert self.db.query(PostSuggestion).one().status == SuggestionStatus.PENDING

    def test_expire_old_flips_overdue_pending(self):
        overdue = self._create()
        fresh = self._create(now=T0 + timedelta(hours=12), content="Fresh take")
        used = self._create(content="Already used")
        self.manager.mark_used(self.db, used.id, now=T0 + timedelta(hours=1))
        self.db.commit()

        expired = self.manager.expire_old(self.db, now=T0 + timedelta(hours=24, minutes=1))
        self.db.commit()
        self.db.expire_all()

        assert expired == 1
        assert self.db.get(PostSuggestion, overdue.id).status == SuggestionStatus.EXPIRED
        assert self.db.get(PostSuggestion, overdue.id).expired_at is not None
        assert self.db.get(PostSuggestion, fresh.id).status == SuggestionStatus.PENDING
        assert self.db.get(PostSuggestion, used.id).status == SuggestionStatus.USED

    def test_expire_old_scoped_to_account(self):
        other = make_account(self.db, platform_user_id="1002")
        self._create()
        self.manager.create_suggestion(
            self.db, now=T0, account_id="tenant-1", connected_account_id=other.id,
            content="Other account", generation_type="network_based",
        )
        self.db.commit()

        assert self.manager.expire_old(self.db, now=T0 + timedelta(days=2), connected_account_id=other.id) == 1

    def test_mark_used_then_dismiss_is_rejected(self):
        suggestion = self._create()

        used = self.manager.mark_used(self.db, suggestion.id, now=T0 + timedelta(hours=1))
        assert used.status == SuggestionStatus.USED
        assert used.used_at is not None

        with pytest.raises(SuggestionStateError):
            self.manager.mark_dismissed(self.db, suggestion.id, now=T0 + timedelta(hours=2))
        with pytest.raises(SuggestionStateError):
            self.manager.mark_used(self.db, suggestion.id, now=T0 + timedelta(hours=2))

    def test_dismiss(self):
        suggestion = self._create()

        dismissed = self.manager.mark_dismissed(self.db, suggestion.id, now=T0 + timedelta(hours=1))

        assert dismissed.status == SuggestionStatus.DISMISSED
        assert dismissed.dismissed_at is not None

    def test_consuming_past_ttl_is_rejected_before_sweep(self):
        suggestion = self._create()

        with pytest.raises(SuggestionStateError) as exc_info:
            self.manager.mark_used(self.db, suggestion.id, now=T0 + timedelta(hours=24, minutes=1))

        assert exc_info.value.status == SuggestionStatus.EXPIRED
        assert self.db.get(PostSuggestion, suggestion.id).status == SuggestionStatus.PENDING

    def test_consuming_unknown_suggestion(self):
        with pytest.raises(ValueError):
            self.manager.mark_used(self.db, 12345)

    def test_purge_removes_only_old_finished_suggestions(self):
        expired = self._create(content="Expired long ago")
        dismissed = self._create(content="Dismissed long ago")
        used = self._create(content="Used long ago")
        recent = self._create(now=T0 + timedelta(days=10), content="Recently expired")
        self.manager.mark_dismissed(self.db, dismissed.id, now=T0 + timedelta(hours=1))
        self.manager.mark_used(self.db, used.id, now=T0 + timedelta(hours=1))
        self.manager.expire_old(self.db, now=T0 + timedelta(days=12))
        self.db.commit()
        expired_id, used_id, recent_id = expired.id, used.id, recent.id

        purged = self.manager.purge_expired(self.db, now=T0 + timedelta(days=12))
        self.db.commit()

        remaining = {s.id for s in self.db.query(PostSuggestion).all()}
        assert purged == 2
        assert remaining == {used_id, recent_id}
        assert expired_id not in remaining
