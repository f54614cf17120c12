"""Tests for oversight.services.queue_store — durable job queue semantics."""
import random
from datetime import datetime

import pytest
from unittest.mock import patch

from oversight.errors import IllegalTransitionError, NotFoundError, PayloadValidationError
from oversight.models.account import AgentAccount
from oversight.models.alert import SystemAlert
from oversight.models.audit import AuditLogEntry
from oversight.models.job import OutboundJob, new_job_id
from oversight.models.scheduled_post import ScheduledPost
from oversight.services.queue_store import QueueStore, push_dispatch_tick
from oversight.time_utils import seconds_from

T0 = datetime(2026, 1, 15, 10, 0, 0)

COMMENT = {'comment_id': '17901', 'reply_text': 'Thank you!'}


def _audit_actions(fetch_all, job_id):
    entries = fetch_all(AuditLogEntry, table_name='outbound_queue_jobs', record_id=job_id)
    return [entry.action for entry in sorted(entries, key=lambda e: e.id)]


class TestEnqueue:

    def test_creates_pending_job_with_zero_attempts(self, store, load, make_account):
        make_account()
        job_id = store.enqueue('acct-1', 'reply_comment', COMMENT)
        job = load(OutboundJob, job_id)
        assert job.status == 'pending'
        assert job.attempt_count == 0
        assert job.priority == 'normal'
        assert job.scheduled_for == T0

    def test_writes_enqueue_audit_entry(self, store, fetch_all):
        job_id = store.enqueue('acct-1', 'reply_comment', COMMENT)
        assert _audit_actions(fetch_all, job_id) == ['enqueue']

    def test_rejects_invalid_payload_without_persisting(self, store, fetch_all):
        with pytest.raises(PayloadValidationError):
            store.enqueue('acct-1', 'reply_comment', {'comment_id': '17901'})
        assert fetch_all(OutboundJob) == []
        assert fetch_all(AuditLogEntry) == []

    def test_rejects_unknown_priority(self, store):
        with pytest.raises(PayloadValidationError, match='priority'):
            store.enqueue('acct-1', 'reply_comment', COMMENT, priority='urgent')

    def test_rejects_missing_account(self, store):
        with pytest.raises(PayloadValidationError):
            store.enqueue('', 'reply_comment', COMMENT)

    def test_publish_job_must_reference_approved_post(self, store, make_post):
        post_id = make_post()
        with pytest.raises(PayloadValidationError, match='approved post'):
            store.enqueue('acct-1', 'publish_post', {
                'image_url': 'https://cdn.example.com/a.jpg', 'scheduled_post_id': post_id,
            })

    def test_post_takes_a_single_publish_job(self, store, make_post, load, fetch_all):
        post_id = make_post(status='approved')
        payload = {'image_url': 'https://cdn.example.com/a.jpg', 'scheduled_post_id': post_id}
        job_id = store.enqueue('acct-1', 'publish_post', payload)
        assert load(ScheduledPost, post_id).job_id == job_id

        with pytest.raises(PayloadValidationError, match='already has publish job'):
            store.enqueue('acct-1', 'publish_post', payload)
        assert [job.id for job in fetch_all(OutboundJob)] == [job_id]

    def test_high_priority_pushes_wakeup(self, store, no_dispatch_push):
        store.enqueue('acct-1', 'reply_dm', {'conversation_id': 'c1', 'message_text': 'hi'},
                      priority='high')
        no_dispatch_push.assert_called_once()

    def test_normal_priority_does_not_push(self, store, no_dispatch_push):
        store.enqueue('acct-1', 'reply_comment', COMMENT)
        no_dispatch_push.assert_not_called()

    def test_failed_push_does_not_fail_enqueue(self, session_factory, clock, load):
        with patch('oversight.extensions.get_dispatch_queue', side_effect=ConnectionError('down')):
            store = QueueStore(session_factory=session_factory, clock=clock,
                               notify=push_dispatch_tick)
            job_id = store.enqueue('acct-1', 'reply_comment', COMMENT, priority='high')
        assert load(OutboundJob, job_id).status == 'pending'


class TestClaimOrdering:

    def test_high_priority_first_then_schedule_then_creation(self, store, clock, make_account):
        for account in ('a', 'b', 'c', 'd'):
            make_account(account)
        early = store.enqueue('a', 'reply_comment', COMMENT, scheduled_for=T0)
        clock.advance(1)
        first_normal = store.enqueue('b', 'reply_comment', COMMENT)
        clock.advance(1)
        high = store.enqueue('c', 'reply_comment', COMMENT, priority='high')
        clock.advance(1)
        late_high = store.enqueue('d', 'reply_comment', COMMENT, priority='high')

        claimed = store.claim_next('w1', max_batch=4)
        assert [job.id for job in claimed] == [high, late_high, early, first_normal]

    def test_backlog_on_one_account_does_not_hide_others(self, store, clock):
        backlog = []
        for _ in range(10):
            backlog.append(store.enqueue('acct-a', 'reply_comment', COMMENT))
            clock.advance(1)
        other = store.enqueue('acct-b', 'reply_comment', COMMENT)

        claimed = store.claim_next('w1', max_batch=2)
        assert [job.id for job in claimed] == [backlog[0], other]

    def test_account_head_is_its_highest_priority_job(self, store, clock):
        store.enqueue('acct-a', 'reply_comment', COMMENT)
        clock.advance(1)
        urgent = store.enqueue('acct-a', 'reply_dm', {'conversation_id': 'c1', 'message_text': 'hi'},
                               priority='high')
        [job] = store.claim_next('w1', max_batch=3)
        assert job.id == urgent

    def test_future_jobs_are_not_due(self, store, clock):
        store.enqueue('acct-1', 'reply_comment', COMMENT, scheduled_for=clock.advance(60))
        clock.now = T0
        assert store.claim_next('w1') == []
        clock.advance(60)
        assert len(store.claim_next('w1')) == 1

    def test_claim_sets_owner_and_increments_attempts(self, store, load):
        job_id = store.enqueue('acct-1', 'reply_comment', COMMENT)
        [claimed] = store.claim_next('w1')
        assert claimed.id == job_id
        assert claimed.attempt_count == 1
        job = load(OutboundJob, job_id)
        assert job.status == 'processing'
        assert job.claim_owner == 'w1'
        assert job.claimed_at == T0

    def test_zero_batch_claims_nothing(self, store):
        store.enqueue('acct-1', 'reply_comment', COMMENT)
        assert store.claim_next('w1', max_batch=0) == []


class TestClaimExclusivity:

    def test_claimed_job_is_not_claimed_again(self, store):
        store.enqueue('acct-1', 'reply_comment', COMMENT)
        assert len(store.claim_next('w1')) == 1
        assert store.claim_next('w2') == []

    def test_conditional_update_loses_to_concurrent_claim(self, store, session_factory, clock, load):
        """Worker A reads the candidate, worker B claims it first, A's update matches nothing."""
        job_id = store.enqueue('acct-1', 'reply_comment', COMMENT)

        session_a = session_factory()
        try:
            stale = session_a.get(OutboundJob, job_id)
            assert stale.status == 'pending'

            [won] = store.claim_next('worker-b')
            assert won.id == job_id

            assert store._try_claim(session_a, stale, 'worker-a', clock()) is False
            session_a.rollback()
        finally:
            session_a.close()

        job = load(OutboundJob, job_id)
        assert job.claim_owner == 'worker-b'
        assert job.attempt_count == 1

    @pytest.mark.parametrize('seed', range(5))
    def test_interleaved_workers_never_share_a_job(self, store, seed):
        rng = random.Random(seed)
        accounts = [f'acct-{n}' for n in range(4)]
        for _ in range(12):
            store.enqueue(rng.choice(accounts), 'reply_comment', COMMENT,
                          priority=rng.choice(['high', 'normal']))

        owners = {}
        in_flight = {}
        for _ in range(40):
            worker = rng.choice(['w1', 'w2', 'w3'])
            if in_flight and rng.random() < 0.5:
                job_id = rng.choice(sorted(in_flight))
                in_flight.pop(job_id)
                store.complete(job_id)
                continue
            for job in store.claim_next(worker, max_batch=rng.randint(1, 3)):
                assert job.id not in owners, "job claimed twice"
                assert job.account_id not in in_flight.values(), "account has two jobs in flight"
                owners[job.id] = worker
                in_flight[job.id] = job.account_id

    def test_one_job_per_account_in_flight(self, store, clock):
        store.enqueue('acct-1', 'reply_comment', COMMENT)
        clock.advance(1)
        store.enqueue('acct-1', 'reply_dm', {'conversation_id': 'c1', 'message_text': 'hi'})
        clock.advance(1)
        store.enqueue('acct-2', 'reply_comment', COMMENT)

        batch = store.claim_next('w1', max_batch=10)
        assert sorted(job.account_id for job in batch) == ['acct-1', 'acct-2']
        assert store.claim_next('w2', max_batch=10) == []

        store.complete(next(job.id for job in batch if job.account_id == 'acct-1'))
        [next_job] = store.claim_next('w2')
        assert next_job.account_id == 'acct-1'
        assert next_job.action_type == 'reply_dm'

    def test_cooling_down_account_is_skipped(self, store, clock, session_factory, make_account):
        make_account('acct-1')
        make_account('acct-2')
        session = session_factory()
        account = session.get(AgentAccount, 'acct-1')
        account.rate_limited_until = seconds_from(T0, 30)
        session.commit()
        session.close()

        store.enqueue('acct-1', 'reply_comment', COMMENT)
        store.enqueue('acct-2', 'reply_comment', COMMENT)
        assert [job.account_id for job in store.claim_next('w1', max_batch=5)] == ['acct-2']

        clock.advance(30)
        assert [job.account_id for job in store.claim_next('w1', max_batch=5)] == ['acct-1']


class TestComplete:

    def test_marks_completed_with_result(self, store, load, fetch_all):
        job_id = store.enqueue('acct-1', 'reply_comment', COMMENT)
        store.claim_next('w1')
        result = store.complete(job_id, provider_result_id='1790_42', worker_id='w1')
        assert result['status'] == 'completed'
        job = load(OutboundJob, job_id)
        assert job.provider_result_id == '1790_42'
        assert job.finished_at == T0
        assert _audit_actions(fetch_all, job_id) == ['enqueue', 'claim', 'complete']

    def test_complete_requires_processing(self, store):
        job_id = store.enqueue('acct-1', 'reply_comment', COMMENT)
        with pytest.raises(IllegalTransitionError):
            store.complete(job_id)

    def test_complete_rejects_stale_owner(self, store):
        job_id = store.enqueue('acct-1', 'reply_comment', COMMENT)
        store.claim_next('w1')
        with pytest.raises(IllegalTransitionError):
            store.complete(job_id, worker_id='w2')

    def test_unknown_job(self, store):
        with pytest.raises(NotFoundError):
            store.complete('nope')


class TestFailRetry:

    def test_transient_failure_reschedules_with_backoff(self, store, load, clock):
        job_id = store.enqueue('acct-1', 'reply_comment', COMMENT)
        store.claim_next('w1')
        result = store.fail(job_id, 'Graph API 503', 'transient', worker_id='w1')

        assert result['status'] == 'pending'
        job = load(OutboundJob, job_id)
        assert job.attempt_count == 1
        assert job.claim_owner is None
        assert job.error_category == 'transient'
        assert (job.scheduled_for - T0).total_seconds() == 2

    def test_retry_audit_records_failed_attempt(self, store, fetch_all):
        job_id = store.enqueue('acct-1', 'reply_comment', COMMENT)
        store.claim_next('w1')
        store.fail(job_id, 'Graph API 503', 'transient', raw_error={'error': {'code': 2}})
        [entry] = [e for e in fetch_all(AuditLogEntry, record_id=job_id) if e.action == 'retry']
        assert entry.details['outcome'] == 'failed'
        assert entry.details['raw_error'] == {'error': {'code': 2}}
        assert entry.details['operator_message'] == 'Retrying'

    def test_failed_is_an_outcome_never_a_stored_status(self, store, clock):
        store.enqueue('acct-1', 'reply_comment', COMMENT)
        for _ in range(2):
            [job] = store.claim_next('w1')
            store.fail(job.id, 'Graph API 503', 'transient')
            clock.advance(60)

        assert store.list_jobs(status='failed') == ([], 0)
        assert store.status_summary() == {'reply_comment': {'pending': 1}}

    def test_scheduled_for_never_moves_backwards(self, store, clock, load):
        later = clock.advance(600)
        clock.now = later
        job_id = store.enqueue('acct-1', 'reply_comment', COMMENT, scheduled_for=later)
        store.claim_next('w1')
        clock.now = T0  # clock skew between workers
        store.fail(job_id, 'timeout', 'transient')
        assert load(OutboundJob, job_id).scheduled_for == later

    def test_four_transient_failures_dead_letter(self, store, clock, load, fetch_all):
        job_id = store.enqueue('acct-1', 'reply_comment', COMMENT)
        statuses = []
        for _ in range(4):
            [job] = store.claim_next('w1')
            statuses.append(store.fail(job.id, 'Graph API 500', 'transient')['status'])
            clock.advance(60)

        assert statuses == ['pending', 'pending', 'pending', 'dlq']
        job = load(OutboundJob, job_id)
        assert job.status == 'dlq'
        assert job.attempt_count == 4
        assert job.error_category == 'transient'
        [alert] = fetch_all(SystemAlert)
        assert alert.alert_type == 'sync_failure'

    def test_rate_limit_sets_account_cooldown(self, store, load, make_account):
        make_account()
        job_id = store.enqueue('acct-1', 'reply_comment', COMMENT)
        store.claim_next('w1')
        store.fail(job_id, 'Too many calls', 'rate_limit', retry_after=5)

        account = load(AgentAccount, 'acct-1')
        assert (account.rate_limited_until - T0).total_seconds() == 5
        assert (load(OutboundJob, job_id).scheduled_for - T0).total_seconds() == 5

    def test_rate_limit_cooldown_blocks_other_jobs_of_account(self, store, clock, make_account):
        make_account()
        first = store.enqueue('acct-1', 'reply_comment', COMMENT)
        store.claim_next('w1')
        store.enqueue('acct-1', 'reply_dm', {'conversation_id': 'c1', 'message_text': 'hi'})
        store.fail(first, 'Too many calls', 'rate_limit', retry_after=10)

        assert store.claim_next('w1', max_batch=5) == []
        clock.advance(10)
        assert len(store.claim_next('w1', max_batch=5)) == 1

    def test_fail_requires_processing(self, store):
        job_id = store.enqueue('acct-1', 'reply_comment', COMMENT)
        with pytest.raises(IllegalTransitionError):
            store.fail(job_id, 'boom', 'transient')


class TestFailDeadLetter:

    def test_auth_failure_disconnects_account_and_alerts(self, store, load, fetch_all, make_account):
        make_account()
        job_id = store.enqueue('acct-1', 'send_dm', {'recipient_id': '42', 'message_text': 'hi'})
        store.claim_next('w1')
        store.fail(job_id, 'Invalid OAuth access token', 'auth_failure',
                   raw_error={'error': {'code': 190}})

        job = load(OutboundJob, job_id)
        assert job.status == 'dlq'
        assert job.error_category == 'auth_failure'
        account = load(AgentAccount, 'acct-1')
        assert account.is_connected is False
        assert account.connection_status == 'disconnected'
        [alert] = fetch_all(SystemAlert)
        assert alert.alert_type == 'auth_failure'
        assert alert.details['job_id'] == job_id

    def test_auth_failure_is_atomic_when_commit_path_crashes(self, store, load, fetch_all, make_account):
        """A crash after the job row changed leaves neither job nor account modified."""
        make_account()
        job_id = store.enqueue('acct-1', 'send_dm', {'recipient_id': '42', 'message_text': 'hi'})
        store.claim_next('w1')

        with patch('oversight.services.queue_store.raise_alert', side_effect=RuntimeError('crash')):
            with pytest.raises(RuntimeError):
                store.fail(job_id, 'Invalid OAuth access token', 'auth_failure')

        job = load(OutboundJob, job_id)
        assert job.status == 'processing'
        assert job.error_category is None
        assert load(AgentAccount, 'acct-1').is_connected is True
        assert fetch_all(SystemAlert) == []
        assert 'dead_letter' not in _audit_actions(fetch_all, job_id)

    def test_permanent_policy_violation_raises_content_alert(self, store, fetch_all):
        job_id = store.enqueue('acct-1', 'reply_comment', COMMENT)
        store.claim_next('w1')
        store.fail(job_id, 'Action blocked', 'permanent', policy_violation=True)
        [alert] = fetch_all(SystemAlert)
        assert alert.alert_type == 'content_violation'

    def test_dead_letter_audit_references_alert(self, store, fetch_all):
        job_id = store.enqueue('acct-1', 'reply_comment', COMMENT)
        store.claim_next('w1')
        store.fail(job_id, 'Invalid parameter', 'permanent')
        [alert] = fetch_all(SystemAlert)
        entries = [e for e in fetch_all(AuditLogEntry, record_id=job_id)
                   if (e.details or {}).get('alert_id') == alert.id]
        assert len(entries) == 1
        assert entries[0].action == 'dead_letter'

    def test_dead_lettered_publish_fails_its_post(self, store, clock, make_post, load,
                                                  session_factory):
        post_id = make_post(status='approved')
        job_id = store.enqueue('acct-1', 'publish_post', {
            'image_url': 'https://cdn.example.com/a.jpg', 'scheduled_post_id': post_id,
        })
        store.claim_next('w1')
        assert load(ScheduledPost, post_id).status == 'publishing'

        store.fail(job_id, 'Media could not be fetched', 'permanent')
        post = load(ScheduledPost, post_id)
        assert post.status == 'failed'
        assert post.error == 'Media could not be fetched'


class TestPublishBinding:

    def _stray_publish_job(self, session_factory, post_id, clock):
        """A publish_post row written around enqueue(), so the post never bound it."""
        session = session_factory()
        try:
            job = OutboundJob(
                id=new_job_id(), account_id='acct-1', action_type='publish_post',
                payload={'image_url': 'https://cdn.example.com/a.jpg', 'caption': '',
                         'media_type': 'IMAGE', 'scheduled_post_id': post_id},
                priority='normal', status='pending', attempt_count=0,
                scheduled_for=clock(), created_at=clock(), updated_at=clock(),
            )
            session.add(job)
            session.commit()
            return job.id
        finally:
            session.close()

    def test_job_not_bound_to_its_post_is_dead_lettered_at_claim(self, store, session_factory,
                                                                clock, make_post, load,
                                                                fetch_all):
        post_id = make_post(status='published', job_id='job-original',
                            instagram_media_id='17920000001')
        stray = self._stray_publish_job(session_factory, post_id, clock)

        assert store.claim_next('w1') == []

        job = load(OutboundJob, stray)
        assert job.status == 'dlq'
        assert job.error_category == 'permanent'
        assert job.claim_owner is None
        post = load(ScheduledPost, post_id)
        assert post.status == 'published'
        assert post.job_id == 'job-original'
        [alert] = fetch_all(SystemAlert)
        assert alert.alert_type == 'sync_failure'
        assert alert.details['job_id'] == stray
        assert _audit_actions(fetch_all, stray) == ['claim', 'dead_letter']
        refused = [e for e in fetch_all(AuditLogEntry, record_id=post_id)
                   if e.event_type == 'post_transition_refused']
        assert len(refused) == 1

    def test_unbound_job_does_not_block_other_accounts(self, store, session_factory, clock,
                                                       make_post):
        post_id = make_post(status='approved', job_id='job-original')
        self._stray_publish_job(session_factory, post_id, clock)
        other = store.enqueue('acct-2', 'reply_comment', COMMENT)

        claimed = store.claim_next('w1', max_batch=2)
        assert [job.id for job in claimed] == [other]

    def test_reclaim_after_retry_keeps_publishing(self, store, clock, make_post, load):
        post_id = make_post(status='approved')
        job_id = store.enqueue('acct-1', 'publish_post', {
            'image_url': 'https://cdn.example.com/a.jpg', 'scheduled_post_id': post_id,
        })
        store.claim_next('w1')
        store.fail(job_id, 'Service unavailable', 'transient', worker_id='w1')
        clock.advance(60)

        [job] = store.claim_next('w1')
        assert job.id == job_id
        assert load(OutboundJob, job_id).status == 'processing'
        assert load(ScheduledPost, post_id).status == 'publishing'


class TestCancel:

    def test_cancel_pending_removes_job_and_audits_snapshot(self, store, load, fetch_all):
        job_id = store.enqueue('acct-1', 'reply_comment', COMMENT)
        snapshot = store.cancel(job_id, actor='producer')
        assert snapshot['id'] == job_id
        assert load(OutboundJob, job_id) is None
        [entry] = [e for e in fetch_all(AuditLogEntry, record_id=job_id) if e.action == 'cancel']
        assert entry.actor == 'producer'
        assert entry.details['job']['payload'] == COMMENT

    def test_cancel_processing_is_illegal(self, store, load):
        job_id = store.enqueue('acct-1', 'reply_comment', COMMENT)
        store.claim_next('w1')
        with pytest.raises(IllegalTransitionError):
            store.cancel(job_id)
        assert load(OutboundJob, job_id).status == 'processing'

    def test_cancel_missing_job(self, store):
        with pytest.raises(NotFoundError):
            store.cancel('missing')

    def test_cancelled_publish_job_releases_its_post(self, store, make_post, load):
        post_id = make_post(status='approved')
        payload = {'image_url': 'https://cdn.example.com/a.jpg', 'scheduled_post_id': post_id}
        job_id = store.enqueue('acct-1', 'publish_post', payload)
        store.cancel(job_id)

        assert load(ScheduledPost, post_id).job_id is None
        replacement = store.enqueue('acct-1', 'publish_post', payload)
        assert load(ScheduledPost, post_id).job_id == replacement


class TestRequeue:

    def _dead_letter(self, store):
        job_id = store.enqueue('acct-1', 'reply_comment', COMMENT)
        store.claim_next('w1')
        store.fail(job_id, 'Invalid parameter', 'permanent')
        return job_id

    def test_requeue_resets_attempts(self, store, load, fetch_all):
        job_id = self._dead_letter(store)
        store.requeue(job_id, actor='ops@example.com')
        job = load(OutboundJob, job_id)
        assert job.status == 'pending'
        assert job.attempt_count == 0
        assert job.finished_at is None
        assert _audit_actions(fetch_all, job_id)[-1] == 'requeue'

    def test_requeued_job_is_claimable(self, store):
        job_id = self._dead_letter(store)
        store.requeue(job_id)
        [job] = store.claim_next('w1')
        assert job.id == job_id
        assert job.attempt_count == 1

    def test_requeue_only_from_dlq(self, store):
        job_id = store.enqueue('acct-1', 'reply_comment', COMMENT)
        with pytest.raises(IllegalTransitionError):
            store.requeue(job_id)

    def test_requeue_refuses_failed_post(self, store, make_post):
        post_id = make_post(status='approved')
        job_id = store.enqueue('acct-1', 'publish_post', {
            'image_url': 'https://cdn.example.com/a.jpg', 'scheduled_post_id': post_id,
        })
        store.claim_next('w1')
        store.fail(job_id, 'Invalid parameter', 'permanent')
        with pytest.raises(IllegalTransitionError):
            store.requeue(job_id)


class TestReaper:

    def test_returns_stale_claims_to_pending(self, store, clock, load, fetch_all):
        job_id = store.enqueue('acct-1', 'reply_comment', COMMENT)
        store.claim_next('w1')
        clock.advance(121)

        assert store.reap_abandoned(claim_timeout=120) == 1
        job = load(OutboundJob, job_id)
        assert job.status == 'pending'
        assert job.claim_owner is None
        assert job.attempt_count == 1
        assert _audit_actions(fetch_all, job_id)[-1] == 'reap'

    def test_leaves_fresh_claims(self, store, clock):
        store.enqueue('acct-1', 'reply_comment', COMMENT)
        store.claim_next('w1')
        clock.advance(60)
        assert store.reap_abandoned(claim_timeout=120) == 0

    def test_reaped_job_is_claimed_by_another_worker(self, store, clock):
        job_id = store.enqueue('acct-1', 'reply_comment', COMMENT)
        store.claim_next('w1')
        clock.advance(200)
        store.reap_abandoned(claim_timeout=120)

        [job] = store.claim_next('w2')
        assert job.id == job_id
        assert job.attempt_count == 2
        with pytest.raises(IllegalTransitionError):
            store.complete(job_id, worker_id='w1')

    def test_job_that_keeps_dying_is_dead_lettered(self, store, clock, load, fetch_all):
        job_id = store.enqueue('acct-1', 'reply_comment', COMMENT)
        for _ in range(10):
            store.claim_next('w1')
            clock.advance(200)
            store.reap_abandoned(claim_timeout=120)

        job = load(OutboundJob, job_id)
        assert job.status == 'dlq'
        assert job.attempt_count == 3
        assert job.error_category == 'unknown'
        assert job.finished_at is not None
        assert _audit_actions(fetch_all, job_id)[-1] == 'dead_letter'
        [alert] = fetch_all(SystemAlert)
        assert alert.alert_type == 'sync_failure'

    def test_reaped_publish_job_past_ceiling_fails_its_post(self, store, clock, make_post, load):
        post_id = make_post(status='approved')
        store.enqueue('acct-1', 'publish_post', {
            'image_url': 'https://cdn.example.com/a.jpg', 'scheduled_post_id': post_id,
        })
        for _ in range(3):
            store.claim_next('w1')
            clock.advance(200)
            store.reap_abandoned(claim_timeout=120)

        post = load(ScheduledPost, post_id)
        assert post.status == 'failed'
        assert post.error.startswith('Claim by w1 expired')


class TestReads:

    def test_list_filters_and_total(self, store):
        store.enqueue('acct-1', 'reply_comment', COMMENT)
        store.enqueue('acct-2', 'reply_comment', COMMENT)
        store.enqueue('acct-1', 'reply_dm', {'conversation_id': 'c1', 'message_text': 'hi'})

        items, total = store.list_jobs(account_id='acct-1')
        assert total == 2
        assert {item['action_type'] for item in items} == {'reply_comment', 'reply_dm'}

        items, total = store.list_jobs(limit=1)
        assert total == 3
        assert len(items) == 1

    def test_status_summary(self, store):
        store.enqueue('acct-1', 'reply_comment', COMMENT)
        store.enqueue('acct-2', 'reply_comment', COMMENT)
        store.claim_next('w1')
        summary = store.status_summary()
        assert summary['reply_comment'] == {'pending': 1, 'processing': 1}

    def test_get_job_missing(self, store):
        with pytest.raises(NotFoundError):
            store.get_job('missing')
