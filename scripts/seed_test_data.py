#!/usr/bin/env python3
"""
Seed test data for trying the operator API locally.

Creates accounts, drafts and queue jobs covering the key scenarios:
  1. Drafts waiting for review
  2. Approved draft with its publish job queued
  3. Reply dead-lettered after an expired token (account disconnected, alert raised)
  4. DM backing off after a rate limit (account cooling down)
  5. Attribution reviews, one flagged as fraud risk

Usage:
    python scripts/seed_test_data.py          # seed all scenarios
    python scripts/seed_test_data.py --clear  # wipe seeded data first

Requires: DATABASE_URL set (or defaults to sqlite:///local.db). Redis is
optional; wake-up pushes are skipped when it is down.
"""
import sys
import os
import argparse
from datetime import timedelta

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import delete, select

from oversight import create_app
from oversight.database import get_session, engine, Base
from oversight.models.account import AgentAccount
from oversight.models.alert import SystemAlert
from oversight.models.attribution import AttributionReview, SalesAttribution
from oversight.models.job import OutboundJob
from oversight.models.scheduled_post import ScheduledPost
from oversight.services.content_approval import ContentApprovalService
from oversight.services.queue_store import QueueStore
from oversight.time_utils import utcnow


# Prefix for seeded account ids so we can clear them
SEED_PREFIX = 'seed-'

ACCOUNTS = [
    {'id': f'{SEED_PREFIX}studio', 'username': 'golden_hour_studio', 'instagram_business_id': '17841400000000001'},
    {'id': f'{SEED_PREFIX}bakery', 'username': 'crumb_and_co',       'instagram_business_id': '17841400000000002'},
]

DRAFTS = [
    {'caption': 'New spring collection drops Friday', 'image_url': 'https://picsum.photos/seed/spring/1080/1080',
     'agent_modifications': {'hook': 'Spring is here.', 'reason': 'Stronger opener for the feed'},
     'selection_factors': {'visual_quality': 92, 'engagement_potential': 81, 'recency': 70}},
    {'caption': 'Behind the scenes at the shoot', 'image_url': 'https://picsum.photos/seed/bts/1080/1350',
     'agent_modifications': {'hashtags': ['#bts', '#studio'], 'reason': 'Added niche hashtags'},
     'selection_factors': {'visual_quality': 74, 'brand_alignment': 88}},
    {'caption': 'Sourdough Saturday', 'image_url': 'https://picsum.photos/seed/bread/1080/1080',
     'agent_modifications': None,
     'selection_factors': {'engagement_potential': 65, 'uniqueness': 40}},
]


def seed_accounts(session):
    now = utcnow()
    for account in ACCOUNTS:
        session.merge(AgentAccount(is_connected=True, connection_status='active',
                                   created_at=now, updated_at=now, **account))
    session.commit()
    print(f'  Accounts:         {", ".join(a["id"] for a in ACCOUNTS)}')


def seed_drafts(content):
    """Scenarios 1 and 2: pending drafts, one of them approved."""
    post_ids = []
    for n, draft in enumerate(DRAFTS):
        account_id = ACCOUNTS[n % len(ACCOUNTS)]['id']
        post_ids.append(content.create_draft(account_id, actor='seed', **draft))
    print(f'  [1] Drafts:       {len(post_ids)} pending')

    approved = content.approve(post_ids[0], reviewer='seed')
    print(f'  [2] Approved:     {approved["id"]} (job {approved["job_id"]})')


def seed_dead_letter(store):
    """Scenario 3: expired token → auth_failure → DLQ."""
    account_id = ACCOUNTS[1]['id']
    job_id = store.enqueue(account_id, 'reply_comment',
                           {'comment_id': '17858893269000001', 'reply_text': 'Thank you so much!'},
                           actor='seed')
    store.claim_next('seed-worker')
    store.fail(job_id, 'Graph API 400 (code 190): Error validating access token', 'auth_failure',
               worker_id='seed-worker',
               raw_error={'error': {'message': 'Error validating access token',
                                    'type': 'OAuthException', 'code': 190, 'error_subcode': 463}})
    print(f'  [3] Dead-lettered: {job_id}')


def seed_rate_limited(store):
    """Scenario 4: 429 with Retry-After → pending with a cool-down."""
    account_id = ACCOUNTS[0]['id']
    job_id = store.enqueue(account_id, 'send_dm',
                           {'recipient_id': '6523000000000001', 'message_text': 'Your order has shipped'},
                           priority='high', actor='seed')
    store.claim_next('seed-worker')
    store.fail(job_id, 'Graph API 429: Application request limit reached', 'rate_limit',
               worker_id='seed-worker', retry_after=300)
    print(f'  [4] Rate-limited:  {job_id}')


def seed_attribution_reviews(session):
    """Scenario 5: attribution reviews waiting for a decision."""
    now = utcnow()
    account_id = ACCOUNTS[0]['id']
    for n, (fraud_risk, reason) in enumerate([
        (False, 'Combined score 0.52 below auto-approve threshold'),
        (True, 'Order placed 40s after first touch from a new account'),
    ]):
        attribution = SalesAttribution(
            account_id=account_id,
            order_id=f'{SEED_PREFIX}order-{n + 1}',
            order_value=round(49.5 * (n + 1), 2),
            attributed_media_id='17900000000000042',
            model_scores={'first_touch': 0.61, 'last_touch': 0.38, 'linear': 0.5,
                          'time_decay': 0.44, 'combined': 0.52},
            journey_timeline=[
                {'type': 'post_view', 'media_id': '17900000000000042',
                 'at': (now - timedelta(days=2)).isoformat()},
                {'type': 'link_click', 'at': (now - timedelta(hours=3)).isoformat()},
                {'type': 'purchase', 'at': now.isoformat()},
            ],
            created_at=now,
        )
        session.add(attribution)
        session.flush()
        session.add(AttributionReview(attribution_id=attribution.id, account_id=account_id,
                                      review_status='pending', fraud_risk=fraud_risk,
                                      review_reason=reason, created_at=now))
    session.commit()
    print('  [5] Attribution:   2 reviews pending (1 fraud risk)')


# ── Clear / Main ─────────────────────────────────────────────────────────────

def clear_seeded_data(session):
    """Remove seeded rows. Audit entries are append-only and stay."""
    account_ids = session.scalars(
        select(AgentAccount.id).where(AgentAccount.id.like(f'{SEED_PREFIX}%'))
    ).all()
    if not account_ids:
        print('No seeded data found.')
        return

    attribution_ids = select(SalesAttribution.id).where(SalesAttribution.account_id.in_(account_ids))
    counts = {}
    for label, statement in [
        ('reviews', delete(AttributionReview).where(AttributionReview.attribution_id.in_(attribution_ids))),
        ('attributions', delete(SalesAttribution).where(SalesAttribution.account_id.in_(account_ids))),
        ('jobs', delete(OutboundJob).where(OutboundJob.account_id.in_(account_ids))),
        ('posts', delete(ScheduledPost).where(ScheduledPost.account_id.in_(account_ids))),
        ('alerts', delete(SystemAlert).where(SystemAlert.account_id.in_(account_ids))),
        ('accounts', delete(AgentAccount).where(AgentAccount.id.in_(account_ids))),
    ]:
        counts[label] = session.execute(statement).rowcount
    session.commit()
    print('Cleared ' + ', '.join(f'{n} {label}' for label, n in counts.items()) + '.')


def main():
    parser = argparse.ArgumentParser(description='Seed test data for the operator API')
    parser.add_argument('--clear', action='store_true', help='Clear seeded data before (or instead of) seeding')
    parser.add_argument('--clear-only', action='store_true', help='Only clear, do not re-seed')
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        # Ensure tables exist (for SQLite local dev)
        Base.metadata.create_all(engine)

        session = get_session()
        try:
            if args.clear or args.clear_only:
                clear_seeded_data(session)
                if args.clear_only:
                    return

            print('Seeding test data...')
            store = QueueStore()
            seed_accounts(session)
            # Failure scenarios first so each claim picks up the job just enqueued
            seed_dead_letter(store)
            seed_rate_limited(store)
            seed_drafts(ContentApprovalService(queue_store=store))
            seed_attribution_reviews(session)
            print('\nDone! Try http://localhost:8080/api/jobs/dlq')

        except Exception as e:
            session.rollback()
            print(f'Error: {e}')
            raise
        finally:
            session.close()


if __name__ == '__main__':
    main()
