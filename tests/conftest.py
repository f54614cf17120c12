"""Shared test fixtures."""
from datetime import datetime, timedelta

import pytest
from unittest.mock import patch
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from oversight.database import Base, import_models
from oversight.models.account import AgentAccount
from oversight.models.attribution import AttributionReview, SalesAttribution
from oversight.models.scheduled_post import ScheduledPost
from oversight.services.credentials import AuthError, Credential
from oversight.services.queue_store import QueueStore


T0 = datetime(2026, 1, 15, 10, 0, 0)


class FakeClock:
    """Deterministic, manually advanced clock."""

    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class FakeProvider:
    """
    Stand-in for GraphApiClient.

    Queue a result per method in `script`: a dict is returned, an exception is
    raised. Unscripted calls succeed with a generated id.
    """

    def __init__(self):
        self.calls = []
        self.script = {}

    def _call(self, method, *args, **kwargs):
        self.calls.append((method, args, kwargs))
        queued = self.script.get(method)
        if queued:
            result = queued.pop(0)
            if isinstance(result, BaseException):
                raise result
            return result
        return {'id': f'{method}-{len(self.calls)}'}

    def reply_comment(self, *args, **kwargs):
        return self._call('reply_comment', *args, **kwargs)

    def reply_dm(self, *args, **kwargs):
        return self._call('reply_dm', *args, **kwargs)

    def send_dm(self, *args, **kwargs):
        return self._call('send_dm', *args, **kwargs)

    def create_media_container(self, *args, **kwargs):
        return self._call('create_media_container', *args, **kwargs)

    def publish_media(self, *args, **kwargs):
        return self._call('publish_media', *args, **kwargs)

    def methods_called(self):
        return [call[0] for call in self.calls]


class FakeResolver:
    """Resolves every account to a fixed credential unless told to fail."""

    def __init__(self):
        self.error = None

    def resolve(self, account_id):
        if self.error is not None:
            raise self.error
        return Credential(ig_user_id=f'ig-{account_id}', access_token='test-token')

    def revoke(self, message='Business account is disconnected'):
        self.error = AuthError(message)


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with schema created, shared by every session."""
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    import_models()
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine)


@pytest.fixture
def load(session_factory):
    """Fresh read of one row, detached, so assertions see committed state."""
    def _load(model, record_id):
        session = session_factory()
        try:
            return session.get(model, record_id)
        finally:
            session.close()
    return _load


@pytest.fixture
def fetch_all(session_factory):
    """Fresh read of every row of a model matching simple equality filters."""
    def _fetch(model, **filters):
        session = session_factory()
        try:
            query = select(model).filter_by(**filters)
            order = getattr(model, 'created_at', None)
            if order is not None:
                query = query.order_by(order)
            return session.scalars(query).all()
        finally:
            session.close()
    return _fetch


@pytest.fixture(autouse=True)
def patch_get_session(session_factory):
    """Route every get_session() call to the in-memory engine."""
    with patch('oversight.database.SessionLocal', session_factory):
        yield session_factory


@pytest.fixture(autouse=True)
def no_dispatch_push():
    """Keep high-priority enqueues from reaching Redis."""
    with patch('oversight.services.queue_store.push_dispatch_tick') as push:
        yield push


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(session_factory, clock):
    return QueueStore(session_factory=session_factory, clock=clock)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def app(session_factory):
    """Flask test app."""
    from oversight import create_app
    app = create_app(session_factory=session_factory)
    app.config['TESTING'] = True
    app.config['DASHBOARD_TOKEN'] = None
    yield app


@pytest.fixture
def client(app):
    """Flask test client."""
    with app.test_client() as c:
        yield c


@pytest.fixture
def make_account(session_factory):
    """Factory fixture — inserts a connected AgentAccount."""
    def _make(account_id='acct-1', **overrides):
        defaults = dict(
            id=account_id,
            instagram_business_id=f'ig-biz-{account_id}',
            username=f'{account_id}_brand',
            is_connected=True,
            connection_status='active',
        )
        defaults.update(overrides)
        session = session_factory()
        try:
            session.add(AgentAccount(**defaults))
            session.commit()
        finally:
            session.close()
        return account_id
    return _make


@pytest.fixture
def make_post(session_factory, clock):
    """Factory fixture — inserts a ScheduledPost (pending by default)."""
    def _make(account_id='acct-1', **overrides):
        defaults = dict(
            account_id=account_id,
            status='pending',
            caption='Golden hour at the studio',
            image_url='https://cdn.example.com/drafts/golden-hour.jpg',
            media_type='IMAGE',
            agent_modifications={'caption': 'Golden hour at the studio',
                                 'reason': 'Shortened for engagement'},
            selection_factors={'visual_quality': 88, 'engagement_potential': 72},
            created_at=clock(),
            updated_at=clock(),
        )
        defaults.update(overrides)
        session = session_factory()
        try:
            post = ScheduledPost(**defaults)
            session.add(post)
            session.commit()
            return post.id
        finally:
            session.close()
    return _make


@pytest.fixture
def make_review(session_factory, clock):
    """Factory fixture — inserts a SalesAttribution plus its pending review row."""
    def _make(account_id='acct-1', model_scores=None, **overrides):
        session = session_factory()
        try:
            attribution = SalesAttribution(
                account_id=account_id,
                order_id=f'order-{clock().timestamp():.0f}',
                order_value=129.0,
                attributed_media_id='media-42',
                model_scores=model_scores or {
                    'first_touch': 0.6, 'last_touch': 0.3, 'linear': 0.5, 'time_decay': 0.4,
                },
                journey_timeline=[
                    {'type': 'post_view', 'media_id': 'media-42', 'at': '2026-01-14T09:00:00'},
                    {'type': 'purchase', 'order_id': 'order-1', 'at': '2026-01-15T09:30:00'},
                ],
                created_at=clock(),
            )
            session.add(attribution)
            session.flush()
            defaults = dict(
                attribution_id=attribution.id,
                account_id=account_id,
                review_status='pending',
                fraud_risk=False,
                review_reason='combined score below threshold',
                created_at=clock(),
            )
            defaults.update(overrides)
            review = AttributionReview(**defaults)
            session.add(review)
            session.commit()
            return review.id
        finally:
            session.close()
    return _make


@pytest.fixture
def interleaved_factory(session_factory):
    """
    Build a session factory whose first session.get() runs `rival` right after
    the read, so a second request commits between this one's read and write.
    """
    def _build(rival):
        fired = []

        def _factory():
            session = session_factory()
            real_get = session.get

            def get(*args, **kwargs):
                row = real_get(*args, **kwargs)
                if not fired:
                    fired.append(True)
                    rival()
                return row

            session.get = get
            return session
        return _factory
    return _build
