import threading
from datetime import datetime, timezone

import pytest

from app import create_app
from errors import MintError, UploadError
from ipfs_publisher import PublishedMetadata
from minter import MintReceipt
from models import Booking, BookingStatus, HostProfile, Profile, Workshop, db
from pipeline import PipelineContext

WALLET_1 = '0x' + '1a' * 20
WALLET_2 = '0x' + '2b' * 20
WALLET_4 = '0x' + '4d' * 20


class FakePublisher:
    def __init__(self):
        self.published = []
        self.fail_for = set()
        self.closed = False
        self._lock = threading.Lock()

    def publish(self, record):
        if record.booking_id in self.fail_for:
            raise UploadError('IPFS upload failed: 502 Bad Gateway - upstream down', response_status=502)
        with self._lock:
            self.published.append(record)
            cid = f'bafkreitest{len(self.published):04d}'
        return PublishedMetadata(cid=cid, uri=f'ipfs://{cid}')

    def close(self):
        self.closed = True


class FakeMinter:
    def __init__(self):
        self.minted = []
        self.fail_for = set()
        self.probe_error = None
        self._lock = threading.Lock()

    def probe(self):
        if self.probe_error:
            raise MintError(self.probe_error)
        return 'SkillNest Proof of Skill'

    def mint(self, wallet_address, token_uri):
        if wallet_address in self.fail_for:
            raise MintError('Token minting failed: execution reverted')
        with self._lock:
            self.minted.append((wallet_address, token_uri))
            n = len(self.minted)
        return MintReceipt(tx_hash='0x' + f'{n:02x}' * 32, block_number=1000 + n)


@pytest.fixture
def app():
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret',
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'RPC_URL': None,
        'WALLET_PRIVATE_KEY': None,
        'CONTRACT_ADDRESS': None,
        'FILEBASE_IPFS_KEY': None,
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def minter():
    return FakeMinter()


@pytest.fixture
def fake_chain(app, publisher, minter):
    app.config['PROOF_CONTEXT_FACTORY'] = lambda config, session: PipelineContext(
        session, publisher=publisher, minter=minter
    )
    return publisher, minter


def login(client, user_id):
    with client.session_transaction() as sess:
        sess['user_id'] = user_id


@pytest.fixture
def seed(app):
    host = Profile(id='host-1', display_name='Hana Host', email='hana@example.com', is_host=True)
    learners = [
        Profile(id='learner-1', display_name='Lee', wallet_address=WALLET_1, wallet_prompted=True),
        Profile(id='learner-2', display_name='Mo', wallet_address=WALLET_2, wallet_prompted=True),
        Profile(id='learner-3', display_name='Noor', wallet_prompted=True),
        Profile(id='learner-4', display_name='Ola', wallet_address=WALLET_4, wallet_opted_out=True),
    ]
    db.session.add(host)
    db.session.add_all(learners)
    host_profile = HostProfile(user=host, skills=['Woodworking'])
    db.session.add(host_profile)

    workshop = Workshop(
        host=host_profile,
        title='Intro to Joinery',
        description='Dovetails and mortises',
        skills=['Woodworking', 'Hand tools'],
        tools_provided=['Chisel', 'Saw'],
        session_date=datetime(2026, 3, 14, 17, 0, tzinfo=timezone.utc),
        duration_hours=2.5,
        price=40,
        max_participants=6,
        location='Shop 3',
    )
    db.session.add(workshop)
    db.session.flush()

    bookings = {}
    for learner in learners:
        booking = Booking(workshop=workshop, host_id=host.id, learner_id=learner.id, status=BookingStatus.CONFIRMED)
        db.session.add(booking)
        bookings[learner.id] = booking
    db.session.commit()

    return {'host': host, 'host_profile': host_profile, 'workshop': workshop, 'bookings': bookings}
