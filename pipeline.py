"""Completion → Proof of Skill pipeline.

collect (completion.py) → publish (ipfs_publisher.py) → mint (minter.py) →
write-back (here). Each eligible learner is published and minted on a worker
thread; all database work stays on the calling thread.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List

from sqlalchemy.exc import SQLAlchemyError

from config import CHAIN_SETTINGS, STORAGE_SETTINGS, chain_id, require_settings
from errors import AppError, MintError, PersistenceError, UploadError
from ipfs_publisher import MetadataPublisher
from minter import CertificateMinter, validate_wallet_address
from models import BookingStatus, WorkshopStatus, utcnow

logger = logging.getLogger(__name__)

STAGE_UPLOAD = 'upload'
STAGE_MINT = 'mint'


class PipelineContext:
    """Per-request bundle of the collaborators a completion run needs.

    The publisher and minter are built from config on first use, so requests
    that never mint do not need chain or storage settings.
    """

    def __init__(self, session, config=None, publisher=None, minter=None, max_workers=4):
        self.session = session
        self.config = config or {}
        self._publisher = publisher
        self._minter = minter
        self.max_workers = max_workers

    @classmethod
    def from_config(cls, config, session):
        return cls(session, config=config, max_workers=config.get('MINT_MAX_WORKERS', 4))

    @property
    def publisher(self):
        if self._publisher is None:
            storage = require_settings(self.config, STORAGE_SETTINGS)
            self._publisher = MetadataPublisher(
                api_url=self.config['IPFS_API_URL'],
                api_key=storage['FILEBASE_IPFS_KEY'],
                timeout=self.config.get('IPFS_UPLOAD_TIMEOUT', 30),
                wrap=self.config.get('PROOF_METADATA_WRAPPED', True),
                image_base_url=self.config.get('NFT_IMAGE_BASE_URL', ''),
            )
        return self._publisher

    @property
    def minter(self):
        if self._minter is None:
            chain = require_settings(self.config, CHAIN_SETTINGS)
            self._minter = CertificateMinter(
                rpc_url=chain['RPC_URL'],
                private_key=chain['WALLET_PRIVATE_KEY'],
                contract_address=chain['CONTRACT_ADDRESS'],
                chain_id=chain_id(self.config),
                receipt_timeout=self.config.get('MINT_RECEIPT_TIMEOUT', 120),
            )
        return self._minter

    def prepare(self):
        """Build both clients and probe the contract before any side effect."""
        self.publisher
        self.minter.probe()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def close(self):
        close = getattr(self._publisher, 'close', None)
        if close is not None:
            close()


@dataclass
class Minted:
    record: object
    cid: str
    uri: str
    tx_hash: str
    block_number: int

    def to_dict(self):
        return {
            'booking_id': self.record.booking_id,
            'learner_id': self.record.learner_id,
            'cid': self.cid,
            'token_metadata_uri': self.uri,
            'transaction_hash': self.tx_hash,
            'block_number': self.block_number,
        }


@dataclass
class Failed:
    record: object
    stage: str
    error: AppError

    def to_dict(self):
        return {
            'booking_id': self.record.booking_id,
            'learner_id': self.record.learner_id,
            'stage': self.stage,
            'error_type': self.error.error_type,
            'error': self.error.message,
        }


@dataclass
class BatchReport:
    outcomes: List[object] = field(default_factory=list)

    @property
    def minted(self):
        return [o for o in self.outcomes if isinstance(o, Minted)]

    @property
    def failed(self):
        return [o for o in self.outcomes if isinstance(o, Failed)]

    @property
    def ok(self):
        return not self.failed

    def failed_booking_ids(self):
        return {o.record.booking_id for o in self.failed}

    def to_dict(self):
        return {
            'minted': [o.to_dict() for o in self.minted],
            'failed': [o.to_dict() for o in self.failed],
        }


def publish_and_mint(ctx, record):
    """Run one learner through publish → mint, returning a tagged outcome."""
    try:
        validate_wallet_address(record.wallet_address)
    except AppError as e:
        return Failed(record, STAGE_MINT, MintError(e.message))
    try:
        published = ctx.publisher.publish(record)
    except AppError as e:
        logger.error(f'Upload failed for booking {record.booking_id}: {e.message}')
        return Failed(record, STAGE_UPLOAD, e)
    except Exception as e:
        logger.error(f'Upload failed for booking {record.booking_id}: {str(e)}')
        return Failed(record, STAGE_UPLOAD, UploadError(f'IPFS upload failed: {str(e)}'))
    try:
        receipt = ctx.minter.mint(record.wallet_address, published.uri)
    except AppError as e:
        logger.error(f'Mint failed for booking {record.booking_id}: {e.message}')
        return Failed(record, STAGE_MINT, e if isinstance(e, MintError) else MintError(e.message))
    except Exception as e:
        logger.error(f'Mint failed for booking {record.booking_id}: {str(e)}')
        return Failed(record, STAGE_MINT, MintError(f'Token minting failed: {str(e)}'))
    return Minted(record, published.cid, published.uri, receipt.tx_hash, receipt.block_number)


def mint_batch(ctx, records):
    """Dispatch every record concurrently and wait for all of them.

    A failure for one learner does not cancel the others; tokens that were
    minted stay minted and are reported next to the failures.
    """
    report = BatchReport()
    if not records:
        return report
    workers = max(1, min(ctx.max_workers, len(records)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='proof-mint') as pool:
        report.outcomes = list(pool.map(lambda r: publish_and_mint(ctx, r), records))
    logger.info(f'Mint batch finished: {len(report.minted)} minted, {len(report.failed)} failed')
    return report


def _commit(session, what):
    try:
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceError(f'Failed to {what}: {e}')


def write_back(session, plan, report):
    """Persist token fields, then move processed bookings to completed.

    Bookings whose publish or mint failed are left confirmed and untouched so
    a later completion run can pick them up again.
    """
    bookings = {u.booking.id: u.booking for u in plan.updates}

    for outcome in report.minted:
        booking = bookings[outcome.record.booking_id]
        booking.transaction_hash = outcome.tx_hash
        booking.token_metadata_uri = outcome.uri
    if report.minted:
        try:
            _commit(session, 'store token data in database')
        except PersistenceError:
            for outcome in report.minted:
                logger.error(f'Minted token not recorded: booking={outcome.record.booking_id} '
                             f'tx={outcome.tx_hash} uri={outcome.uri}')
            raise

    failed_ids = report.failed_booking_ids()
    completed_at = utcnow()
    completed = []
    for update in plan.updates:
        if update.booking.id in failed_ids:
            continue
        booking = update.booking
        booking.status = BookingStatus.COMPLETED
        booking.completed_at = completed_at
        booking.learner_showed_up = update.showed_up
        booking.learner_used_tools = update.used_tools
        booking.host_feedback = plan.feedback
        completed.append(booking.id)

    workshop = plan.workshop
    if not workshop.confirmed_bookings():
        workshop.status = WorkshopStatus.COMPLETED
        workshop.host.total_sessions = (workshop.host.total_sessions or 0) + 1

    _commit(session, 'update booking statuses')
    return completed


def run_completion(ctx, plan):
    """Run the minting batch for a plan and write the results back."""
    records = plan.records
    report = BatchReport()
    if records:
        ctx.prepare()
        report = mint_batch(ctx, records)

    completed = write_back(ctx.session, plan, report)
    return completed, report
