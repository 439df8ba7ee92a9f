import logging
import os
from collections import Counter
from functools import wraps

from flask import Blueprint, Flask, current_app, jsonify, request, session
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from completion import ProofOfSkillRecord, collect_completion, parse_completion_form
from config import CHAIN_SETTINGS, Config, chain_id, require_settings
from errors import AppError, Conflict, Forbidden, NotFound, PersistenceError, Unauthorized, ValidationError
from minter import CertificateMinter, validate_wallet_address
from models import Booking, BookingStatus, HostProfile, Profile, Workshop, WorkshopStatus, db
from pipeline import PipelineContext, run_completion
from skill_categories import SkillCategory, category_for_skills
from timeutils import isoformat_utc, parse_utc_timestamp

api = Blueprint('api', __name__)


def create_app(config_overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    db.init_app(app)
    app.register_blueprint(api)

    @app.errorhandler(AppError)
    def handle_app_error(e):
        if e.status_code >= 500:
            app.logger.error(f'{e.error_type}: {e.message}')
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(SQLAlchemyError)
    def handle_db_error(e):
        db.session.rollback()
        app.logger.error(f'Database error: {str(e)}')
        return jsonify(PersistenceError('Database error').to_dict()), 500

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        if isinstance(e, HTTPException):
            return e
        app.logger.error(f'Unexpected error: {type(e).__name__}: {str(e)}')
        return jsonify({'error': 'Internal server error'}), 500

    with app.app_context():
        try:
            db.create_all()
        except Exception as e:
            app.logger.error(f"Database initialization error: {str(e)}")

    return app


# ---------------- Request helpers ----------------
def request_data(list_fields=()):
    """Body as a dict, whether it arrived as JSON or form-encoded."""
    if request.is_json:
        data = request.get_json(silent=True)
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValidationError('Request body must be a JSON object')
        data = dict(data)
        for name in list_fields:
            value = data.get(name)
            if value is not None and not isinstance(value, list):
                data[name] = [value]
        return data

    data = {}
    for name in request.form.keys():
        if name in list_fields:
            data[name] = request.form.getlist(name)
        else:
            data[name] = request.form.get(name)
    return data


def require_fields(data, *names):
    missing = [name for name in names if data.get(name) in (None, '')]
    if missing:
        raise ValidationError(f'Missing required field(s): {", ".join(missing)}')


def parse_number(data, name, cast=float):
    try:
        return cast(data.get(name))
    except (TypeError, ValueError):
        raise ValidationError(f'{name} must be a number')


def commit(what):
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceError(f'Failed to {what}: {e}')


def current_profile():
    user_id = session.get('user_id')
    if not user_id:
        return None
    return db.session.get(Profile, user_id)


def login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        profile = current_profile()
        if profile is None:
            current_app.logger.warning('No authenticated user in session')
            raise Unauthorized()
        return f(profile, *args, **kwargs)

    return decorated_function


def pipeline_context():
    factory = current_app.config.get('PROOF_CONTEXT_FACTORY') or PipelineContext.from_config
    return factory(current_app.config, db.session)


# ---------------- Session bridge for the external auth provider ----------------
@api.route('/auth/login', methods=['POST'])
def auth_login():
    data = request_data()
    require_fields(data, 'user_id')
    user_id = str(data['user_id'])

    profile = db.session.get(Profile, user_id)
    if profile is None:
        profile = Profile(id=user_id, display_name=data.get('display_name'), email=data.get('email'))
        db.session.add(profile)
        commit('create profile')

    session.clear()
    session['user_id'] = user_id
    session.permanent = True
    current_app.logger.info(f'User logged in: {user_id}')

    return jsonify({
        'success': True,
        'user_id': user_id,
        'redirect': '/auth/wallet-setup' if not profile.wallet_prompted else '/dashboard',
    })


@api.route('/auth/logout', methods=['POST'])
def auth_logout():
    session.clear()
    return jsonify({'success': True})


# ---------------- Workshop completion → Proof of Skill ----------------
@api.route('/api/workshops/<int:workshop_id>/complete', methods=['POST'])
@login_required
def complete_workshop(profile, workshop_id):
    form = parse_completion_form(
        request_data(list_fields=('participated', 'learnerShowedUp', 'usedTools')),
        default_flags=request.is_json,
    )
    workshop = db.session.get(Workshop, workshop_id)

    plan = collect_completion(
        workshop,
        profile.id,
        participated=form['participated'],
        showed_up=form['showed_up'],
        used_tools=form['used_tools'],
        feedback=form['feedback'],
    )
    current_app.logger.info(
        f'Completing workshop {workshop_id}: {len(plan.updates)} bookings, {len(plan.records)} to mint'
    )

    with pipeline_context() as ctx:
        completed, report = run_completion(ctx, plan)

    result = {
        'workshop_id': workshop_id,
        'workshop_status': workshop.status,
        'completed': completed,
        'skipped': plan.skipped,
        **report.to_dict(),
    }
    if not report.ok:
        first = report.failed[0].error
        error = type(first)(f'Failed to mint Proof of Skill tokens: {first.message}', details=result)
        raise error

    return jsonify({'success': True, **result})


@api.route('/api/proof-of-skill', methods=['POST'])
@login_required
def proof_of_skill(profile):
    data = request_data(list_fields=('tools_used', 'skills_learned'))
    record = ProofOfSkillRecord.from_dict(data)
    validate_wallet_address(record.wallet_address)

    with pipeline_context() as ctx:
        ctx.minter.probe()
        published = ctx.publisher.publish(record)
        receipt = ctx.minter.mint(record.wallet_address, published.uri)

    current_app.logger.info(f'Proof of Skill minted for {record.learner_id}: {receipt.tx_hash}')
    return jsonify({
        'success': True,
        'message': 'Proof of Skill token minted successfully',
        'data': record.to_dict(),
        'ipfs': {'cid': published.cid, 'url': published.uri},
        'transaction': {'hash': receipt.tx_hash, 'blockNumber': receipt.block_number},
    })


@api.route('/api/save-workshop-data', methods=['POST'])
@login_required
def save_workshop_data(profile):
    data = request_data(list_fields=('tools_used', 'skills_learned'))
    record = ProofOfSkillRecord.from_dict(data, require_wallet=False)

    with pipeline_context() as ctx:
        published = ctx.publisher.publish(record)

    return jsonify({
        'success': True,
        'message': 'Workshop data uploaded to IPFS successfully',
        'data': record.to_dict(),
        'ipfs': {'cid': published.cid, 'url': published.uri},
    })


@api.route('/api/proof-of-skill/tokens', methods=['GET'])
@login_required
def list_tokens(profile):
    completed = (
        Booking.query
        .filter(Booking.status == BookingStatus.COMPLETED)
        .filter((Booking.learner_id == profile.id) | (Booking.host_id == profile.id))
        .order_by(Booking.completed_at.desc())
        .all()
    )

    counts = Counter(category_for_skills(b.workshop.skills).value for b in completed)
    tokens = [
        {
            'booking_id': b.id,
            'workshop_id': b.workshop_id,
            'workshop_title': b.workshop.title,
            'category': category_for_skills(b.workshop.skills).value,
            'transaction_hash': b.transaction_hash,
            'token_metadata_uri': b.token_metadata_uri,
            'completed_at': isoformat_utc(b.completed_at),
        }
        for b in completed
        if b.learner_id == profile.id and b.transaction_hash
    ]
    return jsonify({
        'success': True,
        'tokens': tokens,
        'category_counts': {c.value: counts.get(c.value, 0) for c in SkillCategory},
    })


@api.route('/api/chain/status', methods=['GET'])
@login_required
def chain_status(profile):
    chain = require_settings(current_app.config, CHAIN_SETTINGS)
    minter = CertificateMinter(
        rpc_url=chain['RPC_URL'],
        private_key=chain['WALLET_PRIVATE_KEY'],
        contract_address=chain['CONTRACT_ADDRESS'],
        chain_id=chain_id(current_app.config),
    )
    return jsonify({'success': True, **minter.status()})


# ---------------- Workshops & bookings ----------------
@api.route('/api/create-workshop', methods=['POST'])
@login_required
def create_workshop(profile):
    if not profile.is_host:
        raise Forbidden('User is not a host')
    host_profile = profile.host_profile
    if host_profile is None:
        raise NotFound('Host profile not found')

    data = request_data(list_fields=('skills',))
    require_fields(data, 'title', 'session_date', 'duration_hours', 'price', 'max_participants')

    tools = data.get('tools_provided') or []
    if isinstance(tools, str):
        tools = [t.strip() for t in tools.split(',') if t.strip()]

    workshop = Workshop(
        host_id=host_profile.id,
        title=data['title'],
        description=data.get('description'),
        skills=[s for s in (data.get('skills') or []) if s],
        tools_provided=tools,
        session_date=parse_utc_timestamp(data['session_date']),
        duration_hours=parse_number(data, 'duration_hours'),
        price=parse_number(data, 'price'),
        max_participants=parse_number(data, 'max_participants', int),
        location=data.get('location'),
        status=WorkshopStatus.ACTIVE,
    )
    db.session.add(workshop)
    commit('create workshop')

    current_app.logger.info(f'Workshop {workshop.id} created by host {profile.id}')
    return jsonify({'success': True, 'workshop_id': workshop.id})


@api.route('/api/create-booking', methods=['POST'])
@login_required
def create_booking(profile):
    data = request_data()
    require_fields(data, 'workshop_id')
    workshop_id = parse_number(data, 'workshop_id', int)

    workshop = db.session.get(Workshop, workshop_id)
    if workshop is None or workshop.status != WorkshopStatus.ACTIVE:
        raise NotFound('Workshop not found')
    host_user = workshop.host.user
    if not host_user.is_host:
        raise NotFound('Workshop not found')
    if host_user.id == profile.id:
        raise Forbidden('Hosts cannot book their own workshop')

    existing = Booking.query.filter_by(workshop_id=workshop.id, learner_id=profile.id).first()
    if existing is not None:
        raise Conflict('You have already booked this workshop')

    if workshop.max_participants:
        taken = Booking.query.filter(
            Booking.workshop_id == workshop.id,
            Booking.status.in_((BookingStatus.PENDING, BookingStatus.CONFIRMED)),
        ).count()
        if taken >= workshop.max_participants:
            raise Conflict('Workshop is fully booked')

    booking = Booking(
        workshop_id=workshop.id,
        host_id=host_user.id,
        learner_id=profile.id,
        notes=data.get('notes') or None,
        status=BookingStatus.CONFIRMED,
    )
    db.session.add(booking)
    commit('create booking')

    return jsonify({'success': True, 'booking_id': booking.id})


@api.route('/api/bookings/<int:booking_id>/status', methods=['POST'])
@login_required
def update_booking_status(profile, booking_id):
    data = request_data()
    new_status = data.get('status')
    if new_status not in (BookingStatus.CONFIRMED, BookingStatus.CANCELLED):
        raise ValidationError(f'Invalid booking status: {new_status}')

    booking = db.session.get(Booking, booking_id)
    if booking is None:
        raise NotFound('Booking not found')
    if booking.host_id != profile.id:
        raise Forbidden('Only the host can change this booking')
    if booking.status == BookingStatus.COMPLETED:
        raise Conflict('Booking is already completed')

    booking.status = new_status
    commit('update booking')
    return jsonify({'success': True, 'booking': booking.to_dict()})


# ---------------- Profiles: host role & wallet ----------------
@api.route('/api/become-host', methods=['POST'])
@login_required
def become_host(profile):
    if profile.host_profile is None:
        return jsonify({'success': True, 'redirect': '/dashboard/host/setup'})

    profile.is_host = True
    commit('update profile')
    return jsonify({'success': True, 'redirect': '/dashboard/host'})


@api.route('/api/host-setup', methods=['POST'])
@login_required
def host_setup(profile):
    data = request_data(list_fields=('skills',))
    require_fields(data, 'display_name')

    profile.display_name = data['display_name']
    profile.location = data.get('location')
    profile.bio = data.get('bio')
    profile.is_host = True

    host_profile = profile.host_profile
    if host_profile is None:
        host_profile = HostProfile(user_id=profile.id)
        db.session.add(host_profile)
    host_profile.skills = [s for s in (data.get('skills') or []) if s]
    commit('save host profile')

    return jsonify({'success': True, 'redirect': '/dashboard/host'})


@api.route('/api/leave-host', methods=['POST'])
@login_required
def leave_host(profile):
    profile.is_host = False
    commit('update profile')
    return jsonify({'success': True, 'redirect': '/dashboard/learner'})


@api.route('/api/wallet', methods=['POST'])
@login_required
def wallet_setup(profile):
    data = request_data()
    opt_out = str(data.get('opt_out', '')).lower() in ('1', 'true', 'yes', 'on')
    address = (data.get('wallet_address') or '').strip()

    if opt_out or not address:
        profile.wallet_opted_out = True
        profile.wallet_address = None
    else:
        validate_wallet_address(address)
        profile.wallet_address = address
        profile.wallet_opted_out = False
    profile.wallet_prompted = True
    commit('save wallet settings')

    return jsonify({
        'success': True,
        'wallet_address': profile.wallet_address,
        'wallet_opted_out': profile.wallet_opted_out,
    })


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    app = create_app()
    debug_mode = os.environ.get('FLASK_DEBUG', 'False').lower() == 'true'
    port = int(os.environ.get('PORT', 5000))
    app.run(host='0.0.0.0', port=port, debug=debug_mode)
