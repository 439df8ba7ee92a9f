from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timezone

db = SQLAlchemy()


def utcnow():
    return datetime.now(timezone.utc)


class BookingStatus:
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'

    ALL = (PENDING, CONFIRMED, COMPLETED, CANCELLED)


class WorkshopStatus:
    ACTIVE = 'active'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class Profile(db.Model):
    __tablename__ = 'profiles'

    id = db.Column(db.String(64), primary_key=True)  # issued by the auth provider
    display_name = db.Column(db.String(120))
    email = db.Column(db.String(256))
    location = db.Column(db.String(256))
    bio = db.Column(db.Text)
    avatar_url = db.Column(db.String(512))
    is_host = db.Column(db.Boolean, nullable=False, default=False)
    wallet_address = db.Column(db.String(42))
    wallet_opted_out = db.Column(db.Boolean, nullable=False, default=False)
    wallet_prompted = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    host_profile = db.relationship('HostProfile', back_populates='user', uselist=False)

    @property
    def name(self):
        return self.display_name or self.email or 'Anonymous'


class HostProfile(db.Model):
    __tablename__ = 'host_profiles'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), db.ForeignKey('profiles.id'), unique=True, nullable=False)
    skills = db.Column(db.JSON, nullable=False, default=list)
    tools = db.Column(db.JSON, nullable=False, default=list)
    total_sessions = db.Column(db.Integer, nullable=False, default=0)
    hourly_rate = db.Column(db.Float)

    user = db.relationship('Profile', back_populates='host_profile')
    workshops = db.relationship('Workshop', back_populates='host')


class Workshop(db.Model):
    __tablename__ = 'workshops'

    id = db.Column(db.Integer, primary_key=True)
    host_id = db.Column(db.Integer, db.ForeignKey('host_profiles.id'), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    skills = db.Column(db.JSON, nullable=False, default=list)  # first entry picks the NFT category
    tools_provided = db.Column(db.JSON, nullable=False, default=list)
    session_date = db.Column(db.DateTime(timezone=True), nullable=False)  # UTC
    duration_hours = db.Column(db.Float, nullable=False)
    price = db.Column(db.Float, nullable=False, default=0)
    max_participants = db.Column(db.Integer)
    location = db.Column(db.String(256))
    status = db.Column(db.String(20), nullable=False, default=WorkshopStatus.ACTIVE)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    host = db.relationship('HostProfile', back_populates='workshops')
    bookings = db.relationship('Booking', back_populates='workshop', order_by='Booking.id')

    def confirmed_bookings(self):
        return [b for b in self.bookings if b.status == BookingStatus.CONFIRMED]


class Booking(db.Model):
    __tablename__ = 'bookings'

    id = db.Column(db.Integer, primary_key=True)
    workshop_id = db.Column(db.Integer, db.ForeignKey('workshops.id'), nullable=False)
    host_id = db.Column(db.String(64), db.ForeignKey('profiles.id'), nullable=False)
    learner_id = db.Column(db.String(64), db.ForeignKey('profiles.id'), nullable=False)
    notes = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default=BookingStatus.PENDING)
    transaction_hash = db.Column(db.String(66))
    token_metadata_uri = db.Column(db.String(128))
    learner_showed_up = db.Column(db.Boolean)
    learner_used_tools = db.Column(db.Boolean)
    host_feedback = db.Column(db.Text)
    completed_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    workshop = db.relationship('Workshop', back_populates='bookings')
    learner = db.relationship('Profile', foreign_keys=[learner_id])

    def to_dict(self):
        return {
            'id': self.id,
            'workshop_id': self.workshop_id,
            'learner_id': self.learner_id,
            'status': self.status,
            'notes': self.notes,
            'transaction_hash': self.transaction_hash,
            'token_metadata_uri': self.token_metadata_uri,
            'learner_showed_up': self.learner_showed_up,
            'learner_used_tools': self.learner_used_tools,
            'host_feedback': self.host_feedback,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
        }
