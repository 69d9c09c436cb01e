from datetime import datetime

from models import db
from models.booking import PaymentStatus, SeriesState
from models.transaction import Transaction


def find_transaction(external_id: str):
    return Transaction.query.filter_by(external_id=external_id).first()


def record_pending(booking, provider: str, external_id: str) -> Transaction:
    """Unposted charge record for a checkout the client has not completed yet."""
    txn = find_transaction(external_id)
    if txn is None:
        txn = Transaction(
            booking_id=booking.id,
            provider=provider,
            kind="CHARGE",
            amount=booking.amount,
            currency=booking.currency,
            external_id=external_id,
            posted=False,
        )
        db.session.add(txn)
    return txn


def post_charge(booking, provider: str, external_id: str) -> bool:
    """Mark the booking Paid and post its charge once.

    Returns False when this provider reference was already posted. The
    caller commits.
    """
    txn = find_transaction(external_id)
    if txn is not None and txn.posted:
        return False
    if txn is None:
        txn = record_pending(booking, provider, external_id)

    now = datetime.utcnow()
    txn.posted = True
    txn.posted_at = now

    booking.payment_status = PaymentStatus.PAID
    booking.paid_at = now
    booking.last_charge_error = None
    if booking.recurring_lesson_id is not None:
        booking.series_state = SeriesState.REALIZED
    return True


def post_refund_due(booking, provider: str, external_id: str) -> bool:
    """Post a charge that arrived after the booking was closed.

    The booking keeps its status; the transaction is flagged for refund.
    Returns False when this provider reference was already posted. The
    caller commits.
    """
    txn = find_transaction(external_id)
    if txn is not None and txn.posted:
        return False
    if txn is None:
        txn = record_pending(booking, provider, external_id)
    txn.posted = True
    txn.posted_at = datetime.utcnow()
    txn.refund_due = True
    return True


def has_later_checkout(booking, external_id: str) -> bool:
    """True when the booking has an unposted checkout opened after `external_id`."""
    query = Transaction.query.filter(
        Transaction.booking_id == booking.id,
        Transaction.posted.is_(False),
        Transaction.external_id != external_id,
    )
    txn = find_transaction(external_id)
    if txn is not None:
        query = query.filter(Transaction.id > txn.id)
    return db.session.query(query.exists()).scalar()
