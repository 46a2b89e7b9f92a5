import secrets
import string
from datetime import date, datetime, timezone

def generate_appointment_number(appointment_date: date) -> str:
    # APT-<yyyymmdd>-<8 random chars>; the unique index on the column is the real guarantee
    alphabet = string.ascii_uppercase + string.digits
    suffix = ''.join(secrets.choice(alphabet) for _ in range(8))
    return f"APT-{appointment_date:%Y%m%d}-{suffix}"

def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open overlap: [a_start, a_end) and [b_start, b_end) share an instant."""
    return start_a < end_b and start_b < end_a

def utcnow() -> datetime:
    # Aware UTC; timestamp columns are DateTime(timezone=True)
    return datetime.now(timezone.utc)
