"""Platform donation records"""

from sqlalchemy import Column, String, BigInteger, Boolean, Text
import enum

from .base import Base, TimestampedModel, UUIDModel, SerializableModel
from .reward import enum_column


class DonationType(str, enum.Enum):
    INTERNAL = "internal"
    ONCHAIN = "onchain"
    PROCESSING = "processing"  # internal donation whose on-chain transfer is in flight
    ONCHAIN_PROCESSED = "onchain_processed"  # internal donation later moved on-chain by an admin


class DonationRecord(Base, UUIDModel, TimestampedModel, SerializableModel):
    """A value transfer from a user to the platform donation sink"""

    __tablename__ = "platform_donations"

    user_id = Column(String(64), nullable=False, index=True)
    amount = Column(BigInteger, nullable=False)
    message = Column(Text, nullable=True)
    is_anonymous = Column(Boolean, nullable=False, default=False)

    is_onchain = Column(Boolean, nullable=False, default=False)
    tx_hash = Column(String(80), nullable=True, unique=True)
    wallet_address = Column(String(64), nullable=True)
    donation_type = enum_column(DonationType, nullable=False, default=DonationType.INTERNAL)
