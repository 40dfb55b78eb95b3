"""Fraud-prevention records consulted by the eligibility checks"""

from sqlalchemy import Column, String, Text, UniqueConstraint

from .base import Base, TimestampedModel, UUIDModel


class WalletBlacklist(Base, UUIDModel, TimestampedModel):
    """Wallet addresses barred from binding"""

    __tablename__ = "wallet_blacklist"

    wallet_address = Column(String(64), nullable=False, unique=True)
    reason = Column(Text, nullable=True)
    blacklisted_by = Column(String(64), nullable=True)


class IpBlacklist(Base, UUIDModel, TimestampedModel):
    """IP addresses barred from earning"""

    __tablename__ = "ip_blacklist"

    ip_address = Column(String(45), nullable=False, unique=True)
    reason = Column(Text, nullable=True)


class IpRegistration(Base, UUIDModel, TimestampedModel):
    """Accounts seen from an IP address"""

    __tablename__ = "ip_registrations"

    ip_address = Column(String(45), nullable=False, index=True)
    user_id = Column(String(64), nullable=False)

    __table_args__ = (
        UniqueConstraint("ip_address", "user_id", name="uq_ip_registration"),
    )
