"""Admin audit log model"""

from sqlalchemy import Column, String, Text, JSON

from .base import Base, TimestampedModel, UUIDModel, SerializableModel


class AdminLog(Base, UUIDModel, TimestampedModel, SerializableModel):
    """Log all admin actions for audit trail"""

    __tablename__ = "admin_logs"

    admin_id = Column(String(64), nullable=False, index=True)
    action = Column(String(100), nullable=False)  # reset_rewards, blacklist_wallet, replay_settlement
    entity_type = Column(String(50), nullable=False)  # user_rewards, wallet, claim
    entity_id = Column(String(200), nullable=False)
    description = Column(Text)
    old_values = Column(JSON)
    new_values = Column(JSON)
    ip_address = Column(String(45))
    user_agent = Column(String(500))
