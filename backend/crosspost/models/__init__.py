"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from crosspost.models.base import Base
from crosspost.models.social_connection import SocialConnection

__all__ = ["Base", "SocialConnection"]
