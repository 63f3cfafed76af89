"""
The models package contains all SQLAlchemy ORM models
for the debate relay backend.

For example:
from models import Conversation, Message
"""

from .conversation_models import Conversation, Message
