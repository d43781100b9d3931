from app.conversations.models import ConversationMessage, ConversationThread  # noqa: F401
