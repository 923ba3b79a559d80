from issuelink.models.account import Account
from issuelink.models.oauth_state import OAuthState
from issuelink.models.project import IssueBoard, Project
from issuelink.models.todo import Todo
from issuelink.models.token_handoff import TokenHandoff
from issuelink.models.user import User
from issuelink.models.webhook_event import WebhookEvent

__all__ = [
    "User",
    "Account",
    "OAuthState",
    "WebhookEvent",
    "Project",
    "IssueBoard",
    "Todo",
    "TokenHandoff",
]
