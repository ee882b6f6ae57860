"""docmail: mail import and dispatch for a document repository."""

from .attachments import AttachmentImporter
from .composer import MessageComposer
from .config import MailEngineConfig
from .dispatcher import Dispatcher
from .fetcher import IncrementalFetcher
from .filters import matches, select_filters
from .mailbox import MailboxConnector
from .models import CanonicalMail, MailAccount, MailFilter, MailFilterRule
from .orchestrator import Destination, ImportOrchestrator
from .outlook import OutlookParser
from .parser import MessageParser
from .paths import PathResolver

__all__ = [
    "AttachmentImporter",
    "CanonicalMail",
    "Destination",
    "Dispatcher",
    "ImportOrchestrator",
    "IncrementalFetcher",
    "MailAccount",
    "MailEngineConfig",
    "MailFilter",
    "MailFilterRule",
    "MailboxConnector",
    "MessageComposer",
    "MessageParser",
    "OutlookParser",
    "PathResolver",
    "matches",
    "select_filters",
]
