"""Exception taxonomy for the mail engine.

Which failures abort what:

* :class:`ConnectionFailure` and :class:`PersistenceFailure` abort the whole
  import run and reach the caller.
* :class:`ParseFailure` (and any other per-message error) aborts only the
  current message and lands in the account's error ledger.
* :class:`RepositoryPolicyRejection` aborts only the offending attachment.
"""

from __future__ import annotations


class MailEngineError(Exception):
    """Base class for every error raised by docmail."""


class ConnectionFailure(MailEngineError):
    """The mailbox could not be opened, searched or closed."""


class ParseFailure(MailEngineError):
    """A raw message could not be converted into a canonical mail."""


class PersistenceFailure(MailEngineError):
    """The account store rejected an update of cursor or error ledger.

    In-memory run state would diverge from the persisted state, so the run
    stops here.
    """


class DispatchError(MailEngineError):
    """An outbound message could not be composed; nothing was sent."""


class RepositoryError(MailEngineError):
    """Base class for errors reported by the repository collaborator."""


class ItemExistsError(RepositoryError):
    """A node already exists at the requested path."""


class PathNotFoundError(RepositoryError):
    """No node exists at the requested path or UUID."""


class RepositoryPolicyRejection(RepositoryError):
    """The repository refused to store a document because of a policy."""


class FileSizeExceededError(RepositoryPolicyRejection):
    pass


class QuotaExceededError(RepositoryPolicyRejection):
    pass


class UnsupportedMimeTypeError(RepositoryPolicyRejection):
    pass


class VirusDetectedError(RepositoryPolicyRejection):
    pass
