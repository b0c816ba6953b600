"""
Exception hierarchy for the mailbox policy engine.

Fatal errors (connection, authentication, configuration) abort a run before
any mutation is attempted. Query, action and header errors are recovered by
the engines and surface only in logs and the processing report.
"""


class MailPolicyError(Exception):
    """Base class for all errors raised by this package."""


class ConfigError(MailPolicyError):
    """Invalid configuration detected at load time."""


class SessionConnectionError(MailPolicyError):
    """The IMAP server could not be reached."""


class AuthenticationError(MailPolicyError):
    """The IMAP server rejected the supplied credentials."""


class QueryValidationError(MailPolicyError):
    """A selection query failed validation before reaching the server."""


class HeaderParseError(MailPolicyError):
    """A header value could not be parsed into addresses."""


class ActionError(MailPolicyError):
    """
    A mutation failed for one message.

    Attributes:
        uid: Message UID the operation targeted
        operation: Short description of the operation (e.g. "+X-GM-LABELS Archive")
        subject: Message subject, when known
    """

    def __init__(self, uid: str, operation: str, detail: str, subject: str = ""):
        self.uid = uid
        self.operation = operation
        self.subject = subject
        super().__init__(f"{operation} failed on UID {uid}: {detail} | Subject: {subject}")
