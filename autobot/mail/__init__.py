"""Email forwarding — rule matching, IMAP/SMTP adapters, forwarder poller."""

from autobot.mail.forwarder import MailForwarder
from autobot.mail.rules import is_valid_email, matches_subject

__all__ = ["MailForwarder", "is_valid_email", "matches_subject"]
