from .client import MailClient
