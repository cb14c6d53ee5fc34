from wabridge.auth.base import BaseAuthStrategy
from wabridge.auth.no_auth import NoAuth

__all__ = ['BaseAuthStrategy', 'NoAuth']
