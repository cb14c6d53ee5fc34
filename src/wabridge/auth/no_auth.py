from wabridge.auth.base import BaseAuthStrategy


class NoAuth(BaseAuthStrategy):
    """No session restoring functionality. Changes will need to be re-authenticated every time a new client is started."""
