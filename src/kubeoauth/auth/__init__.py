"""Interactive login flow."""

from .exchanger import STATE_SESSION_KEY, OAuthExchanger

__all__ = ["OAuthExchanger", "STATE_SESSION_KEY"]
