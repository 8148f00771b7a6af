"""Navigation collaborators.

The controller never touches a user agent directly; it asks a
RedirectGateway to navigate away, report the current location, and
restore or clean up the location once a redirect has been processed.
"""

from __future__ import annotations

import webbrowser

from abc import ABC, abstractmethod

from .log import module_logger
from .urls import extract_fragment, strip_fragment


logger = module_logger("redirect")


class RedirectGateway(ABC):
    """Abstract user-agent navigation interface."""

    @abstractmethod
    def navigate(self, url: str) -> None:
        """Send the user agent to ``url`` (the provider's authorize page).

        Parameters
        ----------
        url : str
            The full authorization URL.
        """

    @abstractmethod
    def current_location(self) -> str | None:
        """Return the current location, fragment included, if known."""

    @abstractmethod
    def set_location(self, url: str) -> None:
        """Replace the current location.

        Parameters
        ----------
        url : str
            The location to restore.
        """

    @abstractmethod
    def clear_fragment(self) -> None:
        """Remove the fragment from the current location."""

    def current_fragment(self) -> str | None:
        """Return the fragment of the current location without ``#``."""
        location = self.current_location()
        if not location or "#" not in location:
            return None
        return extract_fragment(location)


class MemoryRedirectGateway(RedirectGateway):
    """Gateway that only records navigation.

    Suitable for tests and headless hosts that hand the authorization
    URL to the user some other way.

    Parameters
    ----------
    location : str, optional
        The initial current location.
    """

    def __init__(self, location: str | None = None) -> None:
        """Initialize the memory gateway."""
        self.location = location
        self.navigations: list[str] = []

    def navigate(self, url: str) -> None:
        """Record the navigation target."""
        self.navigations.append(url)

    def current_location(self) -> str | None:
        """Return the recorded location."""
        return self.location

    def set_location(self, url: str) -> None:
        """Record the new location."""
        self.location = url

    def clear_fragment(self) -> None:
        """Drop the fragment from the recorded location."""
        if self.location is not None:
            self.location = strip_fragment(self.location)

    @property
    def last_navigation(self) -> str | None:
        """The most recent navigation target, if any."""
        return self.navigations[-1] if self.navigations else None


class BrowserRedirectGateway(MemoryRedirectGateway):
    """Gateway that opens authorization URLs in the system browser.

    The redirect lands wherever the provider's ``redirect_uri`` points;
    the host passes the resulting location to
    ``AuthFlowController.complete_from_redirect``.
    """

    def navigate(self, url: str) -> None:
        """Open ``url`` in the system browser."""
        super().navigate(url)
        if not webbrowser.open(url):
            logger.warning("Could not open a browser. Open this URL to authenticate: %s", url)
