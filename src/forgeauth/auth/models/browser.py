"""Port to the embedded browser surface that renders the authorization page.

The flow never touches UI state directly. The host supplies an object
implementing ``BrowserSurface`` and routes the browser's navigation
callbacks back into ``AuthorizationFlow``.
"""

from __future__ import annotations

from typing import Protocol


class BrowserSurface(Protocol):
    """Anything that can display the provider's login pages.

    The host must also wire two callbacks from the browser to the flow:

    - before each navigation: ``flow.handle_navigation(url)``, honouring the
      returned ``NavigationPolicy``
    - on a failed page load: ``flow.handle_navigation_failure(exc)``
    """

    async def load(self, url: str) -> None:
        """Start loading ``url``. Should return without waiting for the page."""
        ...
