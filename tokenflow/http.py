"""Present stored tokens on outgoing httpx requests."""

from __future__ import annotations


from typing import TYPE_CHECKING

import httpx

from .exceptions import MissingToken
from .log import module_logger
from .types import split_scopes


if TYPE_CHECKING:
    from collections.abc import Generator, Iterable

    from .flow import AuthFlowController


logger = module_logger("http")


class TokenAuth(httpx.Auth):
    """httpx authentication using a token held by an AuthFlowController.

    The token is sent as ``Authorization: Bearer <token>``, or as an
    ``access_token`` query parameter when the provider is configured with
    ``present_token = "qs"``. A 401 response wipes the provider's tokens
    so the next ``ensure_tokens`` call starts a fresh flow.

    Parameters
    ----------
    controller : AuthFlowController
        The controller holding the tokens.
    provider_id : str
        The provider whose token is presented.
    scopes : iterable of str, optional
        Scopes the request needs.
    interactive : bool
        When no token is stored, initiate a flow before failing.

    Examples
    --------
    >>> auth = TokenAuth(controller, "example", ["read"])
    >>> httpx.get("https://api.example.com/me", auth=auth)  # doctest: +SKIP
    """

    def __init__(
        self,
        controller: AuthFlowController,
        provider_id: str,
        scopes: Iterable[str] | None = None,
        interactive: bool = False,
    ) -> None:
        """Initialize token auth."""
        self.controller = controller
        self.provider_id = provider_id
        self.scopes = split_scopes(scopes)
        self.interactive = interactive

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        """Attach the token and watch for a 401."""
        config = self.controller.registry.get(self.provider_id)
        token = self.controller.get_access_token(self.provider_id, self.scopes)
        if token is None:
            if self.interactive:
                self.controller.initiate(self.provider_id, self.scopes or None)
            msg = "Could not perform request because no valid token was found"
            raise MissingToken(msg, provider_id=self.provider_id, scopes=self.scopes)

        if config.present_token == "qs":
            request.url = request.url.copy_add_param("access_token", token)
        else:
            request.headers["Authorization"] = f"Bearer {token}"

        response = yield request

        if response.status_code == 401:
            logger.info("Token for %s was rejected; wiping stored tokens", self.provider_id)
            self.controller.wipe(self.provider_id)
