"""Implicit-grant flow controller.

Provides AuthFlowController, which coordinates the three protocol steps
of the OAuth2 implicit grant:

- **initiate**: build an authorization request, remember it under a fresh
  state token, and navigate to the provider.
- **complete_from_redirect**: parse the fragment the provider redirects
  back with, match it to its pending request, resolve expiry and scope,
  and store the issued token.
- **ensure_tokens**: initiate a flow for every requirement that has no
  usable stored token.

Nothing here blocks: ``initiate`` ends in a navigation side effect and
the caller re-checks for tokens after the redirect cycle completes.
"""

# pylint: disable=too-many-instance-attributes

from __future__ import annotations

import threading
import uuid

from typing import TYPE_CHECKING, Any

from .continuations import ContinuationRegistry
from .exceptions import MalformedFragment, MissingProvider, TokenFlowError, UnknownState
from .log import module_logger, redact_sensitive_data, set_level
from .pending import PendingRequestStore
from .providers import ProviderRegistry
from .redirect import BrowserRedirectGateway, MemoryRedirectGateway, RedirectGateway
from .storage import MemoryStorage, StorageBackend, create_storage
from .token_store import TokenStore
from .types import (
    DEFAULT_LIFETIME,
    RESPONSE_FIELDS,
    FlowState,
    IssuedToken,
    PendingAuthRequest,
    ProviderConfig,
    split_scopes,
)
from .urls import build_url, epoch, extract_fragment, parse_fragment


if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    from .config import TokenFlowSettings
    from .continuations import Continuation


logger = module_logger("flow")


def resolve_scopes(response: Mapping[str, str], requested: Iterable[str]) -> tuple[str, ...] | None:
    """Decide which scopes a token was granted.

    The response's ``scope`` wins; otherwise the originating request's
    scopes are inherited; otherwise the token is unscoped (None).
    """
    granted = response.get("scope", "").split()
    if granted:
        return tuple(granted)
    inherited = tuple(requested)
    return inherited or None


def resolve_expiry(
    response: Mapping[str, str],
    config: ProviderConfig,
    scopes: tuple[str, ...] | None,
    now: int,
    default_lifetime: int = DEFAULT_LIFETIME,
) -> int | None:
    """Decide when a token expires.

    Priority, first match wins:

    1. the response's ``expires_in``;
    2. a provider lifetime of NEVER (no expiry);
    3. a numeric provider lifetime;
    4. a provider permanent scope: no expiry if granted, else the default;
    5. the default library lifetime.

    Returns
    -------
    int or None
        Expiry epoch second, or None for a token that never expires.

    Raises
    ------
    MalformedFragment
        If ``expires_in`` is present but not an integer.
    """
    expires_in = response.get("expires_in", "").strip()
    if expires_in:
        try:
            return now + int(expires_in)
        except ValueError:
            msg = "expires_in is not an integer"
            raise MalformedFragment(msg, expires_in=expires_in) from None
    if config.never_expires:
        return None
    if isinstance(config.default_lifetime, int):
        return now + config.default_lifetime
    if config.permanent_scope:
        if scopes is not None and config.permanent_scope in scopes:
            return None
        return now + default_lifetime
    return now + default_lifetime


class AuthFlowController:
    """Orchestrates implicit-grant flows for a set of providers.

    One controller owns its registry, stores and collaborators; there is
    no hidden process-wide state. ``get_controller()`` offers a shared
    instance built from settings for applications that want one.

    Parameters
    ----------
    providers : Mapping[str, ProviderConfig | Mapping], optional
        Initial provider configuration. Unlike ``configure``, passing it
        here does not check the current location for a token.
    storage : StorageBackend, optional
        Backing store for pending requests and tokens (memory if omitted).
    gateway : RedirectGateway, optional
        Navigation collaborator (a recording MemoryRedirectGateway if omitted).
    continuations : ContinuationRegistry, optional
        Registry of callbacks resumed after redirect.
    default_lifetime : int
        Fallback token lifetime in seconds (default 3600).
    clock : callable, optional
        Returns the current epoch second.
    """

    def __init__(
        self,
        providers: Mapping[str, ProviderConfig | Mapping[str, Any]] | None = None,
        storage: StorageBackend | None = None,
        gateway: RedirectGateway | None = None,
        continuations: ContinuationRegistry | None = None,
        default_lifetime: int = DEFAULT_LIFETIME,
        clock: Callable[[], int] | None = None,
    ) -> None:
        """Initialize the flow controller."""
        self.storage = storage or MemoryStorage()
        self.clock = clock or epoch
        self.registry = ProviderRegistry(providers)
        self.pending = PendingRequestStore(self.storage)
        self.tokens = TokenStore(self.storage, clock=self.clock)
        self.gateway = gateway or MemoryRedirectGateway()
        self.continuations = continuations or ContinuationRegistry()
        self.default_lifetime = default_lifetime
        self._outcomes: dict[str, FlowState] = {}

    # ── Configuration ────────────────────────────────────────────────

    def configure(self, providers: Mapping[str, ProviderConfig | Mapping[str, Any]]) -> None:
        """Replace the provider configuration.

        After installing the configuration, the current location is
        checked for a token response addressed to the default provider,
        best-effort.
        """
        self.registry.configure(providers)
        self.try_complete_from_redirect(fallback_provider_id=self.registry.find_default())

    # ── Protocol steps ───────────────────────────────────────────────

    def initiate(
        self,
        provider_id: str,
        scopes: Iterable[str] | None = None,
        continuation: Continuation | None = None,
    ) -> str:
        """Start an implicit-grant flow.

        Parameters
        ----------
        provider_id : str
            The provider to authorize against.
        scopes : iterable of str, optional
            Scopes to request; omitted means the provider's default.
        continuation : callable, optional
            Invoked once, after the matching redirect is processed.

        Returns
        -------
        str
            The state token of the new flow.

        Raises
        ------
        UnknownProvider
            If ``provider_id`` is not configured. Nothing is stored and
            no navigation happens.
        """
        config = self.registry.get(provider_id)
        requested = split_scopes(scopes)

        state = self._new_state()
        if continuation is not None:
            self.continuations.register(state, continuation)

        params: dict[str, str] = {"response_type": "token", "state": state}
        if config.redirect_uri:
            params["redirect_uri"] = config.redirect_uri
        if config.client_id:
            params["client_id"] = config.client_id
        if requested:
            params["scope"] = " ".join(requested)
        url = build_url(config.authorization, params)

        request = PendingAuthRequest(
            state=state,
            provider_id=provider_id,
            scopes=tuple(requested),
            location=self.gateway.current_location(),
            has_continuation=continuation is not None,
        )
        try:
            self.pending.put(state, request)
        except TokenFlowError:
            self.continuations.discard(state)
            raise
        logger.info("Sending authorization request to %s (state %s)", provider_id, state)
        logger.debug("Authorization request: %s", redact_sensitive_data(params))

        self.gateway.navigate(url)
        return state

    def complete_from_redirect(
        self,
        location: str | None = None,
        fallback_provider_id: str | None = None,
    ) -> IssuedToken | None:
        """Process a provider redirect carrying a token in its fragment.

        Safe to call speculatively on every load: without a fragment, or
        with one that has no ``access_token``, this is a no-op.

        Parameters
        ----------
        location : str, optional
            The redirect location or bare fragment. Defaults to the
            fragment of the gateway's current location; a current location
            without ``#`` is never read as a bare fragment.
        fallback_provider_id : str, optional
            Provider to attribute a state-less response to. This is a
            degraded mode without CSRF correlation; see ``_degraded_request``.

        Returns
        -------
        IssuedToken or None
            The stored token, or None if there was nothing to process.

        Raises
        ------
        UnknownState
            The response's state matches no pending request.
        MissingProvider
            The response has no state and no fallback provider was given.
        UnknownProvider
            The request's provider is no longer configured.
        MalformedFragment
            The fragment has no usable access token or expiry.
        """
        fragment = self.gateway.current_fragment() if location is None else extract_fragment(location)
        if not fragment or "access_token" not in fragment:
            return None

        logger.debug("Processing redirect fragment %s", redact_sensitive_data(fragment))
        response = parse_fragment(fragment)
        state = response.get("state") or None
        try:
            request, token = self._resolve(response, state, fallback_provider_id)
            self.tokens.save(request.provider_id, token)
        except TokenFlowError:
            if state:
                self._outcomes[state] = FlowState.ABANDONED
                self.continuations.discard(state)
            self.gateway.clear_fragment()
            raise

        if request.location:
            self.gateway.set_location(request.location)
        else:
            self.gateway.clear_fragment()

        logger.info("Stored token for %s (state %s)", request.provider_id, state or "-")
        if state:
            self._outcomes[state] = FlowState.COMPLETED
            self.continuations.take_and_invoke(state)
        return token

    def try_complete_from_redirect(
        self,
        location: str | None = None,
        fallback_provider_id: str | None = None,
    ) -> IssuedToken | None:
        """Best-effort ``complete_from_redirect``.

        Failures are logged and the fragment is cleared so a broken
        redirect cannot trap the user in a reload loop.
        """
        try:
            return self.complete_from_redirect(location, fallback_provider_id)
        except TokenFlowError as exc:
            logger.warning("Error when retrieving token from redirect: %s", exc)
            return None

    def ensure_tokens(self, requirements: Mapping[str, Iterable[str] | None]) -> list[str]:
        """Initiate a flow for every requirement without a usable token.

        Does not wait for any redirect; callers re-check with
        ``get_access_token`` once the redirect cycle completes.

        Parameters
        ----------
        requirements : Mapping[str, iterable of str or None]
            Provider id to the scopes needed (None for any token).

        Returns
        -------
        list[str]
            State tokens of the flows that were initiated.
        """
        initiated = []
        for provider_id, scopes in requirements.items():
            requested = split_scopes(scopes)
            token = self.tokens.lookup(provider_id, requested)
            logger.debug("Ensure token for %s: %s", provider_id, "hit" if token else "miss")
            if token is None:
                initiated.append(self.initiate(provider_id, requested or None))
        return initiated

    # ── Reads ────────────────────────────────────────────────────────

    def get_token(self, provider_id: str, scopes: Iterable[str] | None = None) -> IssuedToken | None:
        """Return the stored token record covering ``scopes``, if any."""
        return self.tokens.lookup(provider_id, split_scopes(scopes))

    def get_access_token(self, provider_id: str, scopes: Iterable[str] | None = None) -> str | None:
        """Return the access token covering ``scopes``, if any.

        A pure read: never starts a flow.
        """
        token = self.get_token(provider_id, scopes)
        if token is None or not token.access_token:
            return None
        return token.access_token

    def flow_state(self, state: str) -> FlowState:
        """Report the state of a flow by its state token.

        Outcomes are remembered for the lifetime of this controller;
        a flow that is still waiting in storage reports PENDING.
        """
        if state in self._outcomes:
            return self._outcomes[state]
        if state in self.pending:
            return FlowState.PENDING
        return FlowState.IDLE

    # ── Maintenance ──────────────────────────────────────────────────

    def wipe(self, provider_id: str | None = None) -> int:
        """Remove stored tokens for one provider, or for every configured one.

        Returns
        -------
        int
            Number of tokens removed.
        """
        provider_ids = [provider_id] if provider_id is not None else self.registry.ids()
        return sum(self.tokens.wipe(pid) for pid in provider_ids)

    def dump(self) -> dict[str, dict[str, Any]]:
        """Describe every configured provider and its stored tokens."""
        now = self.clock()
        result: dict[str, dict[str, Any]] = {}
        for provider_id, config in self.registry.items():
            result[provider_id] = {
                "config": config.model_dump(),
                "tokens": [
                    {
                        "access_token": token.access_token,
                        "scopes": list(token.scopes) if token.scopes is not None else None,
                        "expires_at": token.expires_at,
                        "expired": token.is_expired(now),
                    }
                    for token in self.tokens.enumerate(provider_id)
                ],
            }
        logger.debug("Dump: %s", redact_sensitive_data(result))
        return result

    # ── Internals ────────────────────────────────────────────────────

    def _new_state(self) -> str:
        """Generate a state token not currently pending."""
        while True:
            state = uuid.uuid4().hex
            if state not in self.pending:
                return state

    def _resolve(
        self,
        response: dict[str, str],
        state: str | None,
        fallback_provider_id: str | None,
    ) -> tuple[PendingAuthRequest, IssuedToken]:
        """Match a parsed response to its request and build the token."""
        access_token = response.get("access_token", "")
        if state:
            request = self.pending.take(state)
            if request is None:
                msg = "Could not retrieve a pending request for this state"
                raise UnknownState(msg, state=state)
        else:
            request = self._degraded_request(fallback_provider_id)

        config = self.registry.get(request.provider_id)

        if not access_token:
            msg = "Fragment has no access token"
            raise MalformedFragment(msg, provider_id=request.provider_id)

        now = self.clock()
        scopes = resolve_scopes(response, request.scopes)
        expires_at = resolve_expiry(response, config, scopes, now, self.default_lifetime)
        token = IssuedToken(
            access_token=access_token,
            expires_at=expires_at,
            scopes=scopes,
            token_type=response.get("token_type") or None,
            state=state,
            issued_at=now,
            extra={k: v for k, v in response.items() if k not in RESPONSE_FIELDS},
        )
        return request, token

    def _degraded_request(self, fallback_provider_id: str | None) -> PendingAuthRequest:
        """Stand-in request for a response that carries no state.

        Without a state there is no CSRF correlation: the response is
        trusted to belong to whichever provider the caller expects, and
        that provider's configured default scope is taken as requested.
        """
        if not fallback_provider_id:
            msg = "Could not get a state from the redirect and no default provider was given"
            raise MissingProvider(msg)
        config = self.registry.get(fallback_provider_id)
        logger.warning(
            "Redirect carries no state; attributing token to %s without correlation",
            fallback_provider_id,
        )
        return PendingAuthRequest(
            state="",
            provider_id=fallback_provider_id,
            scopes=tuple(config.scope),
        )


_controller_instance: AuthFlowController | None = None
_controller_lock = threading.Lock()


def create_controller(settings: TokenFlowSettings | None = None) -> AuthFlowController:
    """Build a controller from settings.

    Uses the configured storage backend and a BrowserRedirectGateway.
    """
    if settings is None:
        from .config import get_settings

        settings = get_settings()

    set_level(settings.effective_log_level)
    storage = create_storage(
        settings.storage.backend,
        path=settings.storage.path,
        redis_url=settings.storage.redis_url,
        prefix=settings.storage.prefix,
        pool_size=settings.storage.pool_size,
    )
    controller = AuthFlowController(
        storage=storage,
        gateway=BrowserRedirectGateway(),
        default_lifetime=settings.default_lifetime,
    )
    controller.configure(settings.providers)
    return controller


def get_controller() -> AuthFlowController:
    """Get the shared controller, creating it from settings on first use.

    Call ``reset_controller()`` to discard it (e.g. in tests).
    """
    global _controller_instance  # noqa: PLW0603

    with _controller_lock:
        if _controller_instance is None:
            _controller_instance = create_controller()
        return _controller_instance


def reset_controller() -> None:
    """Reset the shared controller instance."""
    global _controller_instance  # noqa: PLW0603

    with _controller_lock:
        _controller_instance = None
