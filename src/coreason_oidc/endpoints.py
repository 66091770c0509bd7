# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

"""
Framework-neutral handlers for the /login, /callback and /logout routes.

A host framework maps its request onto these calls and turns the returned
`Redirect` into its own response type.
"""

from coreason_oidc.exceptions import AuthenticationError, CoreasonOIDCError
from coreason_oidc.models import Redirect, RequestContext
from coreason_oidc.orchestrator import RelyingParty
from coreason_oidc.session import SessionStore
from coreason_oidc.utils.logger import logger


class AuthEndpoints:
    """
    Adapts `RelyingParty` to redirect-shaped HTTP handlers.

    Attributes:
        relying_party (RelyingParty): Shared relying-party resources.
        error_path (str): Local path shown when a login fails. No error detail is appended.
    """

    def __init__(self, relying_party: RelyingParty, error_path: str = "/auth/error") -> None:
        self.relying_party = relying_party
        self.error_path = error_path

    def login(self, session: SessionStore, request: RequestContext, return_url: str | None = None) -> Redirect:
        """GET /login?returnUrl= -> redirect to the provider."""
        orchestrator = self.relying_party.orchestrator(session, request)
        auth_request = orchestrator.challenge(return_url or "/")
        return Redirect(location=auth_request.url)

    async def callback(
        self,
        session: SessionStore,
        request: RequestContext,
        code: str | None = None,
        state: str | None = None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> Redirect:
        """
        GET /callback?code=&state=&error= -> stored return URL, or the error page.

        Failures are logged by the orchestrator; the browser only ever sees the
        generic error page.
        """
        orchestrator = self.relying_party.orchestrator(session, request)
        try:
            result = await orchestrator.complete_callback(code, state, error, error_description)
        except AuthenticationError:
            return Redirect(location=request.absolute(self.error_path))
        except CoreasonOIDCError as e:
            logger.error(f"Login could not be completed: {type(e).__name__}: {e}")
            return Redirect(location=request.absolute(self.error_path))
        logger.info("Login completed, redirecting to stored return URL")
        return Redirect(location=request.absolute(result.return_url))

    def logout(
        self, session: SessionStore, request: RequestContext, post_logout_redirect_uri: str | None = None
    ) -> Redirect:
        """GET/POST /logout -> provider logout URL."""
        orchestrator = self.relying_party.orchestrator(session, request)
        return Redirect(location=orchestrator.logout(post_logout_redirect_uri))
