"""Multi-provider bank connection.

Searches every live bank provider concurrently for an institution name,
then starts the link with the first provider in PROVIDER_PREFERENCE that
found a match. Plaid is preferred for its cheaper tier, regardless of match
quality.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from tally.config import get_settings
from tally.core.errors import ConfigurationError, NotFoundError
from tally.core.linking.finicity_link import FinicityLinkFlow
from tally.core.linking.models import InstitutionMatch, LinkOutcome, LinkStart
from tally.core.linking.plaid_link import PlaidLinkFlow
from tally.core.providers.registry import ProviderRegistry
from tally.credentials.store import SecretStore

logger = logging.getLogger(__name__)

PROVIDER_PREFERENCE = ("plaid", "finicity")

Searcher = Callable[[str], Optional[InstitutionMatch]]


class BankConnector:
    """Routes a bank connection to the best available provider."""

    def __init__(
        self,
        db: Session,
        registry: ProviderRegistry,
        secrets: SecretStore,
        plaid_flow: Optional[PlaidLinkFlow] = None,
        finicity_flow: Optional[FinicityLinkFlow] = None,
        searchers: Optional[Dict[str, Searcher]] = None,
        settings=None,
    ):
        """Initialize connector.

        Args:
            db: Database session
            registry: Provider registry used for the first sync
            secrets: Secret store for new credentials
            plaid_flow: Plaid link flow (built from settings when omitted)
            finicity_flow: Finicity link flow (built from settings when omitted)
            searchers: Provider name -> institution search; defaults to each flow's search
            settings: Settings for timeouts and provider clients
        """
        self.settings = settings or get_settings()
        self.flows = {
            "plaid": plaid_flow or PlaidLinkFlow(db, registry, secrets, settings=self.settings),
            "finicity": finicity_flow or FinicityLinkFlow(db, registry, secrets, settings=self.settings),
        }
        self.searchers: Dict[str, Searcher] = searchers or {
            name: flow.search for name, flow in self.flows.items()
        }

    def _safe_search(self, provider: str, query: str) -> Optional[InstitutionMatch]:
        # An unconfigured or failing provider counts as "no match"
        try:
            return self.searchers[provider](query)
        except Exception as e:
            logger.warning(f"{provider} institution search failed: {e}")
            return None

    def search(self, institution_name: str) -> Dict[str, Optional[InstitutionMatch]]:
        """Query every provider at once, waiting at most search_timeout_seconds.

        Returns:
            Provider name -> best match, or None
        """
        timeout = self.settings.search_timeout_seconds
        deadline = time.monotonic() + timeout
        matches: Dict[str, Optional[InstitutionMatch]] = {}

        executor = ThreadPoolExecutor(max_workers=len(self.searchers), thread_name_prefix="institution_search")
        try:
            futures = {
                name: executor.submit(self._safe_search, name, institution_name)
                for name in self.searchers
            }
            for name, future in futures.items():
                try:
                    matches[name] = future.result(timeout=max(deadline - time.monotonic(), 0))
                except FuturesTimeoutError:
                    logger.warning(f"{name} institution search timed out after {timeout}s")
                    matches[name] = None
        finally:
            # Slow searches finish in the background; their results are dropped
            executor.shutdown(wait=False, cancel_futures=True)

        return matches

    def connect(self, institution_name: str) -> LinkStart:
        """Find the institution and start linking it.

        Raises:
            NotFoundError: If no provider knows the institution
        """
        matches = self.search(institution_name)
        plaid_match = matches.get("plaid")
        finicity_match = matches.get("finicity")

        for provider in PROVIDER_PREFERENCE:
            match = matches.get(provider)
            if match is None:
                continue

            if provider == "plaid":
                start = self.flows["plaid"].start(match.name)
            else:
                start = self.flows["finicity"].start()

            start.institution_name = match.name
            start.plaid_match = plaid_match.name if plaid_match else None
            start.finicity_match = finicity_match.name if finicity_match else None
            logger.info(f"Linking {match.name} through {provider}")
            return start

        raise NotFoundError(
            f'Could not find "{institution_name}" on any supported provider (Plaid or Finicity). '
            f"Try a different name or spelling."
        )

    def complete(
        self,
        provider: str,
        completion_token: str,
        institution_name: Optional[str] = None,
    ) -> LinkOutcome:
        """Complete a link started by connect().

        Raises:
            ConfigurationError: If provider is not plaid or finicity
        """
        if provider == "plaid":
            return self.flows["plaid"].complete(completion_token, institution_name)
        if provider == "finicity":
            return self.flows["finicity"].complete(completion_token)
        raise ConfigurationError(f"Unknown provider: {provider}")
