"""Institution linking.

Usage:
    from tally.core.linking import BankConnector

    connector = BankConnector(db, registry, secrets)
    start = connector.connect("Chase")
    # user opens start.link_url ...
    outcome = connector.complete(start.provider, start.completion_token, start.institution_name)
"""

from tally.core.linking.models import (
    LinkStatus,
    InstitutionMatch,
    LinkStart,
    LinkedConnection,
    LinkOutcome,
)
from tally.core.linking.base import ConnectionLinker
from tally.core.linking.plaid_link import PlaidLinkFlow
from tally.core.linking.finicity_link import FinicityLinkFlow
from tally.core.linking.coinbase_link import CoinbaseLink
from tally.core.linking.connect import BankConnector, PROVIDER_PREFERENCE

__all__ = [
    # Models
    "LinkStatus",
    "InstitutionMatch",
    "LinkStart",
    "LinkedConnection",
    "LinkOutcome",
    # Flows
    "ConnectionLinker",
    "PlaidLinkFlow",
    "FinicityLinkFlow",
    "CoinbaseLink",
    "BankConnector",
    "PROVIDER_PREFERENCE",
]
