"""
In-memory campaign store.

Campaigns live for the lifetime of the process; nothing is persisted.
"""

import secrets
import string
from dataclasses import asdict, dataclass
from typing import Any, Optional

_ID_ALPHABET = string.ascii_lowercase + string.digits


def _new_id() -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(13))


@dataclass
class Campaign:
    id: str
    title: str
    description: str
    goal: float
    creator: str
    deadline: Optional[str] = None
    raised: float = 0
    backers: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class CampaignStore:
    """Ordered in-memory collection of campaigns."""

    def __init__(self) -> None:
        self._campaigns: list[Campaign] = []

    def list_all(self) -> list[Campaign]:
        return list(self._campaigns)

    def get(self, campaign_id: str) -> Optional[Campaign]:
        for campaign in self._campaigns:
            if campaign.id == campaign_id:
                return campaign
        return None

    def create(
        self,
        title: str,
        description: str,
        goal: float,
        creator: str,
        deadline: Optional[str] = None,
    ) -> Campaign:
        campaign = Campaign(
            id=_new_id(),
            title=title,
            description=description,
            goal=goal,
            creator=creator,
            deadline=deadline,
        )
        self._campaigns.append(campaign)
        return campaign

    def donate(self, campaign_id: str, amount: float) -> Optional[Campaign]:
        """Record a donation. Returns None when the campaign does not exist."""
        if amount <= 0:
            raise ValueError("Valid amount is required")
        campaign = self.get(campaign_id)
        if campaign is None:
            return None
        campaign.raised += amount
        campaign.backers += 1
        return campaign
