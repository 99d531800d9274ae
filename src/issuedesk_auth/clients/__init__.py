"""HTTP clients for GitHub and the issuance service"""

from .github import GitHubClient
from .issuance import IssuanceClient, PollResult, PollStatus

__all__ = ["GitHubClient", "IssuanceClient", "PollResult", "PollStatus"]
