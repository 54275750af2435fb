"""
Requester classification for public profile pages.

Link-preview crawlers and search bots get pre-rendered HTML with preview
metadata; humans are forwarded to the interactive application. The
classifier in use is picked by the REQUESTER_CLASSIFIER config key.
"""
import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, Type

logger = logging.getLogger(__name__)


class RequesterClassifier(ABC):
    """Decides whether a request comes from an automated agent."""

    name: str = ''

    @abstractmethod
    def is_automated(self, request) -> bool:
        """Return True for crawlers, link-preview fetchers and similar agents."""


class UserAgentClassifier(RequesterClassifier):
    """User-Agent header sniffing."""

    name = 'user_agent'

    AGENT_PATTERN = re.compile(
        r'bot|crawler|spider|facebookexternalhit|facebookcatalog|facebook|twitter|'
        r'linkedin|whatsapp|telegram|slack|discord|googlebot|bingbot|embedly|pinterest',
        re.IGNORECASE,
    )

    def is_automated(self, request) -> bool:
        user_agent = request.headers.get('User-Agent', '')
        if not user_agent:
            return False
        return bool(self.AGENT_PATTERN.search(user_agent))


CLASSIFIER_REGISTRY: Dict[str, Type[RequesterClassifier]] = {
    UserAgentClassifier.name: UserAgentClassifier,
}


def get_classifier(name: str = 'user_agent') -> RequesterClassifier:
    """
    Instantiate a classifier by registry name.

    Raises:
        ValueError: unknown classifier name
    """
    classifier_class = CLASSIFIER_REGISTRY.get(name)
    if classifier_class is None:
        raise ValueError(f"Unknown requester classifier: {name}")
    return classifier_class()
