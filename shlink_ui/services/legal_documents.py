"""
Terms of service and privacy policy, stored as Markdown settings.

Until an admin saves a document, readers get the bundled template.
"""

import logging
from typing import Any, Dict, List

from shlink_ui.services.settings_store import SettingsStore

logger = logging.getLogger(__name__)

TERMS_OF_SERVICE = "terms_of_service"
PRIVACY_POLICY = "privacy_policy"

DOCUMENTS: Dict[str, Dict[str, str]] = {
    TERMS_OF_SERVICE: {
        "title": "Terms of Service",
        "key": "legal.terms_of_service",
        "description": "Conditions of use and prohibited activities",
    },
    PRIVACY_POLICY: {
        "title": "Privacy Policy",
        "key": "legal.privacy_policy",
        "description": "How personal information is handled",
    },
}

TEMPLATES = {
    TERMS_OF_SERVICE: """# Terms of Service

By creating an account you agree to these terms.

## Acceptable use

- Do not shorten links to malware, phishing or otherwise illegal content.
- Do not use the service to send spam.
- Do not try to disrupt the service or other users.

## Accounts

You are responsible for the activity on your account. Accounts that break
these terms may be suspended or deleted without notice.

## Disclaimer

The service is provided as is, without any warranty.
""",
    PRIVACY_POLICY: """# Privacy Policy

## What we collect

- Your e-mail address and name.
- The links you shorten.
- Visit statistics for your links (date, browser, country, referrer).

## How we use it

The data is used to run the service and show you statistics. It is not
sold to third parties.

## Deleting your data

Deleting your account removes your profile and your short URLs.
""",
}


class UnknownDocumentError(KeyError):
    pass


class LegalDocuments:
    def __init__(self, store: SettingsStore):
        self.store = store

    @staticmethod
    def config(document: str) -> Dict[str, str]:
        try:
            return DOCUMENTS[document]
        except KeyError:
            raise UnknownDocumentError(document) from None

    def index(self) -> List[Dict[str, Any]]:
        return [
            {"document": name, "updated": self.store.find(config["key"]) is not None, **config}
            for name, config in DOCUMENTS.items()
        ]

    def stored(self, document: str) -> str:
        """The saved text, empty when the admin never saved one."""
        return self.store.get(self.config(document)["key"], "") or ""

    def content(self, document: str) -> str:
        """What readers see: the saved text or the template."""
        return self.stored(document) or TEMPLATES[document]

    def update(self, document: str, value: str) -> str:
        config = self.config(document)
        self.store.set(
            config["key"],
            value,
            setting_type="string",
            category="legal",
            description=f"{config['title']} (Markdown)",
        )
        logger.info("Updated legal document %s", document)
        return value

    def serialize(self, document: str, content: str) -> Dict[str, Any]:
        config = self.config(document)
        return {"document": document, "title": config["title"], "format": "markdown", "content": content}
