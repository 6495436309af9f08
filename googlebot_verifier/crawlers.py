"""
Google crawler identity: user-agent tokens that claim to be a Google
crawler and the hostname suffixes that may own a verified crawler address.

Both lists are the defaults for the ``crawler.user_agent_tokens`` and
``dns.allowed_suffixes`` config keys.
"""

from typing import Iterable, Optional, Tuple

# Substring tokens, matched case-insensitively. "Googlebot" also covers
# Googlebot-Image, Googlebot-News and Googlebot-Video.
GOOGLE_CRAWLER_TOKENS: Tuple[str, ...] = (
    "Googlebot",
    "Storebot-Google",
    "Google-InspectionTool",
    "GoogleOther",
    "Google-Extended",
    "AdsBot-Google",
    "Mediapartners-Google",
    "APIs-Google",
    "FeedFetcher-Google",
    "Google-Site-Verification",
)

# A PTR hostname must be a strict subdomain of one of these.
GOOGLE_HOSTNAME_SUFFIXES: Tuple[str, ...] = (
    "googlebot.com",
    "google.com",
    "googleusercontent.com",
)


def matched_token(user_agent: Optional[str], tokens: Iterable[str] = GOOGLE_CRAWLER_TOKENS) -> Optional[str]:
    """Return the first crawler token found in ``user_agent``, if any."""
    if not user_agent:
        return None

    lowered = user_agent.lower()
    for token in tokens:
        if token and token.lower() in lowered:
            return token
    return None


def claims_google_crawler(user_agent: Optional[str], tokens: Iterable[str] = GOOGLE_CRAWLER_TOKENS) -> bool:
    return matched_token(user_agent, tokens) is not None
