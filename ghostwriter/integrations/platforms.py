"""
Supported platforms and their platform class.

Network platforms have an external network we can sync and mine. Self-authoring
platforms (ghost) have no network: content comes from the account's own
topics and samples.
"""
from enum import Enum


class Platform(str, Enum):
    TWITTER = "twitter"
    LINKEDIN = "linkedin"
    THREADS = "threads"
    FACEBOOK = "facebook"
    GHOST = "ghost"


class PlatformClass(str, Enum):
    NETWORK = "network"
    SELF_AUTHORING = "self_authoring"


SELF_AUTHORING_PLATFORMS = frozenset({Platform.GHOST.value})

# Platforms for which a network client is implemented
SYNCABLE_PLATFORMS = frozenset({Platform.TWITTER.value})


def get_platform_class(platform: str) -> PlatformClass:
    if platform in SELF_AUTHORING_PLATFORMS:
        return PlatformClass.SELF_AUTHORING
    return PlatformClass.NETWORK
