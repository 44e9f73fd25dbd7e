"""
Federation protocols, and the link relations used to discover them.
"""

from enum import StrEnum


class Protocol(StrEnum):
    """
    The network tags stored alongside each cached identity.
    """
    DIASPORA = 'dspr'
    ACTIVITYPUB = 'apub'
    DFRN = 'dfrn'
    OSTATUS = 'stat'
    PHANTOM = 'unkn'


# WebFinger link relations of Diaspora identities
REL_HCARD = 'http://microformats.org/profile/hcard'
REL_SEED_LOCATION = 'http://joindiaspora.com/seed_location'
REL_PROFILE_PAGE = 'http://webfinger.net/rel/profile-page'
REL_UPDATES_FROM = 'http://schemas.google.com/g/2010#updates-from'

# WebFinger link relation and media types of ActivityPub identities
REL_SELF = 'self'
ACTIVITYPUB_MEDIA_TYPES = (
    'application/activity+json',
    'application/ld+json; profile="https://www.w3.org/ns/activitystreams"',
)

# Older Diaspora servers put these into the WebFinger document instead of the hCard
REL_LEGACY_GUID = 'http://joindiaspora.com/guid'
REL_LEGACY_PUBLIC_KEY = 'diaspora-public-key'
