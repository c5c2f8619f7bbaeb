class CollectionNames:
    """MongoDB collection names used by the service."""

    LINK_CACHE = "link_cache"
