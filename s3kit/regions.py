# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Signing region resolution.

The SigV4 scope must always name a region.  Resolution order:

1. Region configured on the client.
2. Region embedded in an AWS endpoint host (``s3.eu-west-2.amazonaws.com``,
   ``s3-us-west-1.amazonaws.com``, ``bucket.s3.ap-south-1.amazonaws.com``).
3. Region previously learned for the bucket via ``GetBucketLocation``.
4. ``us-east-1``.
"""

import logging
import re


logger = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-1"

_ENDPOINT_REGION_RE = re.compile(
    r"s3[.\-](?:dualstack\.)?(?P<region>[a-z0-9\-]+?)\.amazonaws\.com(?:\.cn)?$",
    re.IGNORECASE,
)

# Location constraints that do not name a region directly
_LOCATION_ALIASES = {"": DEFAULT_REGION, "EU": "eu-west-1", "US": DEFAULT_REGION}


def region_from_endpoint(host: str) -> str:
    """Extract a region from an AWS S3 endpoint host.

    Args:
        host: Endpoint host name (no scheme or port).

    Returns:
        The region, or an empty string if the host does not match a known
        regional endpoint pattern.
    """
    m = _ENDPOINT_REGION_RE.search(host)
    if not m:
        return ""
    region = m.group("region")
    # accelerate and website hosts name no region
    if region == "accelerate" or region.startswith("website"):
        return ""
    # s3.amazonaws.com / s3-external-1 are us-east-1 aliases
    if region in ("external-1", "external"):
        return DEFAULT_REGION
    return region


def normalize_location(location: str | None) -> str:
    """Map a ``LocationConstraint`` value to a region name."""
    location = (location or "").strip()
    return _LOCATION_ALIASES.get(location, location)


class BucketRegionCache:
    """Per-client map of bucket name to region.

    Owned by one client instance; there is no process-wide cache.
    """

    def __init__(self) -> None:
        self._regions: dict[str, str] = {}

    def get(self, bucket_name: str) -> str | None:
        return self._regions.get(bucket_name)

    def add(self, bucket_name: str, region: str) -> None:
        self._regions[bucket_name] = region or DEFAULT_REGION
        logger.debug("Cached region %s for bucket %s", region, bucket_name)

    def remove(self, bucket_name: str) -> None:
        self._regions.pop(bucket_name, None)

    def __contains__(self, bucket_name: object) -> bool:
        return bucket_name in self._regions


def resolve_region(
    *,
    configured: str | None,
    host: str,
    bucket_name: str | None = None,
    cache: BucketRegionCache | None = None,
) -> str:
    """Resolve the signing region; never returns an empty string."""
    if configured:
        return configured
    from_host = region_from_endpoint(host)
    if from_host:
        return from_host
    if bucket_name and cache is not None:
        cached = cache.get(bucket_name)
        if cached:
            return cached
    return DEFAULT_REGION
