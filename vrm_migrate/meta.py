"""VRM 0.x ``meta`` to VRMC_vrm ``meta``."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .jsontree import get_index, get_list, get_str

LICENSE_URL = "https://vrm.dev/licenses/1.0/"

AVATAR_PERMISSIONS: Dict[str, str] = {
    "OnlyAuthor": "onlyAuthor",
    "ExplicitlyLicensedPerson": "onlySeparatelyLicensedPerson",
    "Everyone": "everyone",
}

# licenseName -> (allowRedistribution, modification, creditNotation)
LICENSES: Dict[str, tuple] = {
    "Redistribution_Prohibited": (False, "prohibited", "required"),
    "CC0": (True, "allowModificationRedistribution", "unnecessary"),
    "CC_BY": (True, "allowModificationRedistribution", "required"),
    "CC_BY_NC": (True, "allowModificationRedistribution", "required"),
    "CC_BY_SA": (True, "allowModificationRedistribution", "required"),
    "CC_BY_NC_SA": (True, "allowModificationRedistribution", "required"),
    "CC_BY_ND": (True, "prohibited", "required"),
    "CC_BY_NC_ND": (True, "prohibited", "required"),
    "Other": (False, "prohibited", "required"),
}


def _thumbnail_image(gltf: Dict[str, Any], vrm0_meta: Dict[str, Any]) -> Optional[int]:
    textures = get_list(gltf, "textures")
    texture_index = get_index(vrm0_meta, "texture", count=len(textures))
    if texture_index is None:
        return None
    return get_index(textures[texture_index], "source", count=len(get_list(gltf, "images")))


def migrate_meta(gltf: Dict[str, Any], vrm0_meta: Dict[str, Any], notes: Optional[List[str]] = None) -> Dict[str, Any]:
    meta: Dict[str, Any] = {"licenseUrl": LICENSE_URL}

    title = get_str(vrm0_meta, "title")
    if title:
        meta["name"] = title
    version = get_str(vrm0_meta, "version")
    if version:
        meta["version"] = version
    author = get_str(vrm0_meta, "author")
    meta["authors"] = [author] if author else []
    contact = get_str(vrm0_meta, "contactInformation")
    if contact:
        meta["contactInformation"] = contact
    reference = get_str(vrm0_meta, "reference")
    if reference:
        meta["references"] = [reference]

    thumbnail = _thumbnail_image(gltf, vrm0_meta)
    if thumbnail is not None:
        meta["thumbnailImage"] = thumbnail

    allowed_user = get_str(vrm0_meta, "allowedUserName")
    if allowed_user is not None:
        if allowed_user in AVATAR_PERMISSIONS:
            meta["avatarPermission"] = AVATAR_PERMISSIONS[allowed_user]
        else:
            logging.warning("Unrecognized allowedUserName %r kept as is", allowed_user)
            if notes is not None:
                notes.append(f"meta.allowedUserName: unrecognized value {allowed_user!r}")
            meta["avatarPermission"] = allowed_user

    meta["allowExcessivelyViolentUsage"] = get_str(vrm0_meta, "violentUssageName") == "Allow"
    meta["allowExcessivelySexualUsage"] = get_str(vrm0_meta, "sexualUssageName") == "Allow"
    commercial = get_str(vrm0_meta, "commercialUssageName") == "Allow"
    meta["commercialUsage"] = "personalProfit" if commercial else "personalNonProfit"
    meta["allowPoliticalOrReligiousUsage"] = False
    meta["allowAntisocialOrHateUsage"] = False

    license_name = get_str(vrm0_meta, "licenseName")
    if license_name not in LICENSES:
        if license_name is not None:
            logging.warning("Unrecognized licenseName %r, treating it as 'Other'", license_name)
            if notes is not None:
                notes.append(f"meta.licenseName: unrecognized value {license_name!r}")
        license_name = "Other"
    allow_redistribution, modification, credit = LICENSES[license_name]
    meta["allowRedistribution"] = allow_redistribution
    meta["modification"] = modification
    meta["creditNotation"] = credit
    if "_NC" in license_name:
        meta["commercialUsage"] = "personalNonProfit"

    other_license = get_str(vrm0_meta, "otherLicenseUrl") or get_str(vrm0_meta, "otherPermissionUrl")
    if other_license:
        meta["otherLicenseUrl"] = other_license

    return meta
