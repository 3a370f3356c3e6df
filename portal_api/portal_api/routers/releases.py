"""Public metadata of the current desktop-client release.

Download URLs are not part of the response; they stay behind the
entitlement check in :mod:`portal_api.routers.downloads`.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from portal_api.dependencies import SettingsDep

router = APIRouter(prefix="/releases", tags=["releases"])


@router.get("/latest")
async def latest_release(settings: SettingsDep) -> dict[str, Any]:
    release = settings.latest_release
    return {
        "release": {
            "version": release.version,
            "releaseDate": release.release_date.isoformat(),
            "changelog": list(release.changelog),
            "downloads": {
                platform: {"filename": asset.filename, "size": asset.size, "checksum": asset.checksum}
                for platform, asset in settings.download_catalog.items()
            },
        }
    }
