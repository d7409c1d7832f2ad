"""Featured apps shown ahead of custom, seller-named apps."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class FeaturedApp:
    app_id: str
    app_name: str
    icon_path: str


FEATURED_APPS: tuple[FeaturedApp, ...] = (
    FeaturedApp(app_id="ethos", app_name="Ethos", icon_path="/images/appIcons/ethos.svg"),
    FeaturedApp(app_id="base-app", app_name="Base App", icon_path="/images/appIcons/base-app.jpg"),
)

_BY_ID = {app.app_id: app for app in FEATURED_APPS}


def get_featured_app(app_id: Optional[str]) -> Optional[FeaturedApp]:
    if not app_id:
        return None
    return _BY_ID.get(app_id.lower())


def display_name(app_id: Optional[str], app_name: Optional[str]) -> str:
    """Human label for an app: catalog name, then free-text name, then id."""
    featured = get_featured_app(app_id)
    if featured is not None:
        return featured.app_name
    return app_name or app_id or "Unknown App"
