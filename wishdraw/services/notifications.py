from __future__ import annotations

from typing import Dict, Optional

from wishdraw.db import Notification, NotificationType, repo

SECRET_SANTA_MESSAGES: Dict[str, Dict[str, str]] = {
    "en": {
        "title": "Secret Santa draw for {group_name}",
        "body": "Names have been drawn! Click to see who you're buying for.",
    },
    "nl": {
        "title": "Lootjes getrokken voor {group_name}",
        "body": "De namen zijn getrokken! Klik om te zien voor wie je een cadeau koopt.",
    },
}


def secret_santa_message(locale: Optional[str], group_name: str) -> Dict[str, str]:
    language = (locale or "en").split("-")[0].lower()
    template = SECRET_SANTA_MESSAGES.get(language, SECRET_SANTA_MESSAGES["en"])
    return {
        "title": template["title"].format(group_name=group_name),
        "body": template["body"],
    }


def create_secret_santa_notification(
    session,
    user_id: int,
    group_id: int,
    group_name: str,
) -> Optional[Notification]:
    """In-app notice for a giver. None when the user turned in-app notifications off."""
    user = repo.get_user(session, user_id)
    if not user or not user.notify_in_app:
        return None

    message = secret_santa_message(user.locale, group_name)
    return repo.create_notification(
        session,
        user.id,
        NotificationType.SECRET_SANTA_DRAWN,
        message["title"],
        message["body"],
        group_id=group_id,
    )
