"""Button tokens and Telegram reply markups used by the bot."""

from app.services.dispatcher import SendOptions

# Inline button tokens (callback_data)
JOIN = "JOIN"
CHANGE_MORNING = "CHANGE_MORNING"
CHANGE_EVENING = "CHANGE_EVENING"
DISABLE = "DISABLE"
ENABLE = "ENABLE"

BUTTON_TOKENS = frozenset({JOIN, CHANGE_MORNING, CHANGE_EVENING, DISABLE, ENABLE})

# Reply keyboard texts
SEND_LOCATION_TEXT = "Send location"
SKIP_TEXT = "Skip"
CANCEL_TEXT = "Cancel"
TODAY_TEXT = "Today"
TOMORROW_TEXT = "Tomorrow"
SETTINGS_TEXT = "Settings"


def _inline(rows: list[list[tuple[str, str]]]) -> SendOptions:
    return SendOptions(
        reply_markup={
            "inline_keyboard": [
                [{"text": label, "callback_data": token} for label, token in row] for row in rows
            ]
        }
    )


def join_keyboard() -> SendOptions:
    return _inline([[("Join", JOIN)]])


def settings_keyboard(is_active: bool) -> SendOptions:
    """Change buttons plus whichever of pause/resume applies."""
    toggle = ("Pause notifications", DISABLE) if is_active else ("Resume notifications", ENABLE)
    return _inline(
        [
            [("Change morning time", CHANGE_MORNING)],
            [("Change evening time", CHANGE_EVENING)],
            [toggle],
        ]
    )


def location_keyboard() -> SendOptions:
    return SendOptions(
        reply_markup={
            "keyboard": [
                [{"text": SEND_LOCATION_TEXT, "request_location": True}],
                [{"text": SKIP_TEXT}, {"text": CANCEL_TEXT}],
            ],
            "resize_keyboard": True,
            "one_time_keyboard": True,
        }
    )


def cancel_keyboard() -> SendOptions:
    return SendOptions(
        reply_markup={
            "keyboard": [[{"text": CANCEL_TEXT}]],
            "resize_keyboard": True,
        }
    )


def control_keyboard() -> SendOptions:
    """Persistent keyboard shown once a subscriber is set up."""
    return SendOptions(
        reply_markup={
            "keyboard": [
                [{"text": TODAY_TEXT}, {"text": TOMORROW_TEXT}],
                [{"text": SETTINGS_TEXT}],
            ],
            "resize_keyboard": True,
        }
    )


def remove_keyboard() -> SendOptions:
    return SendOptions(reply_markup={"remove_keyboard": True})
