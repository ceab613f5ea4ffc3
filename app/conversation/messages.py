"""User-facing bot texts."""

from app.models.subscriber import Subscriber

WELCOME = (
    "Hi! I send a short note every morning about the day ahead and every "
    "evening about tomorrow.\n\nPress Join to set it up."
)
HELP = (
    "Commands:\n"
    "/start - set up notifications\n"
    "/settings - view or change your delivery times\n"
    "/today - today's note\n"
    "/tomorrow - tomorrow's note\n"
    "/stop - pause notifications\n"
    "/resume - resume notifications\n"
    "/setlocation - update your location\n"
    "/settimezone <zone> - set your timezone, e.g. /settimezone Europe/Berlin\n"
    "/cancel - cancel the current step"
)

ASK_LOCATION = (
    "First, share your location so I can work out your timezone. "
    "You can also type a timezone like Europe/Berlin, or press Skip."
)
ASK_LOCATION_UPDATE = "Send your new location, or type a timezone like Europe/Berlin."
LOCATION_REPROMPT = "Please share your location, type a timezone like Europe/Berlin, or press Skip."

ASK_MORNING_TIME = "What time should the morning note arrive? Send it as HH:MM, e.g. 07:30."
ASK_EVENING_TIME = "And the evening note about tomorrow? Send it as HH:MM, e.g. 21:00."
INVALID_TIME = "Please send the time as HH:MM in 24-hour format, e.g. 07:30."
MORNING_TIME_MISSING = "I lost your morning time. Let's set it again."

NOT_ONBOARDED = "You haven't set up notifications yet. Send /start to begin."
CANCELLED = "Cancelled."
PAUSED = "Notifications paused. Send /resume to turn them back on."
ALREADY_PAUSED = "Notifications are already paused."
RESUMED = "Notifications resumed."
ALREADY_ACTIVE = "Notifications are already on."

SETTIMEZONE_USAGE = "Tell me the timezone, e.g. /settimezone Europe/Berlin"
INVALID_TIMEZONE = "Unknown timezone. Example: Europe/Berlin"
LOCATION_UNCHANGED = "Location unchanged."

CONTENT_RATE_LIMITED = "Too many requests right now. Please try again later."
CONTENT_UNAVAILABLE = "The note is temporarily unavailable. Please try again later."
GENERIC_ERROR = "Something went wrong. Please try again later."


def onboarding_complete(subscriber: Subscriber) -> str:
    return (
        "All set! You'll get the morning note at "
        f"{subscriber.morning_time} and the evening note at {subscriber.evening_time} "
        f"({subscriber.timezone})."
    )


def timezone_detected(timezone: str, detected: bool) -> str:
    text = f"Timezone: {timezone}."
    if not detected:
        text += (
            " I couldn't detect it from your location, so I'm using this one. "
            "Change it any time with /settimezone."
        )
    return text


def location_saved(lat: float, lon: float, timezone: str, detected: bool) -> str:
    return f"Location saved: {lat:.4f}, {lon:.4f}.\n{timezone_detected(timezone, detected)}"


def timezone_saved(timezone: str) -> str:
    return f"Timezone saved: {timezone}"


def ask_update_time(label: str, current: str | None) -> str:
    current_text = current or "not set"
    return f"Current {label} time: {current_text}. Send the new time as HH:MM."


def time_updated(label: str, value: str) -> str:
    return f"Done. The {label} note will arrive at {value}."


def settings_summary(subscriber: Subscriber) -> str:
    status = "on" if subscriber.is_active else "paused"
    return (
        "Your settings:\n"
        f"Morning: {subscriber.morning_time or 'not set'}\n"
        f"Evening: {subscriber.evening_time or 'not set'}\n"
        f"Timezone: {subscriber.timezone}\n"
        f"Notifications: {status}"
    )
