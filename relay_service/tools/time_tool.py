import datetime
import email.utils as eut
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from relay_service.tools.base import BaseTool


TIMEZONE_ALIASES = {
    "eastern": "America/New_York",
    "central": "America/Chicago",
    "mountain": "America/Denver",
    "pacific": "America/Los_Angeles",
    "est": "America/New_York",
    "cst": "America/Chicago",
    "mst": "America/Denver",
    "pst": "America/Los_Angeles",
    "uk": "Europe/London",
    "london": "Europe/London",
}


class TimeTool(BaseTool):
    """
    Get the current time in a timezone.
    """

    def __init__(self):
        super().__init__()

    async def run(
        self,
        timezone: str = "UTC",
        format: Literal["iso", "rfc2822", "human"] = "human",
    ) -> dict:
        """
        Args:
            timezone: IANA timezone (e.g., Europe/Dublin, America/New_York, UTC). Defaults to UTC.
            format: The format for the returned time string: iso, rfc2822 or human.
        """
        tz_name = TIMEZONE_ALIASES.get(timezone.lower(), timezone) if isinstance(timezone, str) else "UTC"
        try:
            now = datetime.datetime.now(ZoneInfo(tz_name))
        except (ZoneInfoNotFoundError, ValueError):
            return {"success": False, "error": f"Unknown timezone: {timezone}"}

        if format == "iso":
            formatted = now.isoformat()
        elif format == "rfc2822":
            formatted = eut.format_datetime(now)
        else:
            readable_tz = tz_name.replace("_", " ").replace("/", ", ")
            formatted = f"{now.strftime('%I:%M:%S %p')} on {now.strftime('%A, %B %d, %Y')} ({now.strftime('%Z')} - {readable_tz})"
        return {"success": True, "timezone": tz_name, "time": formatted}
