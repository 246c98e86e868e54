from datetime import date, datetime
from functools import lru_cache
from typing import Optional, Union

import holidays


class HolidayService:
    """Closed days from the public holiday calendar of a business's country.

    Uses the `holidays` library; the country is the ISO code stored on the
    business (e.g. "BR", "US", "IL").
    """

    @staticmethod
    @lru_cache(maxsize=32)
    def _calendar(country: str, year: int) -> holidays.HolidayBase:
        return holidays.country_holidays(country, years=year)

    @classmethod
    def is_holiday(cls, country: Optional[str], day: Union[date, datetime]) -> bool:
        return cls.get_holiday_name(country, day) is not None

    @classmethod
    def get_holiday_name(
        cls, country: Optional[str], day: Union[date, datetime]
    ) -> Optional[str]:
        if not country:
            return None
        d: date = day.date() if isinstance(day, datetime) else day
        return cls._calendar(country.upper(), d.year).get(d)
