"""Solar position and sunrise/sunset times.

Low-precision solar ephemeris (about 0.01 degrees over 1950-2050),
accurate enough for shadow-flicker geometry:

1. Julian date from UTC time
2. Greenwich mean sidereal time -> local sidereal time
3. Mean longitude L and anomaly g -> ecliptic longitude lambda
4. Right ascension alpha and declination delta
5. Hour angle H -> altitude and azimuth (0 = North, 90 = East)

Sunrise/sunset use the hour angle at which the sun's centre sits 0.833
degrees below the horizon (refraction plus solar radius).

All position functions are vectorized over time with NumPy.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta

import numpy as np

J2000 = 2451545.0  # Julian date of 2000-01-01 12:00 UTC
UNIX_EPOCH_JD = 2440587.5  # Julian date of 1970-01-01 00:00 UTC
SUNRISE_ALTITUDE_DEG = -0.833


@dataclass(frozen=True)
class SunriseSunset:
    """Local standard time of sunrise and sunset in decimal hours.

    Midnight sun is (0.0, 24.0). Far from the time zone meridian sunrise can
    fall before local midnight (negative hours) or sunset after it (above 24).
    """

    sunrise_h: float
    sunset_h: float

    def contains(self, local_hours: np.ndarray) -> np.ndarray:
        """Elementwise sun-up predicate for local decimal hours in [0, 24).

        A bracket that crosses midnight also covers the wrapped hours at the
        other end of the day.
        """
        up = np.zeros(np.shape(local_hours), dtype=bool)
        for shift in (-24.0, 0.0, 24.0):
            shifted = local_hours + shift
            up |= (shifted >= self.sunrise_h) & (shifted <= self.sunset_h)
        return up


class SolarCalculator:
    """Static methods for sun position on a spherical Earth."""

    @staticmethod
    def julian_date(utc: np.ndarray | datetime) -> np.ndarray:
        """Julian date for naive UTC datetimes or a datetime64 array."""
        times = np.asarray(utc, dtype="datetime64[s]")
        seconds = (times - np.datetime64("1970-01-01T00:00:00", "s")).astype(np.float64)
        return UNIX_EPOCH_JD + seconds / 86400.0

    @staticmethod
    def _equatorial(jd: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Right ascension, declination and mean longitude in degrees."""
        n = jd - J2000
        mean_lon = (280.460 + 0.9856474 * n) % 360.0
        g = np.radians((357.528 + 0.9856003 * n) % 360.0)
        ecl_lon = np.radians(mean_lon + 1.915 * np.sin(g) + 0.020 * np.sin(2 * g))
        obliquity = np.radians(23.439 - 0.0000004 * n)

        ra = np.degrees(np.arctan2(np.cos(obliquity) * np.sin(ecl_lon), np.cos(ecl_lon))) % 360.0
        dec = np.degrees(np.arcsin(np.sin(obliquity) * np.sin(ecl_lon)))
        return ra, dec, mean_lon

    @staticmethod
    def sun_position(jd: np.ndarray, lat: float, lon: float) -> tuple[np.ndarray, np.ndarray]:
        """Solar altitude and azimuth for Julian dates.

        Args:
            jd: Julian dates (UTC)
            lat: Site latitude (decimal degrees, north positive)
            lon: Site longitude (decimal degrees, east positive)

        Returns:
            Tuple (altitude_deg, azimuth_deg), azimuth clockwise from North 0-360.
        """
        jd = np.asarray(jd, dtype=np.float64)
        t = (jd - J2000) / 36525.0
        gmst = (280.46061837 + 360.98564736629 * (jd - J2000) + 0.000387933 * t * t - t * t * t / 38710000.0) % 360.0
        lst = (gmst + lon) % 360.0

        ra, dec, _ = SolarCalculator._equatorial(jd)
        hour_angle = np.radians(((lst - ra + 540.0) % 360.0) - 180.0)

        phi = np.radians(lat)
        delta = np.radians(dec)
        sin_alt = np.sin(phi) * np.sin(delta) + np.cos(phi) * np.cos(delta) * np.cos(hour_angle)
        altitude = np.degrees(np.arcsin(np.clip(sin_alt, -1.0, 1.0)))

        azimuth = np.degrees(
            np.arctan2(
                -np.sin(hour_angle) * np.cos(delta),
                np.sin(delta) * np.cos(phi) - np.cos(delta) * np.sin(phi) * np.cos(hour_angle),
            )
        )
        return altitude, (azimuth + 360.0) % 360.0

    @staticmethod
    def sunrise_sunset(day: date, lat: float, lon: float, utc_offset: float) -> SunriseSunset | None:
        """Sunrise and sunset of one calendar day in local standard time.

        Args:
            day: Calendar day
            lat: Site latitude (decimal degrees)
            lon: Site longitude (decimal degrees)
            utc_offset: Local standard time minus UTC in hours

        Returns:
            SunriseSunset, or None during polar night.
        """
        local_noon_utc = datetime(day.year, day.month, day.day, 12) - timedelta(hours=utc_offset)
        jd = SolarCalculator.julian_date(local_noon_utc)
        ra, dec, mean_lon = SolarCalculator._equatorial(jd)

        # Equation of time in degrees (apparent minus mean solar time)
        eot_deg = float(((mean_lon - ra + 180.0) % 360.0) - 180.0)
        solar_noon_local = 12.0 - lon / 15.0 - eot_deg / 15.0 + utc_offset

        phi = np.radians(lat)
        delta = np.radians(float(dec))
        cos_h0 = (np.sin(np.radians(SUNRISE_ALTITUDE_DEG)) - np.sin(phi) * np.sin(delta)) / (
            np.cos(phi) * np.cos(delta)
        )
        if cos_h0 > 1.0:
            return None
        if cos_h0 < -1.0:
            return SunriseSunset(sunrise_h=0.0, sunset_h=24.0)

        half_day_h = float(np.degrees(np.arccos(cos_h0))) / 15.0
        return SunriseSunset(sunrise_h=solar_noon_local - half_day_h, sunset_h=solar_noon_local + half_day_h)
