"""Fire and heat risk derived from weather, alerts and air quality."""
from __future__ import annotations

import re
from typing import List, Optional

from app.domain import AirQualityReport, AlertsReport, FireRisk, HeatRisk, WeatherSnapshot

RISK_LABELS = ["Low", "Guarded", "Elevated", "High", "Extreme"]

FIRE_GUIDANCE = [
    "No strong fire-weather signal from current sources.",
    "Monitor updates; keep route options flexible.",
    "Avoid committing to long, exposed approaches; identify smoke/egress contingencies.",
    "Conservative plan advised: shorter objective, hard turn-around rules, and active monitoring.",
    "Do not commit to exposed objective windows in fire-prone terrain.",
]
HEAT_GUIDANCE = [
    "No notable heat signal from current forecast inputs.",
    "Warm exposure possible. Bring extra water and manage sun/shade transitions.",
    "Heat stress is plausible during sustained movement. Increase hydration and pace control.",
    "High heat-stress risk. Shorten exposed pushes and enforce frequent cooling breaks.",
    "Extreme heat-stress risk. Avoid committing to long, exposed objectives in this window.",
]

FIRE_ALERT_PATTERN = re.compile(r"red flag|fire weather|wildfire|smoke|air quality", re.IGNORECASE)
SMOKE_ALERT_PATTERN = re.compile(r"wildfire|smoke|air quality", re.IGNORECASE)


def build_fire_risk(weather: WeatherSnapshot, alerts: Optional[AlertsReport],
                    air_quality: Optional[AirQualityReport]) -> FireRisk:
    if weather.unavailable:
        return FireRisk()

    events = [a.event for a in (alerts.alerts if alerts else []) if FIRE_ALERT_PATTERN.search(a.event)]
    level = 0
    reasons: List[str] = []

    if any(re.search(r"red flag warning", e, re.IGNORECASE) for e in events):
        level = 4
        reasons.append("Red Flag Warning is active.")
    elif any(re.search(r"fire weather watch", e, re.IGNORECASE) for e in events):
        level = 3
        reasons.append("Fire Weather Watch is active.")

    temp, humidity, wind, gust = weather.temp, weather.humidity, weather.wind_speed, weather.wind_gust
    if temp is not None and humidity is not None and wind is not None:
        if temp >= 90 and humidity <= 20 and wind >= 20:
            level = max(level, 4)
            reasons.append(f"Hot/dry/windy pattern ({temp:g}F, RH {humidity:g}%, wind {wind:g} mph).")
        elif temp >= 80 and humidity <= 25 and wind >= 15:
            level = max(level, 3)
            reasons.append(f"Elevated fire-weather pattern ({temp:g}F, RH {humidity:g}%, wind {wind:g} mph).")
        elif temp >= 70 and humidity <= 30 and (wind >= 12 or (gust is not None and gust >= 20)):
            level = max(level, 2)
            reasons.append(f"Dry and breezy conditions support faster fire spread ({temp:g}F, RH {humidity:g}%).")

    aqi = air_quality.us_aqi if air_quality else None
    smoky = re.search(r"smoke|haze", (weather.description or "").lower())
    if smoky or (aqi is not None and aqi >= 101) or any(SMOKE_ALERT_PATTERN.search(e) for e in events):
        level = max(level, 2)
        reasons.append("Smoke/air-quality signal may indicate nearby fire activity or transport.")
    elif aqi is not None and aqi >= 51:
        level = max(level, 1)
        reasons.append("Moderate AQI could affect exertion tolerance in exposed terrain.")

    return FireRisk(
        status="ok",
        level=level,
        label=RISK_LABELS[level],
        guidance=FIRE_GUIDANCE[level],
        reasons=reasons or [FIRE_GUIDANCE[0]],
        alerts_considered=events[:5],
    )


def build_heat_risk(weather: WeatherSnapshot) -> HeatRisk:
    """Peak apparent temperature across the trend and warmer lower-terrain bands."""
    if weather.unavailable:
        return HeatRisk()

    temp = weather.temp
    feels_like = weather.feels_like if weather.feels_like is not None else temp
    trend_temps = [p.temp for p in weather.trend if p.temp is not None]
    peak_temp = max([t for t in [temp] if t is not None] + trend_temps, default=None)
    if feels_like is not None:
        peak_feels = max(feels_like, peak_temp) if peak_temp is not None else feels_like
    else:
        peak_feels = peak_temp

    warmest = None
    for band in weather.elevation_forecast:
        if band.delta_from_objective_ft >= 0:
            continue
        band_feels = band.feels_like if band.feels_like is not None else band.temp
        if warmest is None or band_feels > (warmest.feels_like if warmest.feels_like is not None else warmest.temp):
            warmest = band
    lower_feels = None
    if warmest is not None:
        lower_feels = warmest.feels_like if warmest.feels_like is not None else warmest.temp
        peak_temp = max(peak_temp, warmest.temp) if peak_temp is not None else warmest.temp
        peak_feels = max(peak_feels, lower_feels) if peak_feels is not None else lower_feels

    level = 0
    reasons: List[str] = []
    if peak_feels is not None:
        if peak_feels >= 100:
            level = 4
            reasons.append(f"Peak apparent temperature in the travel window reaches {round(peak_feels)}F.")
        elif peak_feels >= 92:
            level = 3
            reasons.append(f"Peak apparent temperature in the travel window reaches {round(peak_feels)}F.")
        elif peak_feels >= 84:
            level = 2
            reasons.append(f"Apparent temperature in the travel window is near {round(peak_feels)}F.")
        elif peak_feels >= 76 and weather.is_daytime is not False:
            level = 1
            reasons.append(f"Warm daytime apparent temperature near {round(peak_feels)}F.")

    humidity = weather.humidity
    if peak_temp is not None and humidity is not None:
        if peak_temp >= 92 and humidity >= 55:
            level = max(level, 4)
            reasons.append(f"Heat + humidity pattern ({round(peak_temp)}F, RH {round(humidity)}%).")
        elif peak_temp >= 86 and humidity >= 55:
            level = max(level, 3)
            reasons.append(f"Warm/humid pattern ({round(peak_temp)}F, RH {round(humidity)}%).")
        elif peak_temp >= 80 and humidity >= 45:
            level = max(level, 2)
            reasons.append(f"Moderate humidity can increase heat load ({round(peak_temp)}F, RH {round(humidity)}%).")

    if warmest is not None and lower_feels is not None:
        reasons.append(f"Lower terrain can run warmer: {warmest.label} ({warmest.elevation_ft} ft) is estimated "
                       f"near {round(lower_feels)}F apparent.")
    if temp is not None and temp >= 85 and weather.is_daytime is False and level > 0:
        reasons.append("Selected start appears after dark, but daytime heat exposure can still matter later in the window.")

    return HeatRisk(
        source="Derived from forecast temperature, apparent temperature, humidity, and lower-terrain elevation estimates",
        status="ok",
        level=level,
        label=RISK_LABELS[level],
        guidance=HEAT_GUIDANCE[level],
        reasons=reasons or [HEAT_GUIDANCE[0]],
        peak_temp_f=peak_temp,
        peak_feels_like_f=peak_feels,
        lower_terrain_label=warmest.label if warmest else None,
        lower_terrain_feels_like_f=lower_feels,
    )
