"""Deterministic safety score, confidence and explanations.

Every hazard signal becomes zero or more ``HazardFactor`` deductions. Factors
are summed per hazard group and each group total is capped, so no single
category can drive the score to zero alone. Confidence is computed
independently from data freshness and feed availability.
"""

from __future__ import annotations

import datetime as dt
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from app.alerts import normalize_severity
from app.bulletin_parsing import AVALANCHE_UNKNOWN_MESSAGE
from app.domain import (
    AirQualityReport,
    AlertsReport,
    FireRisk,
    GroupImpact,
    HazardBulletin,
    HazardFactor,
    HazardGroup,
    HeatRisk,
    RainfallReport,
    SafetyScore,
    SolarTimes,
    WeatherSnapshot,
)
from app.data_sources.http_gateway import utc_now
from app.weather_math import compute_feels_like, parse_clock_minutes, parse_iso

GROUP_CAPS: Dict[HazardGroup, int] = {
    HazardGroup.AVALANCHE: 55,
    HazardGroup.WEATHER: 38,
    HazardGroup.ALERTS: 24,
    HazardGroup.AIR_QUALITY: 20,
    HazardGroup.FIRE: 18,
}
MIN_CONFIDENCE = 20
ALERT_LEAD_LIMIT_HOURS = 48
STABLE_EXPLANATION = "Conditions appear stable for the selected plan window."

FORECAST_SOURCE = "NOAA hourly forecast"
TREND_SOURCE = "NOAA hourly trend"
PRECIP_SOURCE = "Open-Meteo precipitation history"


def group_for_hazard(hazard: str) -> HazardGroup:
    """Derive the score group from a factor label."""
    label = hazard.lower()
    if "avalanche" in label:
        return HazardGroup.AVALANCHE
    if "alert" in label:
        return HazardGroup.ALERTS
    if "air quality" in label:
        return HazardGroup.AIR_QUALITY
    if "fire" in label:
        return HazardGroup.FIRE
    return HazardGroup.WEATHER


@dataclass
class _Tally:
    """Running factor and confidence-penalty lists."""
    factors: List[HazardFactor] = field(default_factory=list)
    explanations: List[str] = field(default_factory=list)
    confidence: int = 100
    confidence_reasons: List[str] = field(default_factory=list)

    def factor(self, hazard: str, impact: int, message: str, source: str) -> None:
        if impact <= 0:
            return
        self.factors.append(HazardFactor(hazard=hazard, impact=impact, group=group_for_hazard(hazard),
                                         message=message, source=source))
        self.explanations.append(message)

    def penalty(self, points: int, reason: str) -> None:
        if points <= 0:
            return
        self.confidence -= points
        self.confidence_reasons.append(reason)


def _hours_between(later: Optional[dt.datetime], earlier: Optional[dt.datetime]) -> Optional[float]:
    if later is None or earlier is None:
        return None
    return (later - earlier).total_seconds() / 3600


def forecast_lead_hours(weather: WeatherSnapshot, selected_date: Optional[str], now: dt.datetime) -> Optional[float]:
    """Hours from now to the planned start; the selected date at 00Z when no start is known."""
    start = parse_iso(weather.forecast_start_time)
    if start is None and selected_date and re.match(r"^\d{4}-\d{2}-\d{2}$", selected_date):
        start = parse_iso(f"{selected_date}T00:00:00Z")
    return _hours_between(start, now)


# ---------------------------------------------------------------------------
# Factor tables
# ---------------------------------------------------------------------------


def _score_avalanche(bulletin: HazardBulletin, tally: _Tally) -> None:
    if not bulletin.relevant:
        return
    risk = (bulletin.risk_label or "").lower()
    source = "Avalanche center forecast"
    if bulletin.danger_unknown:
        tally.factor("Avalanche Uncertainty", 16, AVALANCHE_UNKNOWN_MESSAGE, "Avalanche center coverage")
    elif bulletin.danger_level >= 4 or "high" in risk or "extreme" in risk:
        tally.factor("Avalanche", 52, "High avalanche danger reported. Avoid avalanche terrain and steep loaded slopes.",
                     source)
    elif bulletin.danger_level == 3 or "considerable" in risk:
        tally.factor("Avalanche", 34, "Considerable avalanche danger. Conservative terrain selection and strict "
                     "spacing are required.", source)
    elif bulletin.danger_level == 2 or "moderate" in risk:
        tally.factor("Avalanche", 15, "Moderate avalanche danger. Evaluate snowpack and avoid connected terrain traps.",
                     source)
    elif bulletin.danger_level == 1:
        tally.factor("Avalanche", 4, "Low avalanche danger still requires basic avalanche precautions in suspect "
                     "terrain.", source)

    count = len(bulletin.problems)
    if count >= 3:
        tally.factor("Avalanche", 6, f"{count} avalanche problems are listed by the center, increasing snowpack "
                     "complexity.", "Avalanche problem list")


def _score_wind(weather: WeatherSnapshot, tally: _Tally) -> None:
    trend = weather.trend
    wind, gust = weather.wind_speed, weather.wind_gust
    trend_gusts = [p.gust if p.gust is not None else p.wind for p in trend]
    trend_gusts = [g for g in trend_gusts if g is not None]
    peak_gust = max(trend_gusts) if trend_gusts else (gust or 0)
    effective = max(wind or 0, gust or 0, peak_gust)

    detail = (f"start wind {round(wind or 0)} mph, gust {round(gust if gust is not None else effective)} mph, "
              f"trend peak {round(effective)} mph")
    if effective >= 50 or (wind is not None and wind >= 35):
        tally.factor("Wind", 20, f"Severe wind exposure expected ({detail}).", FORECAST_SOURCE)
    elif effective >= 40 or (wind is not None and wind >= 25):
        tally.factor("Wind", 12, f"Strong winds expected ({detail}).", FORECAST_SOURCE)
    elif effective >= 30 or (wind is not None and wind >= 18):
        tally.factor("Wind", 6, f"Moderate wind signal (trend peak {round(effective)} mph) may affect exposed "
                     "movement.", FORECAST_SOURCE)

    def hours(sustained: float, gusting: float) -> int:
        count = 0
        for p in trend:
            row_gust = p.gust if p.gust is not None else p.wind
            if (p.wind is not None and p.wind >= sustained) or (row_gust is not None and row_gust >= gusting):
                count += 1
        return count

    severe, strong, total = hours(30, 45), hours(20, 30), len(trend)
    if severe >= 4:
        tally.factor("Wind", 8, f"{severe}/{total} trend hours are severe wind windows (>=30 mph sustained or "
                     ">=45 mph gust).", TREND_SOURCE)
    elif severe >= 2:
        tally.factor("Wind", 5, f"{severe}/{total} trend hours show severe wind windows.", TREND_SOURCE)
    elif strong >= 6:
        tally.factor("Wind", 4, f"{strong}/{total} trend hours are windy (>=20 mph sustained or >=30 mph gust).",
                     TREND_SOURCE)
    elif strong >= 3:
        tally.factor("Wind", 2, f"{strong}/{total} trend hours are windy and may reduce margin on exposed terrain.",
                     TREND_SOURCE)

    window = max(1, total)
    if peak_gust >= 45 and (gust is None or gust < 45):
        tally.factor("Wind", 6, f"Peak gusts in the next {window} hours reach {round(peak_gust)} mph.", TREND_SOURCE)


def _score_precipitation(weather: WeatherSnapshot, tally: _Tally) -> None:
    chances = [p.precip_chance for p in weather.trend if p.precip_chance is not None]
    peak = max(chances) if chances else weather.precip_chance
    if peak is not None:
        for threshold, impact in ((80, 12), (60, 8), (40, 4)):
            if peak >= threshold:
                tally.factor("Storm", impact, f"Peak precipitation chance in the window reaches {round(peak)}%.",
                             FORECAST_SOURCE)
                break

    total = len(weather.trend)
    high = sum(1 for c in chances if c >= 60)
    moderate = sum(1 for c in chances if c >= 40)
    if high >= 4:
        tally.factor("Storm", 7, f"{high}/{total} trend hours are high precip windows (>=60%).", TREND_SOURCE)
    elif high >= 2:
        tally.factor("Storm", 4, f"{high}/{total} trend hours are high precip windows.", TREND_SOURCE)
    elif moderate >= 6:
        tally.factor("Storm", 3, f"{moderate}/{total} trend hours are moderate precip windows (>=40%).", TREND_SOURCE)

    description = (weather.description or "").lower()
    if re.search(r"thunderstorm|lightning|blizzard", description):
        tally.factor("Storm", 18, f'Convective or severe weather signal in forecast: "{weather.description}".',
                     "NOAA short forecast")
    elif re.search(r"snow|sleet|freezing rain|ice", description):
        tally.factor("Winter Weather", 10, f'Frozen precipitation in forecast ("{weather.description}") increases '
                     "travel hazard.", "NOAA short forecast")


def _score_visibility(weather: WeatherSnapshot, tally: _Tally) -> None:
    risk = weather.visibility_risk
    if risk is not None and risk.score is not None:
        impact = next((points for threshold, points in ((80, 12), (60, 9), (40, 6), (20, 3))
                       if risk.score >= threshold), 0)
        note = ""
        if risk.active_hours is not None and weather.trend:
            note = f" {risk.active_hours}/{len(weather.trend)} trend hours show reduced-visibility signal."
        level = risk.level if risk.level and risk.level != "Unknown" else "elevated"
        tally.factor("Visibility", impact, f"Whiteout/visibility risk is {level} ({risk.score}/100).{note}",
                     risk.source)
    elif re.search(r"fog|smoke|haze", (weather.description or "").lower()):
        tally.factor("Visibility", 6, f'Reduced-visibility weather in forecast ("{weather.description}").',
                     "NOAA short forecast")


def _trend_feels_like(weather: WeatherSnapshot) -> List[float]:
    values = []
    for p in weather.trend:
        if p.temp is None:
            continue
        row_wind = p.wind if p.wind is not None else (p.gust if p.gust is not None else 0)
        values.append(compute_feels_like(p.temp, row_wind))
    return values


def _score_temperature(weather: WeatherSnapshot, heat: HeatRisk, tally: _Tally) -> None:
    feels = _trend_feels_like(weather)
    start_feels = weather.feels_like if weather.feels_like is not None else weather.temp
    minimum = min(feels) if feels else start_feels
    maximum = max(feels) if feels else start_feels
    total = len(weather.trend)
    source = "NOAA temp + windchill"

    if minimum is not None:
        if minimum <= -10:
            tally.factor("Cold", 15, f"Minimum apparent temperature in the window is {round(minimum)}F.", source)
        elif minimum <= 0:
            tally.factor("Cold", 10, f"Very cold apparent temperature in the window ({round(minimum)}F).", source)
        elif minimum <= 15:
            tally.factor("Cold", 6, f"Cold apparent temperature in the window ({round(minimum)}F).", source)
        elif minimum <= 25:
            tally.factor("Cold", 3, f"Cool apparent temperatures ({round(minimum)}F) reduce comfort and dexterity "
                         "margin.", source)

    extreme_hours = sum(1 for f in feels if f <= 0)
    cold_hours = sum(1 for f in feels if f <= 15)
    if extreme_hours >= 3:
        tally.factor("Cold", 6, f"{extreme_hours}/{total} trend hours are at or below 0F apparent temperature.",
                     TREND_SOURCE)
    elif cold_hours >= 5:
        tally.factor("Cold", 4, f"{cold_hours}/{total} trend hours are at or below 15F apparent temperature.",
                     TREND_SOURCE)

    heat_hours = sum(1 for f in feels if f >= 85)
    if heat.status == "ok" and heat.level >= 1:
        impact = {4: 14, 3: 10, 2: 6, 1: 2}[min(4, heat.level)]
        message = (f"Heat risk is {heat.label}; monitor pace and hydration." if heat.level == 1
                   else f"Heat risk is {heat.label} in the selected window.")
        tally.factor("Heat", impact, message, heat.source)
    elif maximum is not None and maximum >= 90:
        tally.factor("Heat", 6, f"Peak apparent temperature in the window reaches {round(maximum)}F.",
                     "NOAA temp + humidity")
    elif maximum is not None and maximum >= 82 and heat_hours >= 4:
        tally.factor("Heat", 3, f"{heat_hours}/{total} trend hours are warm (>=85F apparent).", TREND_SOURCE)

    temps = [p.temp for p in weather.trend if p.temp is not None]
    spread = max(temps) - min(temps) if temps else 0
    if spread >= 18:
        tally.factor("Weather Volatility", 6, f"Large {max(1, total)}-hour temperature swing ({round(spread)}F) "
                     "suggests unstable conditions.", TREND_SOURCE)


def _score_surface(rainfall: Optional[RainfallReport], tally: _Tally) -> None:
    if rainfall is None:
        return
    source = rainfall.source or PRECIP_SOURCE
    rain_24h = rainfall.totals.rain_past_24h_in
    snow_24h = rainfall.totals.snow_past_24h_in
    if rainfall.fallback_mode == "zeroed_totals":
        tally.factor("Surface Conditions", 4, "Precipitation data unavailable due to an upstream outage. Surface "
                     "conditions are unknown; treat as potentially hazardous.", source)
    elif rain_24h is not None and rain_24h >= 0.75:
        tally.factor("Surface Conditions", 7, f"Recent rainfall is heavy ({rain_24h:.2f} in in 24h), increasing "
                     "slick/trail-softening risk.", source)
    elif rain_24h is not None and rain_24h >= 0.3:
        tally.factor("Surface Conditions", 4, f"Recent rainfall ({rain_24h:.2f} in in 24h) can create slippery or "
                     "muddy travel.", source)

    if snow_24h is not None and snow_24h >= 6:
        tally.factor("Surface Conditions", 8, f"Recent snowfall is substantial ({snow_24h:.1f} in in 24h), "
                     "increasing trail and route uncertainty.", source)
    elif snow_24h is not None and snow_24h >= 2:
        tally.factor("Surface Conditions", 4, f"Recent snowfall ({snow_24h:.1f} in in 24h) can hide surface "
                     "hazards and slow travel.", source)

    rain_window = rainfall.expected.rain_window_in
    snow_window = rainfall.expected.snow_window_in
    if rain_window is not None and rain_window >= 0.5:
        tally.factor("Storm", 6, f"Expected rain in selected travel window is {rain_window:.2f} in.", source)
    elif rain_window is not None and rain_window >= 0.2:
        tally.factor("Storm", 3, f"Expected rain in selected travel window is {rain_window:.2f} in.", source)
    if snow_window is not None and snow_window >= 4:
        tally.factor("Winter Weather", 7, f"Expected snowfall in selected travel window is {snow_window:.1f} in.",
                     source)
    elif snow_window is not None and snow_window >= 1.5:
        tally.factor("Winter Weather", 3, f"Expected snowfall in selected travel window is {snow_window:.1f} in.",
                     source)


def _score_darkness(weather: WeatherSnapshot, solar: Optional[SolarTimes], start_clock: Optional[str],
                    tally: _Tally) -> None:
    if weather.is_daytime is not False:
        return
    sunrise = parse_clock_minutes(solar.sunrise) if solar else None
    start = parse_clock_minutes(start_clock)
    if start is None:
        forecast_start = parse_iso(weather.forecast_start_time)
        start = forecast_start.hour * 60 + forecast_start.minute if forecast_start else None
    if start is not None and sunrise is not None and start < sunrise:
        return
    tally.factor("Darkness", 5, "Selected forecast period is nighttime, reducing navigation margin and terrain "
                 "visibility.", "NOAA isDaytime flag")


def _score_lead_time(lead: Optional[float], alerts_relevant: bool, tally: _Tally) -> None:
    if lead is None or lead <= 6:
        return
    impact = next((points for threshold, points in ((96, 10), (72, 8), (48, 6), (24, 4)) if lead >= threshold), 2)
    if not alerts_relevant:
        impact += 2
    tally.factor("Forecast Uncertainty", min(14, impact), f"Selected start is {round(lead)}h ahead; confidence is "
                 "lower because fewer real-time feeds can be projected.", "Forecast lead time")


def _score_alerts(alerts: Optional[AlertsReport], alerts_relevant: bool, tally: _Tally) -> None:
    if alerts is None or not alerts_relevant or alerts.active_count <= 0:
        return
    events: List[str] = []
    for alert in alerts.alerts:
        if alert.event and alert.event not in events:
            events.append(alert.event)
    listed = f" ({', '.join(events[:3])})" if events else ""
    count = alerts.active_count
    source = "NOAA/NWS Active Alerts"
    severity = normalize_severity(alerts.highest_severity)
    if severity == "extreme":
        tally.factor("Official Alert", 24, f"{count} active NWS alert(s){listed} with EXTREME severity.", source)
    elif severity == "severe":
        tally.factor("Official Alert", 16, f"{count} active NWS alert(s){listed} with severe impacts possible.", source)
    elif severity == "moderate":
        tally.factor("Official Alert", 10, f"{count} active NWS alert(s){listed} indicate moderate hazard.", source)
    else:
        tally.factor("Official Alert", 5, f"{count} active NWS alert(s){listed} are in effect.", source)


def _score_air_and_fire(air_quality: Optional[AirQualityReport], fire: Optional[FireRisk], tally: _Tally) -> None:
    aqi = air_quality.us_aqi if air_quality else None
    if aqi is not None:
        source = "Open-Meteo Air Quality"
        if aqi >= 201:
            tally.factor("Air Quality", 20, f"Air quality is hazardous (US AQI {round(aqi)}).", source)
        elif aqi >= 151:
            tally.factor("Air Quality", 14, f"Air quality is unhealthy (US AQI {round(aqi)}).", source)
        elif aqi >= 101:
            tally.factor("Air Quality", 8, f"Air quality is unhealthy for sensitive groups (US AQI {round(aqi)}).",
                         source)
        elif aqi >= 51:
            tally.factor("Air Quality", 3, f"Air quality is moderate (US AQI {round(aqi)}).", source)

    level = fire.level if fire else None
    if level is None:
        return
    if level >= 4:
        tally.factor("Fire Danger", 16, "Extreme fire-weather/alert signal for this objective window.", fire.source)
    elif level >= 3:
        tally.factor("Fire Danger", 10, "High fire-weather signal: elevated spread potential or fire-weather alerts.",
                     fire.source)
    elif level >= 2:
        tally.factor("Fire Danger", 5, "Elevated fire risk signal from weather, smoke, or alert context.", fire.source)


# ---------------------------------------------------------------------------
# Confidence
# ---------------------------------------------------------------------------


def _age_penalty(tally: _Tally, age: Optional[float], tiers, label: str) -> None:
    if age is None:
        return
    for threshold, points in tiers:
        if age > threshold:
            tally.penalty(points, f"{label} is {round(age)}h old.")
            return


def _apply_confidence(weather: WeatherSnapshot, bulletin: HazardBulletin, alerts: Optional[AlertsReport],
                      air_quality: Optional[AirQualityReport], rainfall: Optional[RainfallReport],
                      fire: Optional[FireRisk], lead: Optional[float], alerts_relevant: bool,
                      now: dt.datetime, tally: _Tally) -> None:
    if weather.unavailable:
        tally.penalty(30, "Complete weather data unavailable. Do not rely on this report for go/no-go decisions.")
    else:
        issued = parse_iso(weather.issued_time)
        if issued is None:
            tally.penalty(8, "Weather issue time unavailable.")
        else:
            _age_penalty(tally, _hours_between(now, issued), ((18, 12), (10, 7), (6, 4)), "Weather issuance")

    if len(weather.trend) < 6:
        tally.penalty(6, "Limited hourly trend depth (<6 points).")

    if bulletin.relevant:
        if bulletin.danger_unknown:
            tally.penalty(20, "Avalanche danger is unknown for this objective.")
        else:
            published = parse_iso(bulletin.published_time)
            if published is None:
                tally.penalty(8, "Avalanche bulletin publish time unavailable.")
            else:
                _age_penalty(tally, _hours_between(now, published), ((72, 12), (48, 8), (24, 4)), "Avalanche bulletin")

    alerts_status = alerts.status if alerts else "unavailable"
    if alerts_relevant and alerts_status == "unavailable":
        tally.penalty(8, "NWS alerts feed unavailable.")
    elif not alerts_relevant:
        tally.penalty(4, "NWS alerts are current-state only and not forecast-valid for the selected start time.")

    air_status = air_quality.status if air_quality else "unavailable"
    if air_status == "unavailable":
        tally.penalty(6, "Air quality feed unavailable.")
    elif air_status == "no_data":
        tally.penalty(3, "Air quality point data unavailable.")

    rain_status = rainfall.status if rainfall else "unavailable"
    if rain_status == "unavailable":
        tally.penalty(5, "Precipitation history feed unavailable.")
    elif rain_status == "no_data":
        tally.penalty(3, "Precipitation history has no usable anchor/sample data.")
    elif rainfall.fallback_mode == "zeroed_totals":
        tally.penalty(8, "Precipitation totals are fallback placeholders due to an upstream feed outage.")
    else:
        anchor = parse_iso(rainfall.anchor_time)
        if anchor is None:
            tally.penalty(3, "Precipitation anchor time unavailable.")
        else:
            _age_penalty(tally, _hours_between(now, anchor), ((36, 7), (18, 4), (10, 2)), "Precipitation anchor")

    if lead is not None:
        for threshold, points in ((72, 8), (48, 6), (24, 4)):
            if lead >= threshold:
                tally.penalty(points, f"Selected start is {round(lead)}h ahead (lower forecast certainty).")
                break

    if fire is None or fire.status == "unavailable":
        tally.penalty(3, "Fire risk synthesis unavailable.")


def _sources_used(bulletin: HazardBulletin, alerts: Optional[AlertsReport], air_quality: Optional[AirQualityReport],
                  rainfall: Optional[RainfallReport], heat: Optional[HeatRisk], fire: Optional[FireRisk],
                  alerts_relevant: bool) -> List[str]:
    sources = ["NOAA/NWS hourly forecast"]
    if bulletin.relevant:
        sources.append("Avalanche center forecast")
    if alerts_relevant and alerts and alerts.status in ("ok", "none", "none_for_selected_start"):
        sources.append("NOAA/NWS active alerts")
    if air_quality and air_quality.status in ("ok", "no_data"):
        sources.append("Open-Meteo air quality")
    if rainfall and rainfall.status in ("ok", "partial", "no_data") and rainfall.fallback_mode != "zeroed_totals":
        sources.append("Open-Meteo precipitation history/forecast")
    if heat and heat.status == "ok":
        sources.append("Heat risk synthesis (forecast + lower-terrain adjustment)")
    if fire and fire.status == "ok":
        sources.append("Fire risk synthesis (NOAA + NWS + AQI)")
    return sources


def group_impacts(factors: List[HazardFactor]) -> Dict[str, GroupImpact]:
    """Sum factor impacts per group and cap each total."""
    raw: Dict[HazardGroup, float] = {}
    for factor in factors:
        raw[factor.group] = raw.get(factor.group, 0) + factor.impact
    impacts = {}
    for group, total in raw.items():
        cap = GROUP_CAPS.get(group, 100)
        rounded = int(round(total))
        impacts[group.value] = GroupImpact(raw=rounded, capped=min(rounded, cap), cap=cap)
    return impacts


def compute_safety_score(*, weather: WeatherSnapshot, bulletin: HazardBulletin,
                         alerts: Optional[AlertsReport] = None,
                         air_quality: Optional[AirQualityReport] = None,
                         fire: Optional[FireRisk] = None,
                         heat: Optional[HeatRisk] = None,
                         rainfall: Optional[RainfallReport] = None,
                         solar: Optional[SolarTimes] = None,
                         selected_date: Optional[str] = None,
                         start_clock: Optional[str] = None,
                         now: Optional[dt.datetime] = None) -> SafetyScore:
    """Score a trip plan from all hazard signals; ``now`` is injectable for deterministic tests."""
    now = now or utc_now()
    tally = _Tally()
    lead = forecast_lead_hours(weather, selected_date, now)
    alerts_relevant = lead is None or lead <= ALERT_LEAD_LIMIT_HOURS

    _score_avalanche(bulletin, tally)
    _score_wind(weather, tally)
    _score_precipitation(weather, tally)
    _score_visibility(weather, tally)
    _score_temperature(weather, heat or HeatRisk(), tally)
    _score_surface(rainfall, tally)
    _score_darkness(weather, solar, start_clock, tally)
    _score_lead_time(lead, alerts_relevant, tally)
    _score_alerts(alerts, alerts_relevant, tally)
    _score_air_and_fire(air_quality, fire, tally)
    if weather.unavailable:
        tally.factor("Weather Unavailable", 20, "All weather data is unavailable. Wind, precipitation and "
                     "temperature conditions are unknown.", "System")

    impacts = group_impacts(tally.factors)
    score = max(0, int(round(100 - sum(entry.capped for entry in impacts.values()))))

    _apply_confidence(weather, bulletin, alerts, air_quality, rainfall, fire, lead, alerts_relevant, now, tally)
    confidence = max(MIN_CONFIDENCE, min(100, tally.confidence))

    # sorted() is stable, so equal impacts keep encounter order
    factors = sorted(tally.factors, key=lambda f: f.impact, reverse=True)
    return SafetyScore(
        score=score,
        confidence=confidence,
        primary_hazard=factors[0].hazard if factors else "None",
        explanations=tally.explanations or [STABLE_EXPLANATION],
        factors=factors,
        group_impacts=impacts,
        confidence_reasons=tally.confidence_reasons,
        sources_used=_sources_used(bulletin, alerts, air_quality, rainfall, heat, fire, alerts_relevant),
        air_quality_category=air_quality.category if air_quality else "Unknown",
    )
