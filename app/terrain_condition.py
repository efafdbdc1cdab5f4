"""Classify expected trail surface and snow character from weather, snowpack and rainfall."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional

from app.domain import (
    ConfidenceTier,
    RainfallReport,
    SnowpackReport,
    SnowProfile,
    TerrainCondition,
    WeatherSnapshot,
)

NEAR_TERM_HOURS = 6
CONTEXT_HOURS = 24
SNOTEL_NEARBY_KM = 80

SNOW_DESCRIPTION = re.compile(r"snow|sleet|ice|freezing|blizzard|flurr|graupel|rime|wintry")
RAIN_DESCRIPTION = re.compile(r"rain|drizzle|shower|thunder|storm|wet")
SNOW_CONDITION = re.compile(r"snow|sleet|freezing|flurr|wintry|ice")
UNAVAILABLE_DESCRIPTION = re.compile(r"unavailable")


def _fmt(value: Optional[float], digits: int = 1) -> str:
    return "N/A" if value is None else f"{value:.{digits}f} in"


@dataclass
class SurfaceSignals:
    """Everything the classifier looks at, gathered once."""
    description: str
    temp: Optional[float]
    precip: Optional[float]
    humidity: Optional[float]
    wind: Optional[float]
    gust: Optional[float]
    trend_length: int
    wet_hours: int
    snow_hours: int
    rain_12h: Optional[float]
    rain_24h: Optional[float]
    rain_48h: Optional[float]
    snow_12h: Optional[float]
    snow_24h: Optional[float]
    snow_48h: Optional[float]
    expected_rain: Optional[float]
    expected_snow: Optional[float]
    expected_hours: Optional[int]
    max_depth: Optional[float]
    max_swe: Optional[float]
    snotel_distance_km: Optional[float]
    context_hours: int
    context_min: Optional[float]
    context_max: Optional[float]
    overnight_low: Optional[float]
    daytime_high: Optional[float]
    freeze_thaw_min: Optional[float]
    freeze_thaw_max: Optional[float]

    @property
    def snow_coverage(self) -> bool:
        return (self.max_depth is not None and self.max_depth >= 2) or (self.max_swe is not None and self.max_swe >= 0.5)

    @property
    def snow_weather(self) -> bool:
        return bool(SNOW_DESCRIPTION.search(self.description)) or (
            self.temp is not None and self.temp <= 34 and self.precip is not None and self.precip >= 35)

    @property
    def rain_weather(self) -> bool:
        return bool(RAIN_DESCRIPTION.search(self.description)) or (
            self.precip is not None and self.precip >= 60 and self.temp is not None and self.temp > 34)

    @property
    def rain_accumulation(self) -> bool:
        return ((self.rain_12h is not None and self.rain_12h >= 0.1)
                or (self.rain_24h is not None and self.rain_24h >= 0.2)
                or (self.rain_48h is not None and self.rain_48h >= 0.35))

    @property
    def expected_rain_signal(self) -> bool:
        return self.expected_rain is not None and self.expected_rain >= 0.2

    @property
    def fresh_snow(self) -> bool:
        return ((self.snow_12h is not None and self.snow_12h >= 0.5)
                or (self.snow_24h is not None and self.snow_24h >= 1.5)
                or (self.snow_48h is not None and self.snow_48h >= 2.5))

    @property
    def expected_snow_signal(self) -> bool:
        return self.expected_snow is not None and self.expected_snow >= 1.0

    @property
    def freeze_thaw(self) -> bool:
        swing = (self.freeze_thaw_min is not None and self.freeze_thaw_max is not None
                 and self.freeze_thaw_min <= 31 and self.freeze_thaw_max >= 35)
        hovering = (self.temp is not None and 30 <= self.temp <= 36
                    and self.precip is not None and self.precip >= 35)
        return swing or hovering

    @property
    def dry_windy(self) -> bool:
        return (self.humidity is not None and self.humidity <= 30
                and (self.precip is None or self.precip < 20)
                and ((self.gust is not None and self.gust >= 25) or (self.wind is not None and self.wind >= 16)))

    @property
    def no_broad_snow(self) -> bool:
        return (self.max_depth is not None and self.max_swe is not None
                and self.max_depth <= 1 and self.max_swe <= 0.25)

    @property
    def quiet(self) -> bool:
        """No snow or wet signal of any kind."""
        return not (self.snow_coverage or self.snow_weather or self.fresh_snow or self.expected_snow_signal
                    or self.snow_hours or self.rain_weather or self.rain_accumulation
                    or self.expected_rain_signal or self.wet_hours)

    def as_dict(self) -> dict:
        return {
            "tempF": self.temp, "precipChance": self.precip, "humidity": self.humidity,
            "windMph": self.wind, "gustMph": self.gust,
            "wetTrendHours": self.wet_hours, "snowTrendHours": self.snow_hours,
            "rain12hIn": self.rain_12h, "rain24hIn": self.rain_24h, "rain48hIn": self.rain_48h,
            "snow12hIn": self.snow_12h, "snow24hIn": self.snow_24h, "snow48hIn": self.snow_48h,
            "expectedRainWindowIn": self.expected_rain, "expectedSnowWindowIn": self.expected_snow,
            "maxSnowDepthIn": self.max_depth, "maxSweIn": self.max_swe,
            "snotelDistanceKm": self.snotel_distance_km, "tempContextWindowHours": self.context_hours,
            "tempContextMinF": self.context_min, "tempContextMaxF": self.context_max,
            "tempContextOvernightLowF": self.overnight_low, "tempContextDaytimeHighF": self.daytime_high,
            "freezeThawMinTempF": self.freeze_thaw_min, "freezeThawMaxTempF": self.freeze_thaw_max,
        }


def _first(*values: Optional[float]) -> Optional[float]:
    return next((v for v in values if v is not None), None)


def collect_signals(weather: WeatherSnapshot, snowpack: Optional[SnowpackReport],
                    rainfall: Optional[RainfallReport]) -> SurfaceSignals:
    near = weather.trend[:NEAR_TERM_HOURS]
    context = weather.trend[:CONTEXT_HOURS]
    wet_hours = sum(1 for p in near if (p.precip_chance is not None and p.precip_chance >= 55)
                    or RAIN_DESCRIPTION.search((p.condition or "").lower()))
    snow_hours = sum(1 for p in near if (p.precip_chance is not None and p.precip_chance >= 35
                                         and p.temp is not None and p.temp <= 34)
                     or SNOW_CONDITION.search((p.condition or "").lower()))
    near_temps = [p.temp for p in near if p.temp is not None]
    context_temps = [p.temp for p in context if p.temp is not None]
    ctx = weather.temperature_context_24h

    depths: List[float] = []
    swes: List[float] = []
    snotel = snowpack.snotel if snowpack else None
    nohrsc = snowpack.nohrsc if snowpack else None
    snotel_distance = snotel.distance_km if snotel else None
    if snotel is not None and (snotel_distance is None or snotel_distance <= SNOTEL_NEARBY_KM):
        depths += [v for v in (snotel.snow_depth_in,) if v is not None]
        swes += [v for v in (snotel.swe_in,) if v is not None]
    if nohrsc is not None:
        depths += [v for v in (nohrsc.snow_depth_in,) if v is not None]
        swes += [v for v in (nohrsc.swe_in,) if v is not None]

    totals = rainfall.totals if rainfall else None
    expected = rainfall.expected if rainfall else None
    return SurfaceSignals(
        description=(weather.description or "").lower(),
        temp=weather.temp, precip=weather.precip_chance, humidity=weather.humidity,
        wind=weather.wind_speed, gust=weather.wind_gust,
        trend_length=len(weather.trend), wet_hours=wet_hours, snow_hours=snow_hours,
        rain_12h=totals.rain_past_12h_in if totals else None,
        rain_24h=totals.rain_past_24h_in if totals else None,
        rain_48h=totals.rain_past_48h_in if totals else None,
        snow_12h=totals.snow_past_12h_in if totals else None,
        snow_24h=totals.snow_past_24h_in if totals else None,
        snow_48h=totals.snow_past_48h_in if totals else None,
        expected_rain=expected.rain_window_in if expected else None,
        expected_snow=expected.snow_window_in if expected else None,
        expected_hours=expected.travel_window_hours if expected else None,
        max_depth=max(depths) if depths else None,
        max_swe=max(swes) if swes else None,
        snotel_distance_km=snotel_distance,
        context_hours=(ctx.window_hours if ctx else None) or 24,
        context_min=ctx.min_temp_f if ctx else None,
        context_max=ctx.max_temp_f if ctx else None,
        overnight_low=ctx.overnight_low_f if ctx else None,
        daytime_high=ctx.daytime_high_f if ctx else None,
        freeze_thaw_min=_first(ctx.overnight_low_f if ctx else None, ctx.min_temp_f if ctx else None,
                               min(context_temps) if context_temps else None,
                               min(near_temps) if near_temps else None),
        freeze_thaw_max=_first(ctx.daytime_high_f if ctx else None, ctx.max_temp_f if ctx else None,
                               max(context_temps) if context_temps else None,
                               max(near_temps) if near_temps else None),
    )


def derive_snow_profile(s: SurfaceSignals) -> SnowProfile:
    """Snow character ignoring bare-trail outcomes."""
    reasons: List[str] = []
    any_snow = (s.snow_coverage or s.snow_weather or s.fresh_snow or s.snow_hours >= 1
                or (s.max_depth is not None and s.max_depth >= 0.5)
                or (s.max_swe is not None and s.max_swe >= 0.1))
    swing = (f"{s.context_hours}h temperature context "
             f"({round(s.freeze_thaw_min or 0)}F to {round(s.freeze_thaw_max or 0)}F)")
    has_swing = s.freeze_thaw_min is not None and s.freeze_thaw_max is not None

    if not any_snow:
        observed = s.max_depth is not None or s.max_swe is not None
        if observed:
            reasons.append(f"Snowpack signal is minimal (depth {_fmt(s.max_depth)}, SWE {_fmt(s.max_swe)}).")
        else:
            reasons.append("No reliable snow depth/SWE signal is available for this objective.")
        return SnowProfile(code="no_snow_signal", label="No broad snow signal",
                           summary="No broad snowpack signal was detected in available observations and forecast cues.",
                           confidence=ConfidenceTier.MEDIUM if observed else ConfidenceTier.LOW, reasons=reasons)

    if ((s.fresh_snow or s.snow_hours >= 2 or (s.snow_weather and (s.precip is None or s.precip >= 40)))
            and not s.rain_accumulation and (s.temp is None or s.temp <= 30)):
        reasons.append("Recent snowfall and cold temperatures support soft, unconsolidated surface snow.")
        if has_swing:
            reasons.append(f"{swing} stays winter-like.")
        return SnowProfile(code="fresh_powder", label="❄️ Fresh Powder",
                           summary="Fresh, cold snowfall signal suggests powder-like surface conditions.",
                           confidence=ConfidenceTier.HIGH if s.snow_coverage and s.fresh_snow else ConfidenceTier.MEDIUM,
                           reasons=reasons)

    if (s.snow_coverage and s.freeze_thaw and has_swing and s.freeze_thaw_min <= 31 and s.freeze_thaw_max >= 38
            and not s.rain_accumulation and s.wet_hours == 0):
        reasons.append("Freeze-thaw pattern supports corn-snow cycles on solar aspects.")
        reasons.append(f"{swing} aligns with a spring corn-cycle pattern.")
        return SnowProfile(code="spring_snow", label="🌤️ Corn-Snow Cycle",
                           summary="Freeze-thaw cycle indicates a corn-snow window with rapid daytime softening potential.",
                           confidence=ConfidenceTier.MEDIUM, reasons=reasons)

    warm = (s.temp is not None and s.temp >= 34) or (s.freeze_thaw_max is not None and s.freeze_thaw_max >= 36)
    wet = s.rain_accumulation or s.wet_hours >= 1 or (s.precip is not None and s.precip >= 45)
    if s.snow_coverage and warm and wet:
        reasons.append("Warm/wet signal on top of snowpack supports wet, heavy, or slushy surface snow.")
        if s.precip is not None:
            reasons.append(f"Precipitation chance ({round(s.precip)}%) increases wet-snow likelihood.")
        return SnowProfile(code="wet_slushy_snow", label="💧 Wet / Slushy Snow",
                           summary="Warm and/or wet signal over existing snowpack suggests slushy, heavy surface conditions.",
                           confidence=ConfidenceTier.MEDIUM, reasons=reasons)

    cold = (s.temp is not None and s.temp <= 30) or (s.freeze_thaw_min is not None and s.freeze_thaw_min <= 28)
    if s.snow_coverage and not s.fresh_snow and cold and s.wet_hours == 0:
        reasons.append("Cold, non-stormy snowpack signal favors firm or icy surface conditions.")
        if s.temp is not None:
            reasons.append(f"Current temperature near {round(s.temp)}F supports surface hardening/refreeze.")
        return SnowProfile(code="icy_hardpack", label="🧊 Icy / Firm Snow",
                           summary="Snowpack appears firm/refrozen with icy travel potential.",
                           confidence=ConfidenceTier.MEDIUM, reasons=reasons)

    reasons.append("Snowpack signal exists, but no single fresh/icy/corn-cycle pattern dominates.")
    return SnowProfile(code="mixed_snow", label="❄️ Mixed Snow Surface",
                       summary="Mixed snow profile with variable firmness and moisture across terrain/aspects.",
                       confidence=ConfidenceTier.MEDIUM if s.snow_coverage else ConfidenceTier.LOW, reasons=reasons)


# Snow profile code -> (terrain code, label, impact, recommended travel)
SNOW_TERRAIN = {
    "fresh_powder": ("snow_fresh_powder", "❄️ Fresh Powder Snow", "high",
                     "Expect slower travel and hidden obstacles under fresh snow; prioritize conservative terrain and spacing."),
    "spring_snow": ("spring_snow", "🌤️ Corn-Snow Cycle", "moderate",
                    "Time travel for supportive corn windows and expect rapid softening with daytime warming."),
    "wet_slushy_snow": ("wet_snow", "💧 Wet / Slushy Snow", "high",
                        "Expect deep/wet surface drag and unstable footing; shorten exposure and use lower-consequence terrain."),
    "icy_hardpack": ("snow_ice", "🧊 Icy / Firm Snow", "high",
                     "Use deliberate footwork on firm/icy surfaces and carry traction-compatible travel options."),
}
MIXED_SNOW_TERRAIN = ("snow_ice", "❄️ Mixed Snow Surface", "moderate",
                      "Expect mixed firmness and moisture by aspect/elevation; reassess traction frequently.")


@dataclass
class _Evidence:
    reasons: List[str] = field(default_factory=list)
    weight: int = 0

    def add(self, reason: str, weight: int = 1) -> None:
        self.reasons.append(reason)
        self.weight += weight


def derive_terrain_condition(weather: WeatherSnapshot, snowpack: Optional[SnowpackReport] = None,
                             rainfall: Optional[RainfallReport] = None) -> TerrainCondition:
    """Pure classification; identical inputs always give identical output."""
    s = collect_signals(weather, snowpack, rainfall)
    profile = derive_snow_profile(s)
    evidence = _Evidence()
    window = round(s.expected_hours or 12)

    weather_missing = not s.description or bool(UNAVAILABLE_DESCRIPTION.search(s.description))
    if (weather_missing and s.trend_length == 0 and s.max_depth is None and s.max_swe is None
            and not s.rain_accumulation and not s.fresh_snow):
        code, label, impact = "weather_unavailable", "⚠️ Weather Unavailable", "moderate"
        travel = "Treat this as unknown conditions; verify with official products and in-field checks before committing."
        evidence.add("Weather feed is unavailable, so terrain classification confidence is limited.")
    elif (s.quiet and (s.precip is None or s.precip <= 25) and (s.humidity is None or s.humidity <= 75)
          and (s.temp is None or s.temp >= 35)):
        code, label, impact = "dry_firm", "✅ Dry / Firm Trail", "low"
        travel = ("Traction is generally favorable; maintain normal pacing and watch for isolated loose "
                  "or rocky sections.")
        evidence.add("No strong snow, rain, or freeze-thaw signal is present in recent/expected conditions.", 2)
        if s.precip is not None:
            evidence.add(f"Low precipitation chance ({round(s.precip)}%) supports drier surfaces.")
        if s.humidity is not None:
            evidence.add(f"Humidity near {round(s.humidity)}% indicates limited moisture loading at the surface.")
        if s.no_broad_snow:
            evidence.add("Snowpack observations remain near-zero, reducing broad snow-on-trail concerns.")
    elif s.snow_coverage or s.snow_weather or s.fresh_snow or s.snow_hours >= 2:
        code, label, impact, travel = SNOW_TERRAIN.get(profile.code, MIXED_SNOW_TERRAIN)
        evidence.add(profile.summary, 2)
        if s.max_depth is not None or s.max_swe is not None:
            evidence.add(f"Snowpack signal near objective: depth {_fmt(s.max_depth)}, SWE {_fmt(s.max_swe)}.", 2)
        if s.fresh_snow:
            evidence.add(f"Recent snowfall: {_fmt(s.snow_12h)} (12h), {_fmt(s.snow_24h)} (24h), "
                         f"{_fmt(s.snow_48h)} (48h).", 2)
        if s.expected_snow_signal:
            evidence.add(f"Expected snowfall in the next {window}h is {_fmt(s.expected_snow)}.")
        if s.snow_hours > 0:
            evidence.add(f"Near-term forecast shows {s.snow_hours} hour(s) with snow/icy cues in the next 6 hours.")
        elif s.snow_weather:
            evidence.add(f'Forecast description indicates winter surface cues ("{weather.description}").')
        if s.temp is not None and s.temp <= 34:
            evidence.add(f"Temperature near {round(s.temp)}F supports firm/refrozen surface conditions.")
    elif s.rain_weather or s.wet_hours >= 1 or s.rain_accumulation or s.expected_rain_signal:
        code, label, impact = "wet_muddy", "🌧️ Wet / Muddy", "moderate"
        travel = ("Expect slick or muddy footing; slow pace on steep/eroded trail sections and preserve "
                  "traction margins.")
        if s.rain_accumulation:
            evidence.add(f"Recent rainfall: {_fmt(s.rain_12h, 2)} (12h), {_fmt(s.rain_24h, 2)} (24h), "
                         f"{_fmt(s.rain_48h, 2)} (48h).", 2)
        if s.expected_rain_signal:
            evidence.add(f"Expected rain in next {window}h is {_fmt(s.expected_rain, 2)}.")
        if s.wet_hours > 0:
            evidence.add(f"Near-term forecast shows {s.wet_hours} wet hour(s) in the next 6 hours.")
        if s.rain_weather:
            evidence.add(f'Forecast condition carries wet surface cues ("{weather.description}").')
    elif s.freeze_thaw or (s.temp is not None and s.temp <= 38 and s.precip is not None and s.precip >= 35):
        code, label, impact = "cold_slick", "🧊 Cold / Slick", "moderate"
        travel = ("Expect patchy slick surfaces in shade and early hours; prioritize stable footing and "
                  "conservative pace.")
        if s.freeze_thaw and s.freeze_thaw_min is not None and s.freeze_thaw_max is not None:
            evidence.add(f"Freeze-thaw signal in next {s.context_hours} hours "
                         f"({round(s.freeze_thaw_min)}F to {round(s.freeze_thaw_max)}F).", 2)
        if s.temp is not None:
            evidence.add(f"Current temperature near freezing ({round(s.temp)}F).")
        if s.precip is not None and s.precip >= 35:
            evidence.add(f"Moisture risk remains elevated ({round(s.precip)}% precip chance).")
    elif s.dry_windy or (s.humidity is not None and s.humidity < 30 and (s.precip is None or s.precip < 20)):
        code, label, impact = "dry_loose", "🌵 Dry / Loose", "moderate"
        travel = "Expect loose dust/gravel on hardpack; reduce speed on corners/descents and watch for slips."
        if s.humidity is not None:
            evidence.add(f"Low humidity ({round(s.humidity)}%) supports loose/dry surface texture.")
        if s.gust is not None or s.wind is not None:
            evidence.add(f"Wind exposure {round(_first(s.gust, s.wind))} mph can dry and loosen top surface layers.")
        if s.precip is not None:
            evidence.add(f"Low moisture signal ({round(s.precip)}% precip chance).")
    else:
        code, label, impact = "mixed_variable", "🌲 Variable Surface", "moderate"
        travel = ("Surface may change quickly across aspect/elevation; check footing often and keep route "
                  "options flexible.")
        evidence.add("No single dominant wet, snow/ice, or freeze-thaw signal in current upstream data.")
        if s.temp is not None:
            precip = f"{round(s.precip)}%" if s.precip is not None else "unknown"
            evidence.add(f"Temperature {round(s.temp)}F with {precip} precip chance supports mixed surface outcomes.")

    if s.snotel_distance_km is not None and s.snotel_distance_km > SNOTEL_NEARBY_KM:
        evidence.add(f"Nearest SNOTEL station is {s.snotel_distance_km:.1f} km away, so local representativeness "
                     f"is lower.", 0)

    if code == "weather_unavailable":
        confidence = ConfidenceTier.LOW
    elif evidence.weight >= 5:
        confidence = ConfidenceTier.HIGH
    elif evidence.weight >= 3:
        confidence = ConfidenceTier.MEDIUM
    else:
        confidence = ConfidenceTier.LOW

    return TerrainCondition(
        code=code,
        label=label,
        impact=impact,
        recommended_travel=travel,
        snow_profile=profile,
        confidence=confidence,
        summary=" ".join(evidence.reasons[:2]),
        reasons=evidence.reasons[:6],
        signals=s.as_dict(),
    )
