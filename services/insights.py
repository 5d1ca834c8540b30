import logging

from services.groq_client import get_groq_client

_logger = logging.getLogger("insights")

WEATHER_TRENDS = ("warming", "cooling", "stable")
SENSOR_TRENDS = ("up", "down", "stable")

INSIGHT_SYSTEM_PROMPT = (
    "You are an agricultural assistant. Give a farmer two or three short, practical sentences. "
    "Use only the numbers you are given."
)


def _language_line(language):
    return "Reply in simple Hindi (Devanagari script)." if language == "hi" else "Reply in simple English."


def weather_fallback(temperature, humidity, trend, language="en"):
    if language == "hi":
        if trend == "warming":
            hint = "तापमान बढ़ रहा है, सिंचाई पर ध्यान दें।"
        elif trend == "cooling":
            hint = "तापमान गिर रहा है, फसलों को ठंड से बचाएं।"
        else:
            hint = "मौसम स्थिर है।"
        return f"तापमान {temperature} डिग्री सेल्सियस और नमी {humidity} प्रतिशत है। {hint}"

    if trend == "warming":
        hint = "Rising temperatures suggest increased irrigation may be needed."
    elif trend == "cooling":
        hint = "Cooling trend detected, consider protecting crops from cold."
    else:
        hint = "Weather is stable, continue regular farming activities."
    return f"Temperature is {temperature}C with {humidity}% humidity. {hint}"


def sensor_fallback(name, value, unit, status, language="en"):
    unit_display = f" {unit}" if unit else ""
    if language == "hi":
        base = f"{name} का मान {value}{unit_display} है।"
        if status == "critical":
            return f"{base} स्थिति गंभीर है, तुरंत कार्रवाई करें।"
        if status == "warning":
            return f"{base} ध्यान देने की आवश्यकता है।"
        return f"{base} मान सामान्य सीमा में है।"

    base = f"{name} reading is {value}{unit_display}."
    if status == "critical":
        return f"{base} This is critical and requires immediate action."
    if status == "warning":
        return f"{base} This needs attention soon."
    return f"{base} Value is within normal range."


def _ask(prompt, language, llm=None):
    return (llm or get_groq_client()).chat(
        [
            {"role": "system", "content": f"{INSIGHT_SYSTEM_PROMPT} {_language_line(language)}"},
            {"role": "user", "content": prompt},
        ],
        temperature=0.4,
        max_tokens=250,
    ).strip()


def weather_insights(temperature, humidity, description, trend="stable", language="en", llm=None):
    prompt = (
        f"Current weather: {temperature}°C, humidity {humidity}%, {description}. "
        f"Temperature trend over the last days: {trend}. What should the farmer do?"
    )
    try:
        text = _ask(prompt, language, llm)
    except Exception as exc:
        _logger.error("Error generating weather insights: %s", exc)
        text = ""
    return text or weather_fallback(temperature, humidity, trend, language)


def sensor_insights(name, value, unit, status, trend="stable", language="en", llm=None):
    prompt = (
        f"Field sensor '{name}' reads {value}{unit or ''} which is {status}. "
        f"Recent trend: {trend}. What should the farmer do?"
    )
    try:
        text = _ask(prompt, language, llm)
    except Exception as exc:
        _logger.error("Error generating sensor insights: %s", exc)
        text = ""
    return text or sensor_fallback(name, value, unit, status, language)


def location_advice_query(latitude, longitude, language="en"):
    if language == "hi":
        return f"इस स्थान ({latitude:.4f}, {longitude:.4f}) के लिए खेती की सलाह दें"
    return f"Provide farming advice for location ({latitude:.4f}, {longitude:.4f})"


def sensor_advice_query(sensor_type, value, unit, language="en"):
    if language == "hi":
        return f"{sensor_type} सेंसर {value}{unit} दिखा रहा है। क्या करना चाहिए?"
    return f"{sensor_type} sensor showing {value}{unit}. What should I do?"
