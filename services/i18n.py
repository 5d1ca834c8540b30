import logging

_logger = logging.getLogger("i18n")

DEFAULT_LANGUAGE = "en"
SUPPORTED_LANGUAGES = ("en", "hi")

TRANSLATIONS = {
    "en": {
        # status
        "optimal": "Good",
        "warning": "Warning",
        "critical": "Critical",
        "good_conditions": "Good conditions",
        "needs_attention": "Needs attention",
        "urgent_action": "Urgent action",
        "improving": "Improving",
        "declining": "Declining",
        "stable": "Stable",
        # sensors
        "sensor_soil_moisture": "Soil Moisture",
        "sensor_ec": "Electrical Conductivity",
        "sensor_soil_temperature": "Soil Temperature",
        "sensor_n": "Nitrogen",
        "sensor_p": "Phosphorus",
        "sensor_k": "Potassium",
        "sensor_ph": "pH",
        # dashboard
        "farm_status": "Farm Status",
        "today_status": "Today's Status",
        "last_checked": "Last checked",
        "current_weather": "Current Weather",
        "weather_forecast": "Weather Forecast",
        "temperature": "Temperature",
        "humidity": "Humidity",
        "wind_speed": "Wind Speed",
        "location": "Location",
        # banners
        "offline_banner": "You are offline. Showing the last saved data.",
        "cached_data": "Cached data",
        "no_sensor_data": "No sensor data available yet.",
        "no_weather_data": "Weather data is unavailable right now.",
        # fallbacks
        "ai_unavailable": "Sorry, I am unable to provide an answer at the moment. Please try again later.",
        "error": "Error",
        "retry": "Retry",
    },
    "hi": {
        "optimal": "अच्छा",
        "warning": "सावधान",
        "critical": "खतरनाक",
        "good_conditions": "अच्छी स्थिति",
        "needs_attention": "ध्यान चाहिए",
        "urgent_action": "तुरंत कार्रवाई",
        "improving": "सुधार हो रहा है",
        "declining": "खराब हो रहा है",
        "stable": "स्थिर",
        "sensor_soil_moisture": "मिट्टी की नमी",
        "sensor_ec": "विद्युत चालकता",
        "sensor_soil_temperature": "मिट्टी का तापमान",
        "sensor_n": "नाइट्रोजन",
        "sensor_p": "फास्फोरस",
        "sensor_k": "पोटैशियम",
        "sensor_ph": "pH",
        "farm_status": "खेत की स्थिति",
        "today_status": "आज की स्थिति",
        "last_checked": "अंतिम जांच",
        "current_weather": "वर्तमान मौसम",
        "weather_forecast": "मौसम पूर्वानुमान",
        "temperature": "तापमान",
        "humidity": "नमी",
        "wind_speed": "हवा की गति",
        "location": "स्थान",
        "offline_banner": "आप ऑफलाइन हैं। अंतिम सेव किया गया डेटा दिखाया जा रहा है।",
        "cached_data": "सेव किया गया डेटा",
        "no_sensor_data": "अभी कोई सेंसर डेटा उपलब्ध नहीं है।",
        "no_weather_data": "मौसम डेटा अभी उपलब्ध नहीं है।",
        "ai_unavailable": "क्षमा करें, मैं अभी उत्तर देने में असमर्थ हूँ। कृपया बाद में पुनः प्रयास करें।",
        "error": "त्रुटि",
        "retry": "फिर कोशिश करें",
    },
}


def normalize_language(language) -> str:
    language = (language or "").strip().lower()[:2]
    return language if language in SUPPORTED_LANGUAGES else DEFAULT_LANGUAGE


def translate(key: str, language: str = DEFAULT_LANGUAGE) -> str:
    table = TRANSLATIONS.get(normalize_language(language), {})
    if key in table:
        return table[key]
    if key in TRANSLATIONS[DEFAULT_LANGUAGE]:
        return TRANSLATIONS[DEFAULT_LANGUAGE][key]
    _logger.warning("Translation missing for key: %s in language: %s", key, language)
    return key


def sensor_label(sensor_type: str, language: str = DEFAULT_LANGUAGE) -> str:
    return translate(f"sensor_{sensor_type}", language)
