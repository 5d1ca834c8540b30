from dotenv import load_dotenv
import os
import json

load_dotenv()

ENV_VARS = [
    "GROQ_API_KEY_1",
    "OPENWEATHER_API_KEY",
    "DEEPGRAM_API_KEY",
    "SUPABASE_URL",
    "SUPABASE_KEY",
    "BACKEND_API_KEY",
    "GEMINI_API_KEY",

    # ---- only needed with SESSION_BACKEND=redis ----
    "REDIS_HOST",
    "REDIS_PORT",
]


class Config:
    port = int(os.getenv("PORT", "8000"))

    # -------- GROQ (OpenAI-compatible) --------
    groq_api_keys = [
        key for key in (
            os.getenv("GROQ_API_KEY_1", ""),
            os.getenv("GROQ_API_KEY_2", ""),
            os.getenv("GROQ_API_KEY_3", ""),
        ) if key
    ]
    groq_base_url = os.getenv("GROQ_BASE_URL", "https://api.groq.com/openai/v1")
    groq_model = os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile")
    groq_vision_model = os.getenv("GROQ_VISION_MODEL", "meta-llama/llama-4-scout-17b-16e-instruct")

    # -------- EXTERNAL APIS --------
    openweather_api_key = os.getenv("OPENWEATHER_API_KEY", "")
    openweather_base_url = os.getenv("OPENWEATHER_BASE_URL", "https://api.openweathermap.org")
    deepgram_api_key = os.getenv("DEEPGRAM_API_KEY", "")
    soilgrids_base_url = os.getenv("SOILGRIDS_BASE_URL", "https://rest.isric.org/soilgrids/v2.0")
    wikidata_sparql_url = os.getenv("WIKIDATA_SPARQL_URL", "https://query.wikidata.org/sparql")
    http_timeout = int(os.getenv("HTTP_TIMEOUT", "30"))

    # -------- SUPABASE --------
    supabase_url = os.getenv("SUPABASE_URL", "")
    supabase_key = os.getenv("SUPABASE_KEY", "")

    # -------- THIS BACKEND --------
    backend_api_url = os.getenv("BACKEND_API_URL", "http://localhost:8000")
    backend_api_key = os.getenv("BACKEND_API_KEY", "")
    default_auth_id = os.getenv("DEFAULT_AUTH_ID", "17550")

    # -------- SESSIONS --------
    # "memory" keeps sessions in-process, "redis" shares them between workers
    session_backend = os.getenv("SESSION_BACKEND", "memory").lower()
    session_ttl = int(os.getenv("SESSION_TTL", "1800"))
    session_cache_max = int(os.getenv("SESSION_CACHE_MAX", "500"))
    history_turns = int(os.getenv("HISTORY_TURNS", "6"))

    redis_host = os.getenv("REDIS_HOST", "localhost")
    redis_port = int(os.getenv("REDIS_PORT", "6379"))
    redis_password = os.getenv("REDIS_PASSWORD", "")
    redis_ssl = os.getenv("REDIS_SSL", "false").lower() == "true"
    redis_cluster = os.getenv("REDIS_CLUSTER", "false").lower() == "true"

    # -------- KNOWLEDGE STORE (optional) --------
    gemini_api_key = os.getenv("GEMINI_API_KEY", "")
    chroma_host = os.getenv("CHROMA_HOST", "")
    chroma_port = int(os.getenv("CHROMA_PORT", "8000"))
    chroma_ssl = os.getenv("CHROMA_SSL", "false").lower() == "true"
    chroma_collection_name = os.getenv("CHROMA_COLLECTION_NAME", "crop_knowledge_base")
    chroma_headers = json.loads(os.getenv("CHROMA_HEADERS", "{}"))

    _base_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

    _data_dir_env = os.getenv("DATA_DIR")
    if _data_dir_env:
        data_dir = (
            _data_dir_env
            if os.path.isabs(_data_dir_env)
            else os.path.join(_base_dir, _data_dir_env)
        )
    else:
        data_dir = os.path.join(_base_dir, "data")

    _snapshots_dir_env = os.getenv("SNAPSHOTS_DIR")
    if _snapshots_dir_env:
        snapshots_dir = (
            _snapshots_dir_env
            if os.path.isabs(_snapshots_dir_env)
            else os.path.join(_base_dir, _snapshots_dir_env)
        )
    else:
        snapshots_dir = os.path.join(data_dir, "snapshots")

    @staticmethod
    def check_env_variables():
        for key in ENV_VARS:
            if not os.getenv(key):
                print(f"WARNING: Missing the environment variable {key}")

