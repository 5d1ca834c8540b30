import base64

from services.config import Config
from services.groq_client import get_groq_client

VISION_PROMPT = (
    "Analyze the image and identify what agricultural entities are visibly present. "
    "Use tags/keywords. Do not infer causes or treatments. Return tags separated by commas."
)


def describe_image(image_buffer, mime_type="image/jpeg", llm=None):
    base64_image = base64.b64encode(image_buffer).decode("ascii")
    image_data_url = f"data:{mime_type};base64,{base64_image}"

    text = (llm or get_groq_client()).chat(
        [{
            "role": "user",
            "content": [
                {"type": "text", "text": VISION_PROMPT},
                {"type": "image_url", "image_url": {"url": image_data_url}},
            ],
        }],
        temperature=0.2,
        max_tokens=300,
        model=Config.groq_vision_model,
    )

    tags = [t.strip() for t in (text or "").split(",") if t.strip()]
    return {"tags": tags, "raw": (text or "").strip()}
