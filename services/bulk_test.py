"""
Bulk AI testing: run a CSV of farm scenarios through the advisor and export
what came back.

    python -m services.bulk_test --input cases.csv --output results.csv
    python -m services.bulk_test --input cases.csv --output results.json --remote

Local mode calls the RAG pipeline in-process; --remote goes through the
backend's /api/ai/ask endpoint with BACKEND_API_URL / BACKEND_API_KEY.
"""

import argparse
import csv
import datetime
import io
import json
import logging
import threading
import time
from dataclasses import dataclass, asdict, fields
from functools import partial
from typing import Any, Callable, Dict, List, Optional

import anyio

_logger = logging.getLogger("bulk_test")

NUMERIC_FIELDS = (
    "latitude", "longitude", "soil_moisture", "soil_ph",
    "nitrogen", "phosphorus", "potassium", "temperature", "humidity",
)

HEADER_ALIASES = {
    "soilmoisture": "soil_moisture",
    "soilph": "soil_ph",
    "ph": "soil_ph",
    "soilnitrogen": "nitrogen",
    "soilphosphorus": "phosphorus",
    "soilpotassium": "potassium",
    "croptype": "crop_type",
    "crop": "crop_type",
    "customquery": "custom_query",
    "query": "custom_query",
    "lat": "latitude",
    "lon": "longitude",
    "lng": "longitude",
}

CSV_COLUMNS = [
    "id", "language", "crop_type", "latitude", "longitude", "query", "response",
    "confidence", "response_time_ms", "status", "timestamp", "error",
    "immediate_actions", "follow_up_questions",
]


@dataclass
class BulkTestCase:
    id: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    soil_moisture: Optional[float] = None
    soil_ph: Optional[float] = None
    nitrogen: Optional[float] = None
    phosphorus: Optional[float] = None
    potassium: Optional[float] = None
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    crop_type: Optional[str] = None
    custom_query: Optional[str] = None
    language: str = "en"

    @property
    def location(self) -> Optional[Dict[str, float]]:
        if self.latitude is None or self.longitude is None:
            return None
        return {"latitude": self.latitude, "longitude": self.longitude}


@dataclass
class BulkTestResult:
    id: str
    input: BulkTestCase
    query: str
    response: str
    confidence: float
    response_time_ms: float
    timestamp: str
    status: str                     # success | error
    recommendations: Optional[Dict[str, List[str]]] = None
    follow_up_questions: Optional[List[str]] = None
    related_topics: Optional[List[str]] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_CASE_FIELDS = {f.name for f in fields(BulkTestCase)}


def _normalize_header(name: str) -> str:
    key = (name or "").lstrip("\ufeff").strip().lower().replace("-", "_").replace(" ", "_")
    return HEADER_ALIASES.get(key.replace("_", ""), key)


def parse_csv_to_bulk_test_cases(text: str) -> List[BulkTestCase]:
    reader = csv.DictReader(io.StringIO((text or "").strip()))
    headers = [_normalize_header(h) for h in reader.fieldnames or []]
    if "id" not in headers:
        raise ValueError("CSV must have an 'id' column")

    cases = []
    for line_no, row in enumerate(reader, start=2):
        values = {}
        for raw_header, value in row.items():
            header = _normalize_header(raw_header)
            if header not in _CASE_FIELDS:
                continue
            value = (value or "").strip()
            if not value:
                continue
            if header in NUMERIC_FIELDS:
                try:
                    values[header] = float(value)
                except ValueError:
                    raise ValueError(f"Line {line_no}: '{header}' is not a number: {value!r}") from None
            else:
                values[header] = value

        if not values.get("id"):
            continue
        if values.get("language") not in ("en", "hi"):
            values["language"] = "en"
        cases.append(BulkTestCase(**values))

    if not cases:
        raise ValueError("CSV has no test cases")
    return cases


def _fmt(value):
    return f"{value:g}" if isinstance(value, float) else value


def build_query(case: BulkTestCase) -> str:
    if case.custom_query:
        return case.custom_query

    hindi = case.language == "hi"
    parts = []
    if case.crop_type:
        parts.append(f"मैं {case.crop_type} उगा रहा हूँ।" if hindi else f"I am growing {case.crop_type}.")
    if case.location:
        parts.append(
            f"मेरा खेत ({case.latitude:.4f}, {case.longitude:.4f}) पर है।" if hindi
            else f"My farm is at ({case.latitude:.4f}, {case.longitude:.4f})."
        )

    readings = []
    labels = {
        "soil_moisture": ("मिट्टी की नमी", "soil moisture", "%"),
        "soil_ph": ("मिट्टी pH", "soil pH", ""),
        "nitrogen": ("नाइट्रोजन", "nitrogen", " mg/kg"),
        "phosphorus": ("फास्फोरस", "phosphorus", " mg/kg"),
        "potassium": ("पोटैशियम", "potassium", " mg/kg"),
        "temperature": ("तापमान", "temperature", "°C"),
        "humidity": ("नमी", "humidity", "%"),
    }
    for name, (hi_label, en_label, unit) in labels.items():
        value = getattr(case, name)
        if value is not None:
            readings.append(f"{hi_label if hindi else en_label} {_fmt(value)}{unit}")
    if readings:
        joined = ", ".join(readings)
        parts.append(f"मेरे खेत में {joined} है।" if hindi else f"My field shows {joined}.")

    parts.append(
        "फसल की सेहत और पैदावार सुधारने के लिए मुझे क्या करना चाहिए?" if hindi
        else "What should I do to improve my crop health and yield?"
    )
    return " ".join(parts)


def _to_result(case, query, response, elapsed_ms) -> BulkTestResult:
    return BulkTestResult(
        id=case.id,
        input=case,
        query=query,
        response=response.get("advice") or response.get("answer") or "",
        confidence=float(response.get("confidence") or 0),
        response_time_ms=round(elapsed_ms, 2),
        timestamp=datetime.datetime.now(datetime.timezone.utc).isoformat(),
        status="error" if response.get("status") == "error" else "success",
        recommendations=response.get("recommendations"),
        follow_up_questions=response.get("follow_up_questions"),
        related_topics=response.get("related_topics"),
    )


def process_bulk_queries(
    cases: List[BulkTestCase],
    ask: Callable[[str, BulkTestCase], Dict[str, Any]],
    on_progress: Optional[Callable[[int, int], None]] = None,
    cancel: Optional[threading.Event] = None,
) -> List[BulkTestResult]:
    """
    Runs cases one at a time. A failing case becomes an error result and the
    run carries on; setting `cancel` stops before the next case.
    """
    results = []
    total = len(cases)
    for index, case in enumerate(cases):
        if cancel is not None and cancel.is_set():
            _logger.info("Bulk run cancelled after %d of %d cases", index, total)
            break

        query = build_query(case)
        start = time.perf_counter()
        try:
            response = ask(query, case)
            results.append(_to_result(case, query, response, (time.perf_counter() - start) * 1000.0))
        except Exception as exc:
            _logger.error("Bulk case %s failed: %s", case.id, exc)
            results.append(BulkTestResult(
                id=case.id,
                input=case,
                query=query,
                response="",
                confidence=0.0,
                response_time_ms=round((time.perf_counter() - start) * 1000.0, 2),
                timestamp=datetime.datetime.now(datetime.timezone.utc).isoformat(),
                status="error",
                error=str(exc),
            ))

        if on_progress is not None:
            on_progress(index + 1, total)
    return results


def export_bulk_results_to_csv(results: List[BulkTestResult]) -> str:
    out = io.StringIO()
    writer = csv.DictWriter(out, fieldnames=CSV_COLUMNS)
    writer.writeheader()
    for r in results:
        recs = r.recommendations or {}
        writer.writerow({
            "id": r.id,
            "language": r.input.language,
            "crop_type": r.input.crop_type or "",
            "latitude": "" if r.input.latitude is None else r.input.latitude,
            "longitude": "" if r.input.longitude is None else r.input.longitude,
            "query": r.query,
            "response": r.response,
            "confidence": r.confidence,
            "response_time_ms": r.response_time_ms,
            "status": r.status,
            "timestamp": r.timestamp,
            "error": r.error or "",
            "immediate_actions": "; ".join(recs.get("immediate") or []),
            "follow_up_questions": "; ".join(r.follow_up_questions or []),
        })
    return out.getvalue()


def export_bulk_results_to_json(results: List[BulkTestResult]) -> str:
    return json.dumps([r.to_dict() for r in results], ensure_ascii=False, indent=2)


def _local_ask(service, query, case):
    return anyio.run(partial(service.answer_question, query, location=case.location, language=case.language))


def _remote_ask(client, query, case):
    return client.process_query(query, language=case.language, location=case.location)


def main():
    parser = argparse.ArgumentParser(description="Run a CSV of farm scenarios through the AI advisor")
    parser.add_argument("--input", required=True, help="CSV with an id column and optional scenario columns")
    parser.add_argument("--output", required=True, help="Results file (.csv or .json)")
    parser.add_argument("--remote", action="store_true", help="Call the backend API instead of the local pipeline")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(name)s | %(message)s")

    with open(args.input, "r", encoding="utf-8-sig") as f:
        cases = parse_csv_to_bulk_test_cases(f.read())

    if args.remote:
        from services.backend_api import AiClient
        client = AiClient()
        if not client.api.health_check():
            _logger.warning("Backend at %s is not answering /health", client.api.base_url)
        ask = partial(_remote_ask, client)
    else:
        from services.rag import RagService
        ask = partial(_local_ask, RagService())

    def _progress(done, total):
        print(f"[BULK] {done}/{total}")

    results = process_bulk_queries(cases, ask, on_progress=_progress)

    if args.output.lower().endswith(".json"):
        content = export_bulk_results_to_json(results)
    else:
        content = export_bulk_results_to_csv(results)
    with open(args.output, "w", encoding="utf-8", newline="") as f:
        f.write(content)

    ok = sum(1 for r in results if r.status == "success")
    print(f"[BULK] done: {ok}/{len(results)} succeeded -> {args.output}")


if __name__ == "__main__":
    main()
