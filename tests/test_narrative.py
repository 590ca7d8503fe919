from __future__ import annotations

import json
import unittest
from unittest import mock

import requests

from timesheet_doctor.dashboard import compute_stats
from timesheet_doctor.models import WorkLog
from timesheet_doctor.narrative import (
    FALLBACK_RESULT,
    NarrativeError,
    build_prompt,
    build_summary_payload,
    parse_analysis_response,
    request_analysis,
)

RECORDS = [
    WorkLog(id=str(i), date="2024-03-04", consultant=f"C{i % 2}", client=f"Client {i}", hours=float(i + 1))
    for i in range(7)
]
REPLY = {"summary": "Stable month.", "risks": ["Client concentration"], "recommendations": ["Hire"]}


def gemini_body(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


class PayloadTests(unittest.TestCase):
    def test_only_aggregates_are_sent(self):
        payload = build_summary_payload(compute_stats(RECORDS))
        self.assertEqual(payload["total_hours"], 28.0)
        self.assertEqual(payload["active_consultants"], 2)
        self.assertEqual(payload["top_client"], "Client 6")
        self.assertEqual(len(payload["client_distribution"]), 5)
        self.assertEqual(payload["consultant_load"], [{"name": "C0", "hours": 16.0}, {"name": "C1", "hours": 12.0}])

        prompt = build_prompt(payload)
        self.assertIn('"total_hours": 28.0', prompt)
        self.assertNotIn("2024-03-04", prompt)


class ParseResponseTests(unittest.TestCase):
    def test_fenced_json(self):
        text = "```json\n" + json.dumps(REPLY) + "\n```"
        self.assertEqual(parse_analysis_response(text), REPLY)

    def test_malformed_reply_falls_back(self):
        self.assertEqual(parse_analysis_response("not json"), FALLBACK_RESULT)
        self.assertEqual(parse_analysis_response("[1, 2]"), FALLBACK_RESULT)
        self.assertEqual(parse_analysis_response(""), FALLBACK_RESULT)

    def test_missing_keys_default_to_empty(self):
        self.assertEqual(
            parse_analysis_response('{"summary": "Ok"}'),
            {"summary": "Ok", "risks": [], "recommendations": []},
        )


class RequestTests(unittest.TestCase):
    def setUp(self):
        self.stats = compute_stats(RECORDS)

    def test_missing_key(self):
        with self.assertRaisesRegex(NarrativeError, "API key is missing"):
            request_analysis(self.stats, api_key="")

    def test_successful_call(self):
        response = mock.Mock()
        response.json.return_value = gemini_body("```json\n" + json.dumps(REPLY) + "\n```")
        session = mock.Mock()
        session.post.return_value = response

        result = request_analysis(self.stats, api_key="secret", model="test-model", timeout=5, session=session)

        self.assertEqual(result, REPLY)
        args, kwargs = session.post.call_args
        self.assertIn("models/test-model:generateContent", args[0])
        self.assertEqual(kwargs["headers"], {"x-goog-api-key": "secret"})
        self.assertEqual(kwargs["timeout"], 5)
        self.assertEqual(kwargs["json"]["generationConfig"]["responseMimeType"], "application/json")

    def test_transport_failure(self):
        session = mock.Mock()
        session.post.side_effect = requests.ConnectionError("offline")
        with self.assertRaises(NarrativeError):
            request_analysis(self.stats, api_key="secret", session=session)

    def test_http_error_and_bad_bodies(self):
        response = mock.Mock()
        response.raise_for_status.side_effect = requests.HTTPError("401")
        session = mock.Mock()
        session.post.return_value = response
        with self.assertRaises(NarrativeError):
            request_analysis(self.stats, api_key="secret", session=session)

        response = mock.Mock()
        response.json.side_effect = ValueError("no json")
        session.post.return_value = response
        with self.assertRaisesRegex(NarrativeError, "non-JSON"):
            request_analysis(self.stats, api_key="secret", session=session)

        response = mock.Mock()
        response.json.return_value = {"candidates": []}
        session.post.return_value = response
        with self.assertRaisesRegex(NarrativeError, "no candidates"):
            request_analysis(self.stats, api_key="secret", session=session)


if __name__ == "__main__":
    unittest.main()
