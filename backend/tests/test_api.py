import tempfile
import time
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

from photopipe.context import PipelineContext
from photopipe.executors import JobFamily
from photopipe.main import create_app

from test_pipeline_jobs import fast_profiles, make_settings, write_photo


class TestJobsApi(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        self.settings = make_settings(root)
        self.ctx = PipelineContext.from_settings(self.settings, profiles=fast_profiles(), sleep=lambda _: None)
        relative = "user-1/photo.png"
        write_photo(self.settings.uploads_dir / relative, 640, 480)
        self.image_id = self.ctx.catalog.register_image(user_id="user-1", path=relative)
        self.client = TestClient(create_app(self.ctx))
        self.client.__enter__()

    def tearDown(self):
        self.client.__exit__(None, None, None)
        self._tmp.cleanup()

    def _crop_request(self, user_id="user-1"):
        return {
            "type": "IMAGE_CROP",
            "payload": {
                "imageId": self.image_id,
                "userId": user_id,
                "operations": {"crop": {"x": 10, "y": 10, "width": 200, "height": 100}},
            },
        }

    def _poll(self, job_id: str, user_id="user-1", timeout=20.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            response = self.client.get(f"/jobs/{job_id}", headers={"X-User-Id": user_id})
            self.assertEqual(response.status_code, 200)
            body = response.json()
            if body["status"] in {"COMPLETED", "FAILED"}:
                return body
            time.sleep(0.02)
        raise AssertionError(f"job {job_id} did not finish")

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

    def test_submit_then_poll_until_completed(self):
        response = self.client.post("/jobs", json=self._crop_request(), headers={"X-User-Id": "user-1"})
        self.assertEqual(response.status_code, 202)
        created = response.json()
        self.assertEqual(created["status"], "PENDING")
        self.assertTrue(created["jobId"].startswith("job_"))

        body = self._poll(created["jobId"])
        self.assertEqual(body["status"], "COMPLETED")
        self.assertEqual(body["type"], "IMAGE_CROP")
        self.assertEqual(body["progress"], 100.0)
        self.assertEqual((body["result"]["width"], body["result"]["height"]), (200, 100))
        self.assertIsNone(body["error"])
        self.assertIn("job finished", body["logTail"])

    def test_other_users_cannot_see_a_job(self):
        created = self.client.post("/jobs", json=self._crop_request()).json()
        response = self.client.get(f"/jobs/{created['jobId']}", headers={"X-User-Id": "user-2"})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(self.client.get("/jobs/job_unknown").status_code, 404)
        self._poll(created["jobId"])

    def test_failed_job_reports_kind_and_message(self):
        request = self._crop_request()
        request["payload"]["operations"]["crop"]["x"] = 600
        created = self.client.post("/jobs", json=request).json()
        body = self._poll(created["jobId"])
        self.assertEqual(body["status"], "FAILED")
        self.assertEqual(body["error"]["kind"], "validation")
        self.assertIn("outside", body["error"]["message"])

    def test_malformed_payloads_are_422(self):
        bad_payload = {"type": "IMAGE_CROP", "payload": {"userId": "user-1"}}
        response = self.client.post("/jobs", json=bad_payload)
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["detail"]["kind"], "validation")

        self.assertEqual(self.client.post("/jobs", json={"type": "IMAGE_BLUR", "payload": {}}).status_code, 422)
        mismatched = self.client.post("/jobs", json=self._crop_request(), headers={"X-User-Id": "user-2"})
        self.assertEqual(mismatched.status_code, 422)

    def test_unavailable_queue_is_503(self):
        self.ctx.queues[JobFamily.IMAGE].shutdown()
        response = self.client.post("/jobs", json=self._crop_request())
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["detail"]["kind"], "queue_unavailable")

    def test_runtime_lists_queues(self):
        response = self.client.get("/runtime")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertIn("ffmpegBin", body)
        self.assertIsInstance(body["ffmpegAvailable"], bool)
        self.assertEqual([queue["family"] for queue in body["queues"]], ["image", "video", "archive"])
        self.assertEqual(body["queues"][0]["maxAttempts"], 2)


if __name__ == "__main__":
    unittest.main()
