import unittest

from api_support import PNG_BYTES, ApiTestCase


class BackendApiTests(ApiTestCase):
    def test_health_is_public(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")

    def test_missing_token_is_unauthorized(self):
        response = self.client.get("/api/workspace/items")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "UNAUTHORIZED")

    def test_malformed_token_is_unauthorized(self):
        for header in ("Bearer not-a-jwt", "Basic abc", "Bearer "):
            response = self.client.get(
                "/api/workspace/items", headers={"Authorization": header}
            )
            self.assertEqual(response.status_code, 401, header)

    def test_validation_error_shape(self):
        headers = self.auth_headers()
        response = self.client.post("/api/workspace/items", json={}, headers=headers)
        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body["code"], "VALIDATION_ERROR")
        self.assertIn("title", body["message"])

    def test_public_file_route(self):
        headers = self.auth_headers()
        item = self.create_item(headers)
        upload = self.client.post(
            "/api/files/upload",
            data={"itemId": item["id"]},
            files={"file": ("chart.png", PNG_BYTES, "image/png")},
            headers=headers,
        )
        self.assertEqual(upload.status_code, 200, upload.text)

        response = self.client.get(upload.json()["url"])
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["content-type"], "image/png")
        self.assertEqual(response.content, PNG_BYTES)

    def test_file_route_rejects_traversal_and_missing(self):
        self.assertEqual(self.client.get("/files/..secret.png").status_code, 400)
        missing = self.client.get("/files/0a1b2c3d.png")
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["code"], "NOT_FOUND")


if __name__ == "__main__":
    unittest.main()
