import unittest
from unittest import mock

import requests

from quote_intake.directory_client import DirectoryClient
from quote_intake.errors import DirectoryError


def response(status, payload=None, text=""):
    resp = mock.MagicMock()
    resp.status_code = status
    resp.json.return_value = payload
    resp.text = text
    return resp


class TestDirectoryClient(unittest.TestCase):
    def client(self, *responses):
        session = mock.MagicMock()
        session.get.side_effect = list(responses)
        return DirectoryClient("https://crm.example/", "secret", timeout=3, session=session), session

    def test_missing_credentials(self):
        with self.assertRaises(RuntimeError):
            DirectoryClient("", "secret")
        with self.assertRaises(RuntimeError):
            DirectoryClient("https://crm.example", "")

    def test_search_by_email(self):
        api, session = self.client(response(200, {"items": [{"id": 42, "name": "Carhanco ", "email": "info@carhanco.be"}]}))
        client = api.search_by_email("info@carhanco.be")
        self.assertEqual("42", client.id)
        self.assertEqual("Carhanco", client.name)
        args, kwargs = session.get.call_args
        self.assertEqual("https://crm.example/api/v2/clients", args[0])
        self.assertEqual({"email": "info@carhanco.be", "size": 1}, kwargs["params"])
        self.assertEqual(3, kwargs["timeout"])
        self.assertEqual("secret", kwargs["headers"]["X-apikey"])

    def test_contact_with_embedded_client(self):
        api, _ = self.client(response(200, [{"id": 5, "tel": "+32470123456", "client": {"id": 42, "name": "Carhanco"}}]))
        self.assertEqual("42", api.search_by_phone("+32470123456").id)

    def test_empty_result(self):
        api, _ = self.client(response(200, {"data": []}))
        self.assertIsNone(api.search_by_email("nobody@example.com"))

    def test_not_found(self):
        api, _ = self.client(response(404))
        self.assertIsNone(api.get_by_id("7"))

    def test_get_by_id(self):
        api, session = self.client(response(200, {"id": 7, "name": "Peeters Cars", "tel": "+32 3 123 45 67"}))
        client = api.get_by_id("7")
        self.assertEqual("7", client.id)
        self.assertEqual("+32 3 123 45 67", client.phone)
        self.assertEqual("https://crm.example/api/v2/clients/7", session.get.call_args[0][0])

    def test_falls_back_to_bearer_on_401(self):
        api, session = self.client(response(401, text="bad key"), response(200, []))
        self.assertEqual([], api.list_page(0, 100))
        self.assertEqual(2, session.get.call_count)
        self.assertEqual("Bearer secret", session.get.call_args.kwargs["headers"]["Authorization"])

    def test_rejected_by_every_variant(self):
        api, _ = self.client(response(403), response(403, text="forbidden"))
        with self.assertRaises(DirectoryError) as ctx:
            api.list_page(0, 100)
        self.assertIn("403", str(ctx.exception))

    def test_server_error(self):
        api, session = self.client(response(500, text="oops"))
        with self.assertRaises(DirectoryError):
            api.get_by_id("1")
        self.assertEqual(1, session.get.call_count)

    def test_network_error(self):
        api, _ = self.client(requests.ConnectionError("connection refused"))
        with self.assertRaises(DirectoryError):
            api.search_by_email("info@carhanco.be")

    def test_invalid_json(self):
        resp = response(200)
        resp.json.side_effect = ValueError("Expecting value")
        api, _ = self.client(resp)
        with self.assertRaises(DirectoryError):
            api.list_page(0, 10)

    def test_list_page(self):
        api, session = self.client(response(200, {"items": [{"id": 1, "name": "A"}, {"name": "no id"}, {"id": 2, "name": "B"}]}))
        clients = api.list_page(3, 2)
        self.assertEqual(["1", "2"], [c.id for c in clients])
        self.assertEqual({"page": 3, "size": 2, "sort": "id:asc"}, session.get.call_args.kwargs["params"])


if __name__ == "__main__":
    unittest.main()
