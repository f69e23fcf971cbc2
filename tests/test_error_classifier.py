import socket
import unittest
import urllib.error

from central_aprovacao.contexts.erp.infrastructure.client import ErpTransportError
from central_aprovacao.contexts.erp.infrastructure.error_classifier import (
    AUTH,
    NETWORK,
    SERVER,
    UNKNOWN,
    ErrorClassifier,
    classify,
)


class ErrorClassifierTest(unittest.TestCase):
    def test_timeout_is_network(self) -> None:
        failure = classify(ErpTransportError("timeout", timed_out=True, no_response=True))
        self.assertEqual(failure.kind, NETWORK)
        self.assertIsNone(failure.status)

    def test_socket_timeout_and_refused_connection_are_network(self) -> None:
        self.assertEqual(classify(socket.timeout("timed out")).kind, NETWORK)
        self.assertEqual(classify(ConnectionRefusedError("refused")).kind, NETWORK)
        self.assertEqual(classify(urllib.error.URLError("name not resolved")).kind, NETWORK)

    def test_auth_statuses(self) -> None:
        for status in (401, 403):
            with self.subTest(status=status):
                failure = classify(ErpTransportError(f"ERP HTTP {status}", status=status))
                self.assertEqual(failure.kind, AUTH)
                self.assertEqual(failure.status, status)

    def test_server_and_other_client_statuses(self) -> None:
        for status in (500, 502, 503, 400, 404, 422):
            with self.subTest(status=status):
                self.assertEqual(classify(ErpTransportError("erro", status=status)).kind, SERVER)

    def test_timeout_wins_over_status(self) -> None:
        failure = classify(ErpTransportError("gateway timeout", status=401, timed_out=True))
        self.assertEqual(failure.kind, NETWORK)

    def test_everything_else_is_unknown(self) -> None:
        self.assertEqual(classify(ValueError("payload estranho")).kind, UNKNOWN)
        self.assertEqual(classify(ErpTransportError("sem lista", status=200)).kind, UNKNOWN)

    def test_message_falls_back_to_status_or_class_name(self) -> None:
        self.assertEqual(classify(ErpTransportError("", status=503)).message, "ERP HTTP 503")
        self.assertEqual(classify(KeyError()).message, "KeyError")

    def test_classifier_object_delegates(self) -> None:
        failure = ErrorClassifier().classify(ErpTransportError("x", status=403))
        self.assertEqual(failure.kind, AUTH)


if __name__ == "__main__":
    unittest.main()
