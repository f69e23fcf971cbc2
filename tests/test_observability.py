import json
import logging
import threading
import unittest

from central_aprovacao.observability import (
    JsonLogFormatter,
    bind_request_id,
    current_request_id,
    metrics_snapshot,
    observe_approval_action,
    observe_tenant_fetch,
    prometheus_metrics_text,
    reset_metrics_for_tests,
    set_log_request_id,
)


def _record(msg: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="central_aprovacao",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class JsonLoggingTest(unittest.TestCase):
    def tearDown(self) -> None:
        set_log_request_id(None)

    def test_formatter_includes_request_id_outside_request_context(self) -> None:
        set_log_request_id("worker-req-123")
        parsed = json.loads(JsonLogFormatter().format(_record("tenant_fetch_failed", tenant_id="AR")))
        self.assertEqual(parsed["request_id"], "worker-req-123")
        self.assertEqual(parsed["message"], "tenant_fetch_failed")
        self.assertEqual(parsed["tenant_id"], "AR")
        self.assertEqual(parsed["level"], "info")

    def test_bound_request_id_is_visible_in_worker_thread(self) -> None:
        seen: list[str] = []

        def _worker() -> None:
            with bind_request_id("req-fanout"):
                seen.append(current_request_id())
            seen.append(current_request_id(default="none"))

        thread = threading.Thread(target=_worker)
        thread.start()
        thread.join()
        self.assertEqual(seen, ["req-fanout", "none"])


class MetricsTextTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()

    def tearDown(self) -> None:
        reset_metrics_for_tests()

    def test_prometheus_text_lists_domain_metrics(self) -> None:
        observe_tenant_fetch("BR", None, 120.0)
        observe_tenant_fetch("AR", "auth", 15.0)
        observe_approval_action("approve", "sent")

        text = prometheus_metrics_text()
        self.assertIn('erp_tenant_fetch_total{result="succeeded",tenant="BR"} 1', text)
        self.assertIn('erp_tenant_fetch_errors_total{kind="auth",tenant="AR"} 1', text)
        self.assertIn('erp_tenant_fetch_duration_ms_bucket{le="250",tenant="BR"} 1', text)
        self.assertIn('approval_action_total{decision="approve",result="sent"} 1', text)

        snapshot = metrics_snapshot()
        self.assertEqual(snapshot["tenant_fetch"]["AR:failed"], 1)
        self.assertEqual(snapshot["approval_actions"]["approve:sent"], 1)


if __name__ == "__main__":
    unittest.main()
