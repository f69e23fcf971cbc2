import threading
import unittest

from central_aprovacao.contexts.approvals.application.dispatcher import (
    APPROVE,
    REJECT,
    ActionAck,
    ActionDispatcher,
    IdempotencyGuard,
    normalize_decision,
)
from central_aprovacao.contexts.approvals.domain.documents import APPROVED, PENDING, Document
from central_aprovacao.errors import ErpActionError, NotEligibleError, UserActionError, ValidationError
from central_aprovacao.observability import reset_metrics_for_tests
from tests.erp_fakes import FakeErpTransport, document_payload, registry, roster_row, timeout_error


_FP = ("BR", "000500", APPROVE)


def _document(tenant_id: str | None = "BR", *rows: dict, numero: str = "000500", tipo: str = "IP") -> Document:
    roster = list(rows) or [
        roster_row("ana", APPROVED, code="000001"),
        roster_row("joao", PENDING, code="000002"),
        roster_row("lais", PENDING, code="000003"),
    ]
    return Document.from_payload(document_payload(numero, roster, tipo=tipo, filial="0205 - Filial RJ"), tenant_id=tenant_id)


class ActionDispatcherTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()
        self.transport = FakeErpTransport()
        self.guard = IdempotencyGuard(ttl_seconds=60)
        self.dispatcher = ActionDispatcher(
            registry=registry("BR", "AR", default="BR"),
            transport=self.transport,
            idempotency=self.guard,
        )

    def tearDown(self) -> None:
        reset_metrics_for_tests()

    def test_approve_posts_to_owning_tenant(self) -> None:
        ack = self.dispatcher.submit(_document("AR"), APPROVE, "joao@corp.com")

        self.assertEqual(len(self.transport.posts), 1)
        call = self.transport.posts[0]
        self.assertEqual(call["url"], "https://ar.erp.test/rest/aprova_documento")
        self.assertEqual(
            call["payload"],
            {
                "TIPO": "IP",
                "DOCUMENTO": "000500",
                "APROVADOR": "000002",
                "STATUS": "APROVACAO",
                "OBSERVACAO": "",
            },
        )
        self.assertEqual(call["headers"]["TenantId"], "01,0205")
        self.assertTrue(call["headers"]["Authorization"].startswith("Basic "))
        self.assertEqual(ack.tenant_id, "AR")
        self.assertEqual(ack.upstream_status, 201)
        self.assertFalse(ack.replayed)

    def test_reject_uses_default_comment(self) -> None:
        self.dispatcher.submit(_document("BR"), "rejeitar", "joao")
        payload = self.transport.posts[0]["payload"]
        self.assertEqual(payload["STATUS"], "REJEICAO")
        self.assertEqual(payload["OBSERVACAO"], "Rejeitado pelo aprovador")

    def test_caller_comment_is_forwarded(self) -> None:
        self.dispatcher.submit(_document("BR"), REJECT, "joao", "  preco acima do orcado ")
        self.assertEqual(self.transport.posts[0]["payload"]["OBSERVACAO"], "preco acima do orcado")

    def test_stale_roster_blocks_before_any_write(self) -> None:
        # Roster re-read right before the write: pedro now sits ahead of lais.
        document = _document(
            "BR",
            roster_row("ana", APPROVED),
            roster_row("pedro", PENDING),
            roster_row("lais", PENDING),
        )
        with self.assertRaises(NotEligibleError) as ctx:
            self.dispatcher.submit(document, APPROVE, "lais")

        self.assertEqual(ctx.exception.reason, "waiting_previous_level")
        self.assertEqual(ctx.exception.http_status, 409)
        self.assertEqual(self.transport.posts, [])

    def test_caller_outside_roster_is_not_eligible(self) -> None:
        with self.assertRaises(NotEligibleError) as ctx:
            self.dispatcher.submit(_document("BR"), APPROVE, "maria")
        self.assertEqual(ctx.exception.reason, "identity_not_found")
        self.assertEqual(self.transport.posts, [])

    def test_repeat_of_recorded_decision_is_a_noop(self) -> None:
        document = _document("BR", roster_row("ana", APPROVED, code="000001"), roster_row("joao", PENDING))
        ack = self.dispatcher.submit(document, APPROVE, "ana")
        self.assertTrue(ack.replayed)
        self.assertIsNone(ack.upstream_status)
        self.assertEqual(self.transport.posts, [])

    def test_opposite_decision_on_acted_entry_is_blocked(self) -> None:
        document = _document("BR", roster_row("ana", APPROVED), roster_row("joao", PENDING))
        with self.assertRaises(NotEligibleError) as ctx:
            self.dispatcher.submit(document, REJECT, "ana")
        self.assertEqual(ctx.exception.reason, "already_acted")

    def test_upstream_refusal_is_surfaced_verbatim(self) -> None:
        self.transport.answer_post("BR", 400, '{"errorMessage":"Documento bloqueado"}')

        with self.assertRaises(ErpActionError) as ctx:
            self.dispatcher.submit(_document("BR"), APPROVE, "joao")

        error = ctx.exception
        self.assertEqual(error.upstream_status, 400)
        self.assertEqual(error.upstream_body, '{"errorMessage":"Documento bloqueado"}')
        self.assertEqual(error.kind, "server")
        self.assertEqual(error.http_status, 502)

    def test_only_200_and_201_count_as_success(self) -> None:
        self.transport.answer_post("BR", 202, "aceito")
        with self.assertRaises(ErpActionError):
            self.dispatcher.submit(_document("BR"), APPROVE, "joao")

        self.transport.answer_post("BR", 200, "ok")
        ack = self.dispatcher.submit(_document("BR"), APPROVE, "joao")
        self.assertEqual(ack.upstream_status, 200)

    def test_transport_failure_is_classified(self) -> None:
        self.transport.fail_post("BR", timeout_error())
        with self.assertRaises(ErpActionError) as ctx:
            self.dispatcher.submit(_document("BR"), APPROVE, "joao")
        self.assertEqual(ctx.exception.kind, "network")
        self.assertIsNone(ctx.exception.upstream_status)

    def test_document_without_tenant_goes_to_default(self) -> None:
        ack = self.dispatcher.submit(_document(None), APPROVE, "joao")
        self.assertEqual(ack.tenant_id, "BR")
        self.assertEqual(self.transport.posts[0]["host"], "br.erp.test")

    def test_unknown_decision_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            self.dispatcher.submit(_document("BR"), "talvez", "joao")
        self.assertEqual(normalize_decision(" APROVAR "), APPROVE)

    def test_idempotency_key_replays_first_ack(self) -> None:
        first = self.dispatcher.submit(_document("BR"), APPROVE, "joao", idempotency_key="clique-1")
        second = self.dispatcher.submit(_document("BR"), APPROVE, "joao", idempotency_key="clique-1")

        self.assertEqual(len(self.transport.posts), 1)
        self.assertFalse(first.replayed)
        self.assertTrue(second.replayed)
        self.assertEqual(second.upstream_status, first.upstream_status)

    def test_reused_key_for_another_document_is_refused(self) -> None:
        self.dispatcher.submit(_document("BR", numero="000001"), APPROVE, "joao", idempotency_key="k1")

        with self.assertRaises(UserActionError) as ctx:
            self.dispatcher.submit(_document("BR", numero="000002"), REJECT, "joao", idempotency_key="k1")

        self.assertEqual(ctx.exception.code, "idempotency_key_reused")
        self.assertEqual(ctx.exception.http_status, 422)
        self.assertEqual(len(self.transport.posts), 1)
        self.assertEqual(self.transport.posts[0]["payload"]["DOCUMENTO"], "000001")

    def test_reused_key_for_another_decision_is_refused(self) -> None:
        self.dispatcher.submit(_document("BR"), APPROVE, "joao", idempotency_key="k2")

        with self.assertRaises(UserActionError) as ctx:
            self.dispatcher.submit(_document("BR"), REJECT, "joao", idempotency_key="k2")

        self.assertEqual(ctx.exception.code, "idempotency_key_reused")
        self.assertEqual(len(self.transport.posts), 1)

    def test_failed_action_does_not_burn_the_key(self) -> None:
        self.transport.answer_post("BR", 500, "erro interno")
        with self.assertRaises(ErpActionError):
            self.dispatcher.submit(_document("BR"), APPROVE, "joao", idempotency_key="clique-2")

        self.transport.answer_post("BR", 201, "ok")
        ack = self.dispatcher.submit(_document("BR"), APPROVE, "joao", idempotency_key="clique-2")
        self.assertFalse(ack.replayed)
        self.assertEqual(len(self.transport.posts), 2)


class IdempotencyGuardTest(unittest.TestCase):
    def test_key_in_flight_is_refused(self) -> None:
        guard = IdempotencyGuard()
        self.assertIsNone(guard.begin("k", _FP))
        with self.assertRaises(UserActionError) as ctx:
            guard.begin("k", _FP)
        self.assertEqual(ctx.exception.code, "action_in_progress")
        self.assertEqual(ctx.exception.http_status, 409)

    def test_concurrent_submissions_write_once(self) -> None:
        guard = IdempotencyGuard()
        results: list[object] = []
        barrier = threading.Barrier(4)

        def _attempt() -> None:
            barrier.wait()
            try:
                results.append(guard.begin("k", _FP))
            except UserActionError as exc:
                results.append(exc)

        threads = [threading.Thread(target=_attempt) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sum(1 for item in results if item is None), 1)

    def test_finish_without_ack_releases_key(self) -> None:
        guard = IdempotencyGuard()
        guard.begin("k", _FP)
        guard.finish("k", _FP, None)
        self.assertIsNone(guard.begin("k", _FP))

    def test_key_in_flight_for_another_action_is_refused(self) -> None:
        guard = IdempotencyGuard()
        guard.begin("k", _FP)
        with self.assertRaises(UserActionError) as ctx:
            guard.begin("k", ("BR", "000500", REJECT))
        self.assertEqual(ctx.exception.code, "idempotency_key_reused")

    def test_stored_ack_is_returned(self) -> None:
        guard = IdempotencyGuard()
        ack = ActionAck("BR", "1", APPROVE, "000002", 201)
        guard.begin("k", _FP)
        guard.finish("k", _FP, ack)
        self.assertEqual(guard.begin("k", _FP), ack)


if __name__ == "__main__":
    unittest.main()
