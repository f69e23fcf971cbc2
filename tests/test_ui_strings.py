import unittest

from central_aprovacao.contexts.erp.infrastructure.error_classifier import ERROR_KINDS
from central_aprovacao.ui_strings import (
    MESSAGES,
    document_kind_label,
    document_status_label,
    error_message,
    tenant_error_message,
)


class UiStringsTest(unittest.TestCase):
    def test_every_error_kind_has_a_tenant_message(self) -> None:
        for kind in ERROR_KINDS:
            self.assertTrue(tenant_error_message(kind).strip(), f"mensagem vazia: {kind}")

    def test_error_codes_used_by_the_api_exist(self) -> None:
        for key in ("auth_required", "not_eligible", "document_not_found", "tenant_not_found", "erp_action_failed", "idempotency_key_reused"):
            self.assertIn(key, MESSAGES["errors"])

    def test_labels_and_fallbacks(self) -> None:
        self.assertEqual(document_kind_label("sc"), "Solicitacao de Compra")
        self.assertEqual(document_kind_label("XX"), "XX")
        self.assertEqual(document_status_label("rejected"), "Rejeitado")
        self.assertEqual(document_status_label(None), "Pendente")
        self.assertEqual(error_message("nao_existe", "padrao"), "padrao")


if __name__ == "__main__":
    unittest.main()
