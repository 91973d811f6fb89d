"""
Tests for TenantContext and the tenant_context manager.
"""

import threading

import pytest

from unified_inbox_core.context import TenantContext, tenant_context
from unified_inbox_core.exceptions import ErrorCode, ValidationError


@pytest.fixture(autouse=True)
def clean_context():
    TenantContext.clear_current_tenant()
    yield
    TenantContext.clear_current_tenant()


class TestTenantContextBasics:
    def test_set_and_get(self):
        TenantContext.set_current_tenant("tenant-a", "user-1")

        assert TenantContext.get_current_tenant_id() == "tenant-a"
        assert TenantContext.get_current_user_id() == "user-1"

    def test_identifiers_are_stripped(self):
        TenantContext.set_current_tenant("  tenant-a ", " user-1 ")

        assert TenantContext.get_current_tenant_id() == "tenant-a"
        assert TenantContext.get_current_user_id() == "user-1"

    def test_setting_tenant_without_user_clears_previous_user(self):
        TenantContext.set_current_tenant("tenant-a", "user-1")
        TenantContext.set_current_tenant("tenant-b")

        assert TenantContext.get_current_tenant_id() == "tenant-b"
        assert TenantContext.get_current_user_id() is None

    @pytest.mark.parametrize("tenant_id", ["", "   ", None, 42])
    def test_invalid_tenant_id_rejected(self, tenant_id):
        with pytest.raises(ValidationError) as exc_info:
            TenantContext.set_current_tenant(tenant_id)

        assert exc_info.value.error_code == ErrorCode.MISSING_REQUIRED
        assert exc_info.value.context["field"] == "tenant_id"

    def test_blank_user_id_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            TenantContext.set_current_tenant("tenant-a", " ")

        assert exc_info.value.context["field"] == "user_id"

    def test_clear(self):
        TenantContext.set_current_tenant("tenant-a", "user-1")

        TenantContext.clear_current_tenant()

        assert TenantContext.get_current_tenant_id() is None
        assert TenantContext.get_current_user_id() is None


class TestTenantContextManager:
    def test_scope_is_set_and_cleared(self):
        with tenant_context("tenant-a", "user-1"):
            assert TenantContext.get_current_tenant_id() == "tenant-a"
            assert TenantContext.get_current_user_id() == "user-1"

        assert TenantContext.get_current_tenant_id() is None

    def test_nested_scope_restores_outer(self):
        with tenant_context("tenant-a", "user-1"):
            with tenant_context("tenant-b", "user-2"):
                assert TenantContext.get_current_tenant_id() == "tenant-b"

            assert TenantContext.get_current_tenant_id() == "tenant-a"
            assert TenantContext.get_current_user_id() == "user-1"

    def test_scope_is_restored_after_exception(self):
        with pytest.raises(RuntimeError):
            with tenant_context("tenant-a"):
                raise RuntimeError("boom")

        assert TenantContext.get_current_tenant_id() is None

    def test_scope_is_thread_local(self):
        seen = {}
        ready = threading.Event()
        release = threading.Event()

        def worker():
            with tenant_context("tenant-b", "user-2"):
                ready.set()
                release.wait(timeout=5)
                seen["worker"] = TenantContext.get_current_tenant_id()

        with tenant_context("tenant-a", "user-1"):
            thread = threading.Thread(target=worker)
            thread.start()
            ready.wait(timeout=5)
            seen["main"] = TenantContext.get_current_tenant_id()
            release.set()
            thread.join(timeout=5)

        assert seen == {"main": "tenant-a", "worker": "tenant-b"}
